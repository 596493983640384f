"""
API Router - all endpoints.
"""
from fastapi import APIRouter
from studyroom.router.api.v1 import participants, realtime, rooms, sprints

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    rooms.router,
    prefix="/rooms",
    tags=["Rooms"],
)

api_router.include_router(
    participants.router,
    prefix="/rooms",
    tags=["Participants"],
)

api_router.include_router(
    sprints.router,
    prefix="/rooms",
    tags=["Sprints"],
)

api_router.include_router(
    realtime.router,
    tags=["Realtime"],
)
