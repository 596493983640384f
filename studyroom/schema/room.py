"""
Room schemas.
"""
from datetime import datetime
from typing import List, Optional
import uuid
from pydantic import BaseModel, Field


class RoomCreateBody(BaseModel):
    """Body for POST /rooms."""
    title: str = Field(..., description="Room title, e.g. Algebra.")
    subject: str = Field(..., description="Subject studied in the room, e.g. Math.")


class RoomResponse(BaseModel):
    id: uuid.UUID
    title: str
    subject: str
    owner_id: uuid.UUID
    is_active: bool
    created_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None
    participant_count: Optional[int] = None

    class Config:
        from_attributes = True


class RoomListResponse(BaseModel):
    items: List[RoomResponse]
    total: int = Field(..., description="Number of rooms returned.")


class MessageResponse(BaseModel):
    message: str
