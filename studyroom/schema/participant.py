"""
Participant schemas.
"""
from datetime import datetime
from typing import List, Literal, Optional
import uuid
from pydantic import BaseModel, Field


class ParticipantResponse(BaseModel):
    id: uuid.UUID
    room_id: uuid.UUID
    user_id: uuid.UUID
    current_task: str = ""
    reflection: Optional[str] = None
    role: str
    is_active: bool
    joined_at: datetime
    left_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ParticipantListResponse(BaseModel):
    """Present participants, one per user."""
    items: List[ParticipantResponse]
    count: int


class TaskUpdateBody(BaseModel):
    """Body for PUT /rooms/{room_id}/task. Clients debounce before sending."""
    current_task: str = Field("", description="What the participant is working on.")


class ReflectionUpdateBody(BaseModel):
    reflection: str = Field("", description="Notes after a sprint.")


class RoleUpdateBody(BaseModel):
    role: Literal["moderator", "member"]
