"""
Study room model. A named space participants join to run sprints together.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Uuid
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import uuid
from studyroom.core.database import Base


class StudyRoom(Base):
    __tablename__ = "sprint_rooms"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(120), nullable=False)
    subject = Column(String(120), nullable=False)
    owner_id = Column(Uuid, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    # Rows are soft-closed; the cascades only fire on an explicit purge
    participants = relationship("RoomParticipant", back_populates="room", cascade="all, delete-orphan")
    sessions = relationship("SprintSession", back_populates="room", cascade="all, delete-orphan")

    def is_owner(self, user_id: uuid.UUID) -> bool:
        return self.owner_id == user_id
