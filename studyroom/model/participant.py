"""
Room participant model. A user's presence record within a room.

Rejoining creates a new row and retires the previous one, so a user may have
many rows per room; at most one of them is active (partial unique index).
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import relationship
import uuid
from studyroom.core.database import Base
from studyroom.utils.clock import utcnow

ROLE_OWNER = "owner"
ROLE_MODERATOR = "moderator"
ROLE_MEMBER = "member"
MODERATOR_ROLES = (ROLE_OWNER, ROLE_MODERATOR)


class RoomParticipant(Base):
    __tablename__ = "sprint_participants"
    __table_args__ = (
        Index(
            "uq_sprint_participants_active_user",
            "room_id",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    room_id = Column(Uuid, ForeignKey("sprint_rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    current_task = Column(Text, nullable=False, default="")
    reflection = Column(Text, nullable=True)
    role = Column(String(16), nullable=False, default=ROLE_MEMBER)
    is_active = Column(Boolean, nullable=False, default=True)
    # Set in Python: joins within the same second must still order correctly
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    left_at = Column(DateTime(timezone=True), nullable=True)

    room = relationship("StudyRoom", back_populates="participants")

    @property
    def can_moderate(self) -> bool:
        return self.is_active and self.role in MODERATOR_ROLES
