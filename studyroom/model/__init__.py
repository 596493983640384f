from studyroom.model.room import StudyRoom
from studyroom.model.participant import RoomParticipant
from studyroom.model.sprint_session import SprintSession, SprintState, EndReason

__all__ = ["StudyRoom", "RoomParticipant", "SprintSession", "SprintState", "EndReason"]
