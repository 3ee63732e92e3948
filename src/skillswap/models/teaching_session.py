"""Booked teaching session and its lifecycle states."""

import enum
import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SAEnum, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.datetime import utcnow


class SessionStatus(str, enum.Enum):
    """Possible session states."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# States that still occupy the teacher's calendar.
ACTIVE_STATUSES = (SessionStatus.PENDING, SessionStatus.CONFIRMED, SessionStatus.IN_PROGRESS)
TERMINAL_STATUSES = (SessionStatus.COMPLETED, SessionStatus.CANCELLED)


class TeachingSession(Base):
    """A learner's booking of a teacher for one skill and time slot."""

    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint("teacher_id <> learner_id", name="sessions_teacher_learner_check"),
        CheckConstraint("duration > 0", name="sessions_duration_positive"),
        CheckConstraint("credit_cost >= 0", name="sessions_credit_cost_non_negative"),
    )

    session_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    teacher_id = Column(Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    learner_id = Column(Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    skill_id = Column(Uuid, ForeignKey("skills.skill_id", ondelete="RESTRICT"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(String)
    scheduled_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)
    status = Column(SAEnum(SessionStatus, name="session_status"), nullable=False, default=SessionStatus.PENDING)
    credit_cost = Column(Integer, nullable=False)
    video_link = Column(String)
    cancelled_by = Column(Uuid)
    cancellation_reason = Column(String)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    teacher = relationship("User", foreign_keys=[teacher_id], back_populates="sessions_taught")
    learner = relationship("User", foreign_keys=[learner_id], back_populates="sessions_learned")
    skill = relationship("Skill")
    transactions = relationship("CreditTransaction", back_populates="session")
