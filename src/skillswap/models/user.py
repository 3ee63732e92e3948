"""User domain model."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Float, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.datetime import utcnow


class User(Base):
    """Platform member who can both teach and learn.

    ``credit_balance`` is only ever changed by the ledger service, through an
    atomic update paired with a ``CreditTransaction`` insert.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="users_email_unique"),
        CheckConstraint("credit_balance >= 0", name="users_credit_balance_non_negative"),
        CheckConstraint("completed_sessions >= 0", name="users_completed_sessions_non_negative"),
    )

    user_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, nullable=False)
    display_name = Column(String, nullable=False)
    credit_balance = Column(Integer, nullable=False, default=0)
    rating = Column(Float, nullable=False, default=0.0)
    completed_sessions = Column(Integer, nullable=False, default=0)
    last_active = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    skills = relationship("UserSkill", back_populates="user")
    transactions = relationship("CreditTransaction", back_populates="user")
    sessions_taught = relationship(
        "TeachingSession",
        foreign_keys="TeachingSession.teacher_id",
        back_populates="teacher",
    )
    sessions_learned = relationship(
        "TeachingSession",
        foreign_keys="TeachingSession.learner_id",
        back_populates="learner",
    )
