"""SQLAlchemy models for SkillSwap."""

from .credit_transaction import CreditTransaction, TransactionType
from .skill import Skill, UserSkill
from .teaching_session import ACTIVE_STATUSES, TERMINAL_STATUSES, SessionStatus, TeachingSession
from .user import User

__all__ = [
    "ACTIVE_STATUSES",
    "CreditTransaction",
    "SessionStatus",
    "Skill",
    "TERMINAL_STATUSES",
    "TeachingSession",
    "TransactionType",
    "User",
    "UserSkill",
]
