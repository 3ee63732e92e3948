"""Credit transaction model capturing balance movements."""

import enum

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.datetime import utcnow


class TransactionType(str, enum.Enum):
    """Ledger transaction classification."""

    EARNED = "EARNED"
    SPENT = "SPENT"
    PURCHASED = "PURCHASED"
    REFUNDED = "REFUNDED"
    BONUS = "BONUS"


class CreditTransaction(Base):
    """Immutable ledger of credit movements for each user.

    ``amount`` is always positive; the direction comes from
    ``transaction_type`` via ``services.ledger_service.sign_for``.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="credit_transactions_amount_positive"),
    )

    transaction_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    transaction_type = Column(Enum(TransactionType, name="credit_transaction_type"), nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(String, nullable=False)
    session_id = Column(Uuid, ForeignKey("sessions.session_id", ondelete="SET NULL"), index=True)
    payment_reference = Column(String)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="transactions")
    session = relationship("TeachingSession", back_populates="transactions")
