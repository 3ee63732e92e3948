"""Pydantic schemas for credit endpoints."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from ..models import TransactionType
from ..utils.datetime import as_utc


class TransactionRead(BaseModel):
    """A single ledger transaction."""

    model_config = ConfigDict(from_attributes=True)

    transaction_id: int
    user_id: UUID
    transaction_type: TransactionType
    amount: int
    description: str
    session_id: Optional[UUID] = None
    payment_reference: Optional[str] = None
    created_at: datetime

    @field_serializer("created_at")
    def serialize_utc(self, value: datetime) -> datetime:
        return as_utc(value)


class TransactionPage(BaseModel):
    """Paged transaction history, newest first."""

    model_config = ConfigDict(from_attributes=True)

    items: List[TransactionRead]
    total: int
    page: int
    limit: int
    total_pages: int


class CreditBalance(BaseModel):
    user_id: UUID
    balance: int = Field(..., ge=0)


class CreditStatistics(BaseModel):
    """Per-type running totals for a user."""

    model_config = ConfigDict(from_attributes=True)

    total_earned: int
    total_spent: int
    total_purchased: int
    total_refunded: int
    total_bonus: int
    current_balance: int
    net_total: int


class ExpirationInfoRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    has_credits: bool
    credit_balance: int
    expiration_date: Optional[datetime] = None
    days_until_expiration: Optional[int] = None
    is_expiring_soon: bool

    @field_serializer("expiration_date")
    def serialize_utc(self, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class BonusCreate(BaseModel):
    """Request body for awarding bonus credits."""

    user_id: UUID
    amount: int = Field(..., gt=0, description="Credits to award.")
    description: str = Field(..., min_length=1, max_length=280)
