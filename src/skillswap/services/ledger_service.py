"""Credit ledger: the only code path that changes a user's balance."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from ..models import CreditTransaction, TransactionType
from ..repositories import ledger_store
from ..utils.datetime import to_naive_utc
from .errors import InvalidAmount, LedgerInvariantViolation, UserNotFound
from .notifications import LoggingNotificationSink, NotificationKind, NotificationSink, queue_notification

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

_default_sink = LoggingNotificationSink()

_SIGNS = {
    TransactionType.EARNED: 1,
    TransactionType.PURCHASED: 1,
    TransactionType.REFUNDED: 1,
    TransactionType.BONUS: 1,
    TransactionType.SPENT: -1,
}


def sign_for(kind: TransactionType) -> int:
    """Balance direction of a transaction type: +1 credits, -1 debits."""

    return _SIGNS[TransactionType(kind)]


@dataclass(frozen=True)
class TransactionPage:
    items: Sequence[CreditTransaction]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(frozen=True)
class CreditStatistics:
    total_earned: int
    total_spent: int
    total_purchased: int
    total_refunded: int
    total_bonus: int
    current_balance: int
    net_total: int


def record_transaction(
    session: Session,
    *,
    user_id: UUID,
    transaction_type: TransactionType,
    amount: int,
    description: str,
    session_id: Optional[UUID] = None,
    payment_reference: Optional[str] = None,
    notifier: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> CreditTransaction:
    """Append a transaction and move the balance by its signed amount.

    Both writes happen in the caller's unit of work; nothing is committed here.
    Sufficiency for SPENT is the caller's policy decision. A debit that would
    still leave the balance negative is rejected by the store and reported as
    ``LedgerInvariantViolation``. The user is notified once the caller commits.
    """

    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Transaction amount must be a positive integer, got {amount!r}.")

    kind = TransactionType(transaction_type)
    delta = sign_for(kind) * amount

    new_balance = ledger_store.update_balance(session, user_id, delta)
    if new_balance is None:
        available = ledger_store.get_balance(session, user_id)
        if available is None:
            raise UserNotFound(user_id)
        logger.critical(
            "ledger invariant violation: %s of %s credits for user %s would leave balance %s",
            kind.value,
            amount,
            user_id,
            available + delta,
        )
        raise LedgerInvariantViolation(
            f"{kind.value} of {amount} credits exceeds balance {available} for user {user_id}."
        )

    record = ledger_store.insert_transaction(
        session,
        user_id=user_id,
        transaction_type=kind,
        amount=amount,
        description=description,
        session_id=session_id,
        payment_reference=payment_reference,
        created_at=to_naive_utc(now),
    )

    queue_notification(
        session,
        notifier or _default_sink,
        user_id,
        NotificationKind.CREDIT_TRANSACTION,
        {
            "transaction_id": record.transaction_id,
            "transaction_type": kind.value,
            "amount": amount,
            "description": description,
            "session_id": str(session_id) if session_id else None,
            "payment_reference": payment_reference,
            "balance_after": new_balance,
        },
    )
    logger.info("recorded %s of %s credits for user %s (balance %s)", kind.value, amount, user_id, new_balance)
    return record


def earn_credits(session: Session, *, user_id: UUID, amount: int, description: str, **kwargs) -> CreditTransaction:
    return record_transaction(
        session, user_id=user_id, transaction_type=TransactionType.EARNED, amount=amount, description=description, **kwargs
    )


def spend_credits(session: Session, *, user_id: UUID, amount: int, description: str, **kwargs) -> CreditTransaction:
    return record_transaction(
        session, user_id=user_id, transaction_type=TransactionType.SPENT, amount=amount, description=description, **kwargs
    )


def refund_credits(session: Session, *, user_id: UUID, amount: int, description: str, **kwargs) -> CreditTransaction:
    return record_transaction(
        session, user_id=user_id, transaction_type=TransactionType.REFUNDED, amount=amount, description=description, **kwargs
    )


def award_bonus_credits(
    session: Session, *, user_id: UUID, amount: int, description: str, **kwargs
) -> CreditTransaction:
    return record_transaction(
        session, user_id=user_id, transaction_type=TransactionType.BONUS, amount=amount, description=description, **kwargs
    )


def award_starter_credits(session: Session, *, user_id: UUID, amount: int, **kwargs) -> CreditTransaction:
    """Grant the welcome bonus to a newly registered user."""

    return award_bonus_credits(
        session, user_id=user_id, amount=amount, description="Welcome bonus - starter credits", **kwargs
    )


def record_purchase(
    session: Session,
    *,
    user_id: UUID,
    credits: int,
    payment_reference: str,
    description: str = "Credit purchase",
    **kwargs,
) -> CreditTransaction:
    """Book credits bought through the payment gateway, keyed by its reference."""

    return record_transaction(
        session,
        user_id=user_id,
        transaction_type=TransactionType.PURCHASED,
        amount=credits,
        description=description,
        payment_reference=payment_reference,
        **kwargs,
    )


def get_balance(session: Session, user_id: UUID) -> int:
    balance = ledger_store.get_balance(session, user_id)
    if balance is None:
        raise UserNotFound(user_id)
    return balance


def has_sufficient_balance(session: Session, user_id: UUID, amount: int) -> bool:
    return get_balance(session, user_id) >= amount


def get_transaction_history(
    session: Session,
    *,
    user_id: UUID,
    transaction_type: Optional[TransactionType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session_id: Optional[UUID] = None,
    page: int = 1,
    limit: int = 20,
) -> TransactionPage:
    """Return a user's transactions, newest first, with optional filters."""

    if ledger_store.get_user(session, user_id) is None:
        raise UserNotFound(user_id)

    page = max(page, 1)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    items, total = ledger_store.query_transactions(
        session,
        user_id,
        transaction_type=transaction_type,
        start=to_naive_utc(start) if start else None,
        end=to_naive_utc(end) if end else None,
        session_id=session_id,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return TransactionPage(items=items, total=total, page=page, limit=limit)


def get_statistics(session: Session, user_id: UUID) -> CreditStatistics:
    """Per-type totals plus the current balance.

    ``net_total`` is the signed sum of every transaction; it equals
    ``current_balance`` whenever the ledger is consistent.
    """

    balance = get_balance(session, user_id)
    sums = ledger_store.aggregate_transaction_sums(session, user_id)

    return CreditStatistics(
        total_earned=sums.get(TransactionType.EARNED, 0),
        total_spent=sums.get(TransactionType.SPENT, 0),
        total_purchased=sums.get(TransactionType.PURCHASED, 0),
        total_refunded=sums.get(TransactionType.REFUNDED, 0),
        total_bonus=sums.get(TransactionType.BONUS, 0),
        current_balance=balance,
        net_total=sum(sign_for(kind) * total for kind, total in sums.items()),
    )
