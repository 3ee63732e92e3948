"""Store primitives for balances, transactions and sessions.

Each function issues SQL against the caller's ``Session`` and never commits;
the caller owns the unit of work. Business rules (who may do what, how much
things cost) live in the services, not here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from ..models import (
    ACTIVE_STATUSES,
    CreditTransaction,
    SessionStatus,
    TeachingSession,
    TransactionType,
    User,
    UserSkill,
)
from ..utils.datetime import utcnow


def _expire_cached(db: Session, entity, pk) -> None:
    # Bulk UPDATEs bypass the identity map; drop any loaded copy so the next
    # attribute access reloads from the row.
    cached = db.identity_map.get(identity_key(entity, pk))
    if cached is not None:
        db.expire(cached)


# === Users ===

def get_user(db: Session, user_id: UUID, *, for_update: bool = False) -> Optional[User]:
    """Load a user, optionally locking the row and refreshing any cached copy."""

    stmt = select(User).where(User.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def get_balance(db: Session, user_id: UUID) -> Optional[int]:
    """Read the stored balance column directly, bypassing the identity map."""

    stmt = select(User.credit_balance).where(User.user_id == user_id)
    return db.execute(stmt).scalar_one_or_none()


def update_balance(db: Session, user_id: UUID, delta: int) -> Optional[int]:
    """Atomically apply ``delta`` to a balance.

    The guard ``credit_balance + delta >= 0`` is part of the UPDATE itself, so
    concurrent debits serialize on the row and can never drive it negative.
    Returns the new balance, or ``None`` when no row was changed (missing user
    or a debit larger than the balance).
    """

    stmt = (
        update(User)
        .where(User.user_id == user_id, User.credit_balance + delta >= 0)
        .values(credit_balance=User.credit_balance + delta)
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount == 0:
        return None
    _expire_cached(db, User, user_id)
    return get_balance(db, user_id)


def touch_last_active(db: Session, user_id: UUID, when: datetime) -> bool:
    stmt = (
        update(User)
        .where(User.user_id == user_id)
        .values(last_active=when, updated_at=when)
        .execution_options(synchronize_session=False)
    )
    touched = db.execute(stmt).rowcount > 0
    _expire_cached(db, User, user_id)
    return touched


def increment_completed_sessions(db: Session, user_id: UUID) -> None:
    stmt = (
        update(User)
        .where(User.user_id == user_id)
        .values(completed_sessions=User.completed_sessions + 1)
        .execution_options(synchronize_session=False)
    )
    db.execute(stmt)
    _expire_cached(db, User, user_id)


def teaches_skill(db: Session, user_id: UUID, skill_id: UUID) -> bool:
    stmt = select(UserSkill.user_skill_id).where(
        UserSkill.user_id == user_id,
        UserSkill.skill_id == skill_id,
        UserSkill.can_teach.is_(True),
    )
    return db.execute(stmt.limit(1)).scalar_one_or_none() is not None


# === Transactions ===

def insert_transaction(
    db: Session,
    *,
    user_id: UUID,
    transaction_type: TransactionType,
    amount: int,
    description: str,
    session_id: Optional[UUID] = None,
    payment_reference: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> CreditTransaction:
    record = CreditTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        amount=amount,
        description=description,
        session_id=session_id,
        payment_reference=payment_reference,
        created_at=created_at or utcnow(),
    )
    db.add(record)
    db.flush()  # Assign transaction_id
    return record


def query_transactions(
    db: Session,
    user_id: UUID,
    *,
    transaction_type: Optional[TransactionType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session_id: Optional[UUID] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[Sequence[CreditTransaction], int]:
    """Return one page of a user's transactions (newest first) and the match count."""

    conditions = [CreditTransaction.user_id == user_id]
    if transaction_type is not None:
        conditions.append(CreditTransaction.transaction_type == transaction_type)
    if start is not None:
        conditions.append(CreditTransaction.created_at >= start)
    if end is not None:
        conditions.append(CreditTransaction.created_at <= end)
    if session_id is not None:
        conditions.append(CreditTransaction.session_id == session_id)

    total = db.execute(select(func.count(CreditTransaction.transaction_id)).where(*conditions)).scalar_one()
    stmt = (
        select(CreditTransaction)
        .where(*conditions)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.transaction_id.desc())
        .offset(offset)
        .limit(limit)
    )
    return db.execute(stmt).scalars().all(), total


def aggregate_transaction_sums(db: Session, user_id: UUID) -> dict[TransactionType, int]:
    """Total amount per transaction type for one user; absent types are omitted."""

    stmt = (
        select(CreditTransaction.transaction_type, func.coalesce(func.sum(CreditTransaction.amount), 0))
        .where(CreditTransaction.user_id == user_id)
        .group_by(CreditTransaction.transaction_type)
    )
    return {kind: int(total) for kind, total in db.execute(stmt).all()}


# === Sessions ===

def get_session(db: Session, session_id: UUID, *, for_update: bool = False) -> Optional[TeachingSession]:
    """Load a session row; ``for_update`` locks it and discards any stale cached state."""

    stmt = select(TeachingSession).where(TeachingSession.session_id == session_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def insert_session(db: Session, record: TeachingSession) -> TeachingSession:
    db.add(record)
    db.flush()  # Assign session_id before ledger entries reference it
    return record


def update_session_status(
    db: Session,
    session_id: UUID,
    expected_status: SessionStatus,
    new_status: SessionStatus,
    **values,
) -> bool:
    """Compare-and-set a session's status.

    Returns ``False`` when the row is no longer in ``expected_status``, which
    callers surface as a stale-state conflict.
    """

    stmt = (
        update(TeachingSession)
        .where(TeachingSession.session_id == session_id, TeachingSession.status == expected_status)
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    changed = db.execute(stmt).rowcount == 1
    _expire_cached(db, TeachingSession, session_id)
    return changed


def find_overlapping_sessions(
    db: Session,
    teacher_id: UUID,
    start: datetime,
    end: datetime,
    *,
    excluding_session_id: Optional[UUID] = None,
) -> Sequence[TeachingSession]:
    """Active sessions of a teacher whose interval intersects ``[start, end)``."""

    stmt = (
        select(TeachingSession)
        .where(
            TeachingSession.teacher_id == teacher_id,
            TeachingSession.status.in_(ACTIVE_STATUSES),
            TeachingSession.scheduled_at < end,
            TeachingSession.ends_at > start,
        )
        .order_by(TeachingSession.scheduled_at.asc())
    )
    if excluding_session_id is not None:
        stmt = stmt.where(TeachingSession.session_id != excluding_session_id)
    return db.execute(stmt).scalars().all()


def set_video_link(db: Session, session_id: UUID, video_link: str) -> bool:
    """Attach a meeting link to a live session that has none yet."""

    stmt = (
        update(TeachingSession)
        .where(
            TeachingSession.session_id == session_id,
            TeachingSession.video_link.is_(None),
            TeachingSession.status.in_(ACTIVE_STATUSES),
        )
        .values(video_link=video_link)
        .execution_options(synchronize_session=False)
    )
    attached = db.execute(stmt).rowcount == 1
    _expire_cached(db, TeachingSession, session_id)
    return attached
