"""Post-commit notification dispatch.

Services queue notifications (and other best-effort side effects) on the
database session; they run only after that session commits and are dropped
if it rolls back. Delivery errors are logged and never reach the caller.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Mapping, Protocol
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_notifications"
_DEFERRED_KEY = "deferred_actions"


class NotificationKind(str, enum.Enum):
    CREDIT_TRANSACTION = "credit_transaction"
    SESSION_BOOKED = "session_booked"
    SESSION_CONFIRMED = "session_confirmed"
    SESSION_RESCHEDULED = "session_rescheduled"
    SESSION_STARTED = "session_started"
    SESSION_COMPLETED = "session_completed"
    SESSION_CANCELLED = "session_cancelled"
    CREDITS_EXPIRING = "credits_expiring"
    CREDITS_EXPIRED = "credits_expired"


class NotificationSink(Protocol):
    def notify(self, user_id: UUID, kind: NotificationKind, payload: Mapping[str, Any]) -> None:
        ...


class LoggingNotificationSink:
    """Default sink that records notifications in the application log."""

    def notify(self, user_id: UUID, kind: NotificationKind, payload: Mapping[str, Any]) -> None:
        logger.info("notification %s for user %s: %s", kind.value, user_id, dict(payload))


def queue_notification(
    db: Session,
    sink: NotificationSink,
    user_id: UUID,
    kind: NotificationKind,
    payload: Mapping[str, Any],
) -> None:
    """Defer a notification until ``db`` commits."""

    db.info.setdefault(_PENDING_KEY, []).append((sink, user_id, kind, dict(payload)))


def pending_notifications(db: Session) -> list:
    return list(db.info.get(_PENDING_KEY, ()))


def defer_until_commit(db: Session, callback: Callable[[], None]) -> None:
    """Run a best-effort side effect (e.g. releasing a meeting room) after ``db`` commits."""

    db.info.setdefault(_DEFERRED_KEY, []).append(callback)


@event.listens_for(Session, "after_commit")
def _dispatch_after_commit(db: Session) -> None:
    pending = db.info.pop(_PENDING_KEY, [])
    for sink, user_id, kind, payload in pending:
        try:
            sink.notify(user_id, kind, payload)
        except Exception:
            logger.exception("failed to deliver %s notification to user %s", kind.value, user_id)
    for callback in db.info.pop(_DEFERRED_KEY, []):
        try:
            callback()
        except Exception:
            logger.exception("deferred post-commit action failed")


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(db: Session) -> None:
    dropped = db.info.pop(_PENDING_KEY, None)
    db.info.pop(_DEFERRED_KEY, None)
    if dropped:
        logger.debug("discarded %d notifications after rollback", len(dropped))
