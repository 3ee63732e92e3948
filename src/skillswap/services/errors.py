"""Error taxonomy shared by the ledger, escrow and expiration services."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID


class CreditRuleViolation(Exception):
    """Raised when business constraints are violated."""

    status_code = 400

    def __init__(self, detail: str, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class UserNotFound(CreditRuleViolation):
    status_code = 404

    def __init__(self, user_id: UUID) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class SessionNotFound(CreditRuleViolation):
    status_code = 404

    def __init__(self, session_id: UUID) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class InvalidAmount(CreditRuleViolation):
    """Raised for zero or negative transaction amounts."""


class InvalidBooking(CreditRuleViolation):
    """Raised when a booking request is malformed or the teacher does not offer the skill."""


class InsufficientCredits(CreditRuleViolation):
    """Raised when a learner cannot cover the price of a booking."""

    status_code = 402

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient credits. Required: {required}, available: {available}.")
        self.required = required
        self.available = available


class NotAuthorized(CreditRuleViolation):
    """Raised when the acting user may not perform a transition."""

    status_code = 403


class InvalidState(CreditRuleViolation):
    """Raised when a transition is attempted from a state that does not permit it."""

    status_code = 409

    def __init__(self, detail: str, current=None) -> None:
        super().__init__(detail)
        self.current = current


class TooEarly(CreditRuleViolation):
    """Raised when a session is started before its join window opens."""

    status_code = 409

    def __init__(self, opens_at: datetime) -> None:
        super().__init__(f"Session cannot be started before {opens_at.isoformat()}Z.")
        self.opens_at = opens_at


class SchedulingConflict(CreditRuleViolation):
    """Raised when the requested slot overlaps one of the teacher's sessions."""

    status_code = 409

    def __init__(self, conflicting_session_id: UUID, starts_at: datetime, ends_at: datetime) -> None:
        super().__init__(
            "Time slot not available: overlaps session "
            f"{conflicting_session_id} ({starts_at.isoformat()}Z - {ends_at.isoformat()}Z)."
        )
        self.conflicting_session_id = conflicting_session_id
        self.starts_at = starts_at
        self.ends_at = ends_at


class LedgerInvariantViolation(CreditRuleViolation):
    """A mutation would have left a balance negative. Indicates a caller bug."""

    status_code = 500
