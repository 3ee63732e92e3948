"""Dormant-balance warnings and expiry."""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.config import Settings
from ..models import User
from ..repositories import ledger_store
from ..utils.datetime import add_months, to_naive_utc
from . import ledger_service
from .errors import UserNotFound
from .notifications import LoggingNotificationSink, NotificationKind, NotificationSink, queue_notification

logger = logging.getLogger(__name__)

# Month-end clamping (Jan 31 + 1 month = Feb 28) pulls a horizon back by at
# most three days, so SQL pre-filters on last_active must allow that much.
MONTH_CLAMP_SLACK = timedelta(days=3)


class WarningStage(str, enum.Enum):
    ONE_MONTH = "one_month"
    ONE_WEEK = "one_week"
    FINAL = "final"


@dataclass(frozen=True)
class DormancyPolicy:
    expiration_months: int = 12
    one_month_window: timedelta = timedelta(days=30)
    one_week_window: timedelta = timedelta(days=7)
    final_window: timedelta = timedelta(hours=24)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DormancyPolicy":
        return cls(
            expiration_months=settings.expiration_months,
            one_month_window=timedelta(days=settings.warning_one_month_days),
            one_week_window=timedelta(days=settings.warning_one_week_days),
            final_window=timedelta(hours=settings.warning_final_hours),
        )

    def expiration_date(self, last_active: datetime) -> datetime:
        return add_months(last_active, self.expiration_months)

    def warning_stage(self, remaining: timedelta) -> Optional[WarningStage]:
        """Closest threshold that ``remaining`` falls within, if any."""

        if remaining <= timedelta(0):
            return None
        if remaining <= self.final_window:
            return WarningStage.FINAL
        if remaining <= self.one_week_window:
            return WarningStage.ONE_WEEK
        if remaining <= self.one_month_window:
            return WarningStage.ONE_MONTH
        return None


@dataclass(frozen=True)
class ExpirationInfo:
    has_credits: bool
    credit_balance: int
    expiration_date: Optional[datetime]
    days_until_expiration: Optional[int]
    is_expiring_soon: bool


class CreditExpirationSweeper:
    """Runs the warning and expiration passes over dormant balances."""

    def __init__(self, policy: DormancyPolicy, *, notifier: Optional[NotificationSink] = None) -> None:
        self.policy = policy
        self.notifier = notifier or LoggingNotificationSink()

    def run_warning_pass(self, db: Session, now: Optional[datetime] = None) -> dict[str, int]:
        """Queue at most one staged warning per user whose horizon is near.

        Returns summary statistics useful for logging/testing.
        """

        current = to_naive_utc(now)
        summary = {"users_scanned": 0, **{stage.value: 0 for stage in WarningStage}}

        # Coarse SQL bound; the exact calendar horizon is checked per user below.
        latest_candidate = add_months(current + self.policy.one_month_window, -self.policy.expiration_months)
        stmt = (
            select(User)
            .where(User.credit_balance > 0, User.last_active <= latest_candidate + MONTH_CLAMP_SLACK)
            .order_by(User.last_active.asc())
        )

        for user in db.execute(stmt).scalars():
            summary["users_scanned"] += 1
            expires_at = self.policy.expiration_date(user.last_active)
            stage = self.policy.warning_stage(expires_at - current)
            if stage is None:
                continue

            queue_notification(
                db,
                self.notifier,
                user.user_id,
                NotificationKind.CREDITS_EXPIRING,
                {
                    "warning_type": stage.value,
                    "credits_expiring": user.credit_balance,
                    "expiration_date": expires_at.isoformat(),
                },
            )
            summary[stage.value] += 1
            logger.info("expiration warning %s queued for user %s", stage.value, user.user_id)

        return summary

    def run_expiration_pass(self, db: Session, now: Optional[datetime] = None) -> dict[str, int]:
        """Spend the whole balance of every user dormant past the horizon.

        Returns summary statistics useful for logging/testing.
        """

        current = to_naive_utc(now)
        cutoff = add_months(current, -self.policy.expiration_months)
        summary = {"users_expired": 0, "credits_expired": 0, "users_skipped": 0}

        candidate_ids = db.execute(
            select(User.user_id).where(User.credit_balance > 0, User.last_active <= cutoff + MONTH_CLAMP_SLACK)
        ).scalars().all()

        for user_id in candidate_ids:
            # Re-read under lock right before spending: activity or earnings since
            # the candidate scan must win over the sweep.
            stmt = (
                select(User)
                .where(User.user_id == user_id)
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            user = db.execute(stmt).scalar_one_or_none()
            if user is None or user.credit_balance <= 0 or self.policy.expiration_date(user.last_active) >= current:
                summary["users_skipped"] += 1
                continue

            expired = user.credit_balance
            ledger_service.spend_credits(
                db,
                user_id=user.user_id,
                amount=expired,
                description=f"Credits expired due to {self.policy.expiration_months} months of inactivity",
                notifier=self.notifier,
                now=current,
            )
            queue_notification(
                db,
                self.notifier,
                user.user_id,
                NotificationKind.CREDITS_EXPIRED,
                {"expired_credits": expired, "reason": "inactivity"},
            )
            summary["users_expired"] += 1
            summary["credits_expired"] += expired
            logger.info("expired %s credits for inactive user %s", expired, user.user_id)

        return summary

    def reset_expiration_timer(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> datetime:
        """Record activity for a user, restarting their dormancy clock."""

        current = to_naive_utc(now)
        if not ledger_store.touch_last_active(db, user_id, current):
            raise UserNotFound(user_id)
        logger.debug("reset expiration timer for user %s", user_id)
        return current

    def get_credit_expiration_info(self, db: Session, user_id: UUID, now: Optional[datetime] = None) -> ExpirationInfo:
        user = ledger_store.get_user(db, user_id)
        if user is None:
            raise UserNotFound(user_id)

        if user.credit_balance <= 0:
            return ExpirationInfo(
                has_credits=False,
                credit_balance=user.credit_balance,
                expiration_date=None,
                days_until_expiration=None,
                is_expiring_soon=False,
            )

        expires_at = self.policy.expiration_date(user.last_active)
        remaining = expires_at - to_naive_utc(now)
        return ExpirationInfo(
            has_credits=True,
            credit_balance=user.credit_balance,
            expiration_date=expires_at,
            days_until_expiration=math.ceil(remaining / timedelta(days=1)),
            is_expiring_soon=remaining <= self.policy.one_month_window,
        )
