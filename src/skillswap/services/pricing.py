"""Booking price, teacher payout, refund and join-window rules."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from fractions import Fraction

from ..core.config import Settings


@dataclass(frozen=True)
class EscrowPolicy:
    """Pricing and lifecycle constants for the escrow engine."""

    base_rate: int = 10
    premium_multiplier: float = 1.5
    premium_min_rating: float = 4.8
    premium_min_completed_sessions: int = 50
    join_window: timedelta = timedelta(minutes=15)
    full_refund_notice: timedelta = timedelta(hours=24)
    partial_refund_notice: timedelta = timedelta(hours=2)
    partial_refund_ratio: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "EscrowPolicy":
        return cls(
            base_rate=settings.base_rate,
            premium_multiplier=settings.premium_multiplier,
            premium_min_rating=settings.premium_min_rating,
            premium_min_completed_sessions=settings.premium_min_completed_sessions,
            join_window=timedelta(minutes=settings.join_window_minutes),
            full_refund_notice=timedelta(hours=settings.full_refund_hours),
            partial_refund_notice=timedelta(hours=settings.partial_refund_hours),
            partial_refund_ratio=settings.partial_refund_ratio,
        )


def _exact(value: float) -> Fraction:
    # Decimal literal semantics, so 1.5 and 0.5 never pick up binary rounding error.
    return Fraction(str(value))


def is_premium_teacher(rating: float, completed_sessions: int, policy: EscrowPolicy) -> bool:
    return rating >= policy.premium_min_rating and completed_sessions >= policy.premium_min_completed_sessions


def calculate_credit_cost(duration: int, rating: float, completed_sessions: int, policy: EscrowPolicy) -> int:
    """Price a booking: base rate per hour, times the premium multiplier for top teachers, rounded up."""

    hourly = Fraction(duration, 60) * policy.base_rate
    if is_premium_teacher(rating, completed_sessions, policy):
        hourly *= _exact(policy.premium_multiplier)
    return math.ceil(hourly)


def calculate_credits_earned(duration: int, policy: EscrowPolicy) -> int:
    """Teacher payout for a completed session, always at the base rate."""

    return math.ceil(Fraction(duration, 60) * policy.base_rate)


def calculate_refund(
    scheduled_at: datetime,
    credit_cost: int,
    *,
    cancelled_by_teacher: bool,
    now: datetime,
    policy: EscrowPolicy,
) -> int:
    """Credits returned to the learner when a session is cancelled at ``now``."""

    if cancelled_by_teacher:
        return credit_cost

    notice = scheduled_at - now
    if notice >= policy.full_refund_notice:
        return credit_cost
    if notice >= policy.partial_refund_notice:
        return math.floor(credit_cost * _exact(policy.partial_refund_ratio))
    return 0


def join_opens_at(scheduled_at: datetime, policy: EscrowPolicy) -> datetime:
    return scheduled_at - policy.join_window


def can_join(scheduled_at: datetime, now: datetime, policy: EscrowPolicy) -> bool:
    """True once ``now`` is inside the join window before ``scheduled_at`` (or later)."""

    return now >= join_opens_at(scheduled_at, policy)
