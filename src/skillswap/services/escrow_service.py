"""Session lifecycle state machine and the credit escrow around it.

Booking debits the learner (escrow), completion pays the teacher at the base
rate, cancellation refunds the learner according to the notice given. Every
transition re-reads the session row under lock and applies a compare-and-set
on its status, so two participants racing on the same session cannot both
succeed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..models import ACTIVE_STATUSES, TERMINAL_STATUSES, SessionStatus, TeachingSession
from ..repositories import ledger_store
from ..utils.datetime import to_naive_utc
from . import ledger_service
from .errors import (
    InsufficientCredits,
    InvalidBooking,
    InvalidState,
    NotAuthorized,
    SchedulingConflict,
    SessionNotFound,
    TooEarly,
    UserNotFound,
)
from .notifications import (
    LoggingNotificationSink,
    NotificationKind,
    NotificationSink,
    defer_until_commit,
    queue_notification,
)
from .pricing import (
    EscrowPolicy,
    calculate_credit_cost,
    calculate_credits_earned,
    calculate_refund,
    can_join,
    join_opens_at,
)
from .video_service import VideoProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionDetails:
    session: TeachingSession
    can_join: bool
    join_url: Optional[str]


class SessionEscrowEngine:
    """Owns ``TeachingSession.status`` and ``credit_cost``; all credit movement goes through the ledger."""

    def __init__(
        self,
        policy: EscrowPolicy,
        *,
        notifier: Optional[NotificationSink] = None,
        video: Optional[VideoProvider] = None,
    ) -> None:
        self.policy = policy
        self.notifier = notifier or LoggingNotificationSink()
        self.video = video

    # === Transitions ===

    def create_session(
        self,
        db: Session,
        *,
        teacher_id: UUID,
        learner_id: UUID,
        skill_id: UUID,
        title: str,
        scheduled_at: datetime,
        duration: int,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TeachingSession:
        """Book a PENDING session and escrow its price from the learner.

        No meeting room is provisioned here; once the booking is committed the
        caller runs ``attach_video_room`` in a second unit of work.
        """

        if duration <= 0:
            raise InvalidBooking("Session duration must be a positive number of minutes.")
        if teacher_id == learner_id:
            raise InvalidBooking("Teacher and learner must be different users.")

        current = to_naive_utc(now)
        teacher = ledger_store.get_user(db, teacher_id)
        if teacher is None:
            raise UserNotFound(teacher_id)
        # Lock the learner so the sufficiency check and the debit see the same balance.
        learner = ledger_store.get_user(db, learner_id, for_update=True)
        if learner is None:
            raise UserNotFound(learner_id)

        if not ledger_store.teaches_skill(db, teacher_id, skill_id):
            raise InvalidBooking("Teacher cannot teach this skill.")

        starts_at = to_naive_utc(scheduled_at)
        ends_at = starts_at + timedelta(minutes=duration)
        self._ensure_available(db, teacher_id, starts_at, ends_at)

        credit_cost = calculate_credit_cost(duration, teacher.rating, teacher.completed_sessions, self.policy)
        if learner.credit_balance < credit_cost:
            raise InsufficientCredits(required=credit_cost, available=learner.credit_balance)

        record = ledger_store.insert_session(
            db,
            TeachingSession(
                teacher_id=teacher_id,
                learner_id=learner_id,
                skill_id=skill_id,
                title=title,
                description=description,
                scheduled_at=starts_at,
                ends_at=ends_at,
                duration=duration,
                status=SessionStatus.PENDING,
                credit_cost=credit_cost,
                created_at=current,
                updated_at=current,
            ),
        )

        ledger_service.spend_credits(
            db,
            user_id=learner_id,
            amount=credit_cost,
            description=f"Session booking: {title}",
            session_id=record.session_id,
            notifier=self.notifier,
            now=current,
        )

        self._notify(
            db,
            teacher_id,
            NotificationKind.SESSION_BOOKED,
            record,
            learner_id=str(learner_id),
            scheduled_at=starts_at.isoformat(),
        )
        logger.info("session %s booked for %s credits", record.session_id, credit_cost)
        return record

    def attach_video_room(self, db: Session, session_id: UUID) -> Optional[str]:
        """Provision a meeting room for a committed booking, best-effort.

        If the session was cancelled or already has a link by the time the
        provider answers, the new room is released again.
        """

        record = ledger_store.get_session(db, session_id)
        if record is None:
            raise SessionNotFound(session_id)
        if self.video is None or record.video_link or record.status not in ACTIVE_STATUSES:
            return record.video_link

        try:
            link = self.video.provision(record)
        except Exception:
            logger.exception("video provisioning failed for session %s", session_id)
            return None
        if not link:
            return None

        if not ledger_store.set_video_link(db, session_id, link):
            self._release_link(session_id, link)
            return ledger_store.get_session(db, session_id).video_link
        logger.info("video room attached to session %s", session_id)
        return link

    def confirm_session(
        self, db: Session, session_id: UUID, actor_id: UUID, *, now: Optional[datetime] = None
    ) -> TeachingSession:
        record = self._load(db, session_id)
        if actor_id != record.teacher_id:
            raise NotAuthorized("Only the teacher can confirm the session.")

        self._transition(db, record, SessionStatus.PENDING, SessionStatus.CONFIRMED, now=now)
        self._notify(db, record.learner_id, NotificationKind.SESSION_CONFIRMED, record)
        logger.info("session %s confirmed", session_id)
        return record

    def reschedule_session(
        self,
        db: Session,
        session_id: UUID,
        actor_id: UUID,
        new_scheduled_at: datetime,
        *,
        now: Optional[datetime] = None,
    ) -> TeachingSession:
        """Move a live session to a new slot; it returns to PENDING for re-confirmation."""

        record = self._load(db, session_id)
        self._ensure_participant(record, actor_id, "reschedule")
        if record.status in TERMINAL_STATUSES:
            raise InvalidState(
                f"Cannot reschedule a {record.status.value.lower()} session.", current=record.status
            )

        starts_at = to_naive_utc(new_scheduled_at)
        ends_at = starts_at + timedelta(minutes=record.duration)
        self._ensure_available(db, record.teacher_id, starts_at, ends_at, excluding=record.session_id)

        self._transition(
            db,
            record,
            record.status,
            SessionStatus.PENDING,
            now=now,
            scheduled_at=starts_at,
            ends_at=ends_at,
        )
        self._notify(
            db,
            self._other_party(record, actor_id),
            NotificationKind.SESSION_RESCHEDULED,
            record,
            requested_by=str(actor_id),
            scheduled_at=starts_at.isoformat(),
        )
        logger.info("session %s rescheduled to %s", session_id, starts_at.isoformat())
        return record

    def start_session(
        self, db: Session, session_id: UUID, actor_id: UUID, *, now: Optional[datetime] = None
    ) -> TeachingSession:
        current = to_naive_utc(now)
        record = self._load(db, session_id)
        self._ensure_participant(record, actor_id, "start")
        if record.status != SessionStatus.CONFIRMED:
            raise InvalidState("Session must be confirmed to start.", current=record.status)
        if not can_join(record.scheduled_at, current, self.policy):
            raise TooEarly(join_opens_at(record.scheduled_at, self.policy))

        self._transition(db, record, SessionStatus.CONFIRMED, SessionStatus.IN_PROGRESS, now=current)
        self._notify(db, self._other_party(record, actor_id), NotificationKind.SESSION_STARTED, record)
        logger.info("session %s started", session_id)
        return record

    def complete_session(
        self, db: Session, session_id: UUID, actor_id: UUID, *, now: Optional[datetime] = None
    ) -> TeachingSession:
        """Finish a session and pay the teacher at the base rate.

        The learner may have paid a premium price; the difference is kept by
        the platform and is not refunded to anyone.
        """

        current = to_naive_utc(now)
        record = self._load(db, session_id)
        self._ensure_participant(record, actor_id, "complete")

        self._transition(db, record, SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, now=current)

        earned = calculate_credits_earned(record.duration, self.policy)
        ledger_service.earn_credits(
            db,
            user_id=record.teacher_id,
            amount=earned,
            description=f"Teaching session completed: {record.title}",
            session_id=record.session_id,
            notifier=self.notifier,
            now=current,
        )
        ledger_store.increment_completed_sessions(db, record.teacher_id)

        for participant in (record.teacher_id, record.learner_id):
            self._notify(db, participant, NotificationKind.SESSION_COMPLETED, record, requires_rating=True)
        logger.info("session %s completed, teacher earned %s credits", session_id, earned)
        return record

    def cancel_session(
        self,
        db: Session,
        session_id: UUID,
        actor_id: UUID,
        reason: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> tuple[TeachingSession, int]:
        """Cancel a live session and refund the learner; returns the session and the refund."""

        current = to_naive_utc(now)
        record = self._load(db, session_id)
        self._ensure_participant(record, actor_id, "cancel")
        if record.status not in ACTIVE_STATUSES:
            raise InvalidState(f"Session is already {record.status.value.lower()}.", current=record.status)

        refund = calculate_refund(
            record.scheduled_at,
            record.credit_cost,
            cancelled_by_teacher=actor_id == record.teacher_id,
            now=current,
            policy=self.policy,
        )

        self._transition(
            db,
            record,
            record.status,
            SessionStatus.CANCELLED,
            now=current,
            cancelled_by=actor_id,
            cancellation_reason=reason,
        )

        if refund > 0:
            ledger_service.refund_credits(
                db,
                user_id=record.learner_id,
                amount=refund,
                description=f"Session cancellation refund{f': {reason}' if reason else ''}",
                session_id=record.session_id,
                notifier=self.notifier,
                now=current,
            )

        self._release_video(db, record)
        for participant in (record.teacher_id, record.learner_id):
            self._notify(
                db,
                participant,
                NotificationKind.SESSION_CANCELLED,
                record,
                cancelled_by=str(actor_id),
                reason=reason,
                refund=refund,
            )
        logger.info("session %s cancelled by %s, refund %s", session_id, actor_id, refund)
        return record, refund

    # === Queries ===

    def get_session_details(
        self, db: Session, session_id: UUID, actor_id: UUID, *, now: Optional[datetime] = None
    ) -> SessionDetails:
        record = ledger_store.get_session(db, session_id)
        if record is None:
            raise SessionNotFound(session_id)
        self._ensure_participant(record, actor_id, "view")

        joinable = record.status in (SessionStatus.CONFIRMED, SessionStatus.IN_PROGRESS) and can_join(
            record.scheduled_at, to_naive_utc(now), self.policy
        )
        return SessionDetails(session=record, can_join=joinable, join_url=record.video_link if joinable else None)

    def list_user_sessions(
        self,
        db: Session,
        *,
        user_id: UUID,
        status: Optional[SessionStatus] = None,
        role: Optional[str] = None,
        upcoming: bool = False,
        limit: int = 20,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> tuple[Sequence[TeachingSession], int]:
        """Sessions a user teaches and/or attends, latest slot first."""

        if role == "teacher":
            conditions = [TeachingSession.teacher_id == user_id]
        elif role == "learner":
            conditions = [TeachingSession.learner_id == user_id]
        else:
            conditions = [or_(TeachingSession.teacher_id == user_id, TeachingSession.learner_id == user_id)]
        if status is not None:
            conditions.append(TeachingSession.status == status)
        if upcoming:
            conditions.append(TeachingSession.scheduled_at >= to_naive_utc(now))

        total = db.execute(select(func.count(TeachingSession.session_id)).where(*conditions)).scalar_one()
        stmt = (
            select(TeachingSession)
            .where(*conditions)
            .order_by(TeachingSession.scheduled_at.desc())
            .offset(offset)
            .limit(max(1, min(limit, 100)))
        )
        return db.execute(stmt).scalars().all(), total

    def get_session_analytics(self, db: Session, user_id: UUID) -> dict[str, Any]:
        """Per-status counts and completed hours, split by teaching and learning role."""

        if ledger_store.get_user(db, user_id) is None:
            raise UserNotFound(user_id)

        analytics: dict[str, Any] = {}
        for role, column in (("teaching", TeachingSession.teacher_id), ("learning", TeachingSession.learner_id)):
            counts_stmt = (
                select(TeachingSession.status, func.count(TeachingSession.session_id))
                .where(column == user_id)
                .group_by(TeachingSession.status)
            )
            minutes_stmt = select(func.coalesce(func.sum(TeachingSession.duration), 0)).where(
                column == user_id,
                TeachingSession.status == SessionStatus.COMPLETED,
            )
            minutes = db.execute(minutes_stmt).scalar_one()
            analytics[role] = {
                "stats": {status.value.lower(): count for status, count in db.execute(counts_stmt).all()},
                "total_hours": round(minutes / 60, 2),
            }
        return analytics

    # === Helpers ===

    def _load(self, db: Session, session_id: UUID) -> TeachingSession:
        record = ledger_store.get_session(db, session_id, for_update=True)
        if record is None:
            raise SessionNotFound(session_id)
        return record

    @staticmethod
    def _ensure_participant(record: TeachingSession, actor_id: UUID, action: str) -> None:
        if actor_id not in (record.teacher_id, record.learner_id):
            raise NotAuthorized(f"Only session participants can {action} the session.")

    @staticmethod
    def _other_party(record: TeachingSession, actor_id: UUID) -> UUID:
        return record.learner_id if actor_id == record.teacher_id else record.teacher_id

    def _ensure_available(
        self,
        db: Session,
        teacher_id: UUID,
        starts_at: datetime,
        ends_at: datetime,
        *,
        excluding: Optional[UUID] = None,
    ) -> None:
        conflicts = ledger_store.find_overlapping_sessions(
            db, teacher_id, starts_at, ends_at, excluding_session_id=excluding
        )
        if conflicts:
            clash = conflicts[0]
            raise SchedulingConflict(clash.session_id, clash.scheduled_at, clash.ends_at)

    def _transition(
        self,
        db: Session,
        record: TeachingSession,
        expected: SessionStatus,
        new_status: SessionStatus,
        *,
        now: Optional[datetime] = None,
        **values,
    ) -> None:
        if record.status != expected:
            raise InvalidState(
                f"Session is {record.status.value}, expected {expected.value}.", current=record.status
            )
        changed = ledger_store.update_session_status(
            db, record.session_id, expected, new_status, updated_at=to_naive_utc(now), **values
        )
        if not changed:
            db.refresh(record)
            raise InvalidState(
                f"Session {record.session_id} changed concurrently (now {record.status.value}).",
                current=record.status,
            )

    def _notify(
        self, db: Session, user_id: UUID, kind: NotificationKind, record: TeachingSession, **extra
    ) -> None:
        payload = {"session_id": str(record.session_id), "title": record.title, **extra}
        queue_notification(db, self.notifier, user_id, kind, payload)

    def _release_video(self, db: Session, record: TeachingSession) -> None:
        # Attributes expire on commit; capture the link while the row is loaded.
        if record.video_link:
            session_id, link = record.session_id, record.video_link
            defer_until_commit(db, lambda: self._release_link(session_id, link))

    def _release_link(self, session_id: UUID, link: str) -> None:
        if self.video is None:
            return
        try:
            self.video.deprovision(link)
        except Exception:
            logger.exception("video deprovisioning failed for session %s", session_id)
