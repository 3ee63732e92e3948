"""Session booking and lifecycle endpoints."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...models import SessionStatus
from ...schemas import (
    SessionAction,
    SessionCancel,
    SessionCancellationReceipt,
    SessionCreate,
    SessionDetailsRead,
    SessionList,
    SessionRead,
    SessionReschedule,
)
from ...services.errors import CreditRuleViolation
from ...services.escrow_service import SessionEscrowEngine
from ..deps import get_escrow_engine

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post(
    "",
    response_model=SessionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Book a session",
    responses={
        201: {
            "description": "Session booked and credits escrowed",
            "content": {
                "application/json": {
                    "example": {
                        "session_id": "44444444-4444-4444-4444-444444444444",
                        "teacher_id": "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa",
                        "learner_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
                        "skill_id": "cccccccc-cccc-cccc-cccc-cccccccccccc",
                        "title": "Intro to Python",
                        "description": None,
                        "scheduled_at": "2025-11-20T15:00:00",
                        "ends_at": "2025-11-20T16:00:00",
                        "duration": 60,
                        "status": "PENDING",
                        "credit_cost": 10,
                        "video_link": "https://meet.skillswap.local/Jx9kQ2mPz0aB",
                        "created_at": "2025-11-12T10:15:30",
                        "updated_at": "2025-11-12T10:15:30",
                    }
                }
            },
        },
        400: {"description": "Invalid booking"},
        402: {"description": "Insufficient credits"},
        404: {"description": "User not found"},
        409: {"description": "Time slot not available"},
    },
)
def create_session(
    payload: SessionCreate,
    db: Session = Depends(get_db),
    engine: SessionEscrowEngine = Depends(get_escrow_engine),
) -> SessionRead:
    """Book a teacher for a skill and escrow the learner's credits.

    Example request body::

        {
            "teacher_id": "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa",
            "learner_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
            "skill_id": "cccccccc-cccc-cccc-cccc-cccccccccccc",
            "title": "Intro to Python",
            "scheduled_at": "2025-11-20T15:00:00Z",
            "duration": 60
        }
    """

    try:
        record = engine.create_session(
            db,
            teacher_id=payload.teacher_id,
            learner_id=payload.learner_id,
            skill_id=payload.skill_id,
            title=payload.title,
            description=payload.description,
            scheduled_at=payload.scheduled_at,
            duration=payload.duration,
        )
        db.commit()
    except CreditRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    # The booking stands even if no meeting room can be provisioned.
    engine.attach_video_room(db, record.session_id)
    db.commit()
    db.refresh(record)
    return record


@router.get("", response_model=SessionList, summary="List a user's sessions")
def list_sessions(
    *,
    user_id: UUID = Query(..., description="Participant whose sessions to list"),
    status_filter: Optional[SessionStatus] = Query(None, alias="status"),
    role: Optional[str] = Query(None, pattern="^(teacher|learner)$"),
    upcoming: bool = Query(False, description="Only sessions scheduled from now on"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    engine: SessionEscrowEngine = Depends(get_escrow_engine),
) -> SessionList:
    items, total = engine.list_user_sessions(
        db,
        user_id=user_id,
        status=status_filter,
        role=role,
        upcoming=upcoming,
        limit=limit,
        offset=offset,
    )
    return SessionList(items=[SessionRead.model_validate(item) for item in items], total=total)


@router.get("/analytics", summary="Teaching and learning statistics")
def get_analytics(
    user_id: UUID = Query(...),
    db: Session = Depends(get_db),
    engine: SessionEscrowEngine = Depends(get_escrow_engine),
) -> dict:
    try:
        return engine.get_session_analytics(db, user_id)
    except CreditRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.get("/{session_id}", response_model=SessionDetailsRead, summary="Session details with join eligibility")
def get_session(
    session_id: UUID,
    actor_id: UUID = Query(..., description="Participant requesting the details"),
    db: Session = Depends(get_db),
    engine: SessionEscrowEngine = Depends(get_escrow_engine),
) -> SessionDetailsRead:
    try:
        return SessionDetailsRead.model_validate(engine.get_session_details(db, session_id, actor_id))
    except CreditRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post("/{session_id}/confirm", response_model=SessionRead, summary="Teacher confirms a booking")
def confirm_session(
    session_id: UUID,
    payload: SessionAction,
    db: Session = Depends(get_db),
    engine: SessionEscrowEngine = Depends(get_escrow_engine),
) -> SessionRead:
    try:
        record = engine.confirm_session(db, session_id, payload.actor_id)
        db.commit()
        db.refresh(record)
        return record
    except CreditRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post("/{session_id}/reschedule", response_model=SessionRead, summary="Move a session to a new slot")
def reschedule_session(
    session_id: UUID,
    payload: SessionReschedule,
    db: Session = Depends(get_db),
    engine: SessionEscrowEngine = Depends(get_escrow_engine),
) -> SessionRead:
    try:
        record = engine.reschedule_session(db, session_id, payload.actor_id, payload.scheduled_at)
        db.commit()
        db.refresh(record)
        return record
    except CreditRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post("/{session_id}/start", response_model=SessionRead, summary="Start a confirmed session")
def start_session(
    session_id: UUID,
    payload: SessionAction,
    db: Session = Depends(get_db),
    engine: SessionEscrowEngine = Depends(get_escrow_engine),
) -> SessionRead:
    try:
        record = engine.start_session(db, session_id, payload.actor_id)
        db.commit()
        db.refresh(record)
        return record
    except CreditRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post("/{session_id}/complete", response_model=SessionRead, summary="Complete a session and pay the teacher")
def complete_session(
    session_id: UUID,
    payload: SessionAction,
    db: Session = Depends(get_db),
    engine: SessionEscrowEngine = Depends(get_escrow_engine),
) -> SessionRead:
    try:
        record = engine.complete_session(db, session_id, payload.actor_id)
        db.commit()
        db.refresh(record)
        return record
    except CreditRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post(
    "/{session_id}/cancel",
    response_model=SessionCancellationReceipt,
    summary="Cancel a session",
    responses={403: {"description": "Not a participant"}, 409: {"description": "Session already finished"}},
)
def cancel_session(
    session_id: UUID,
    payload: SessionCancel,
    db: Session = Depends(get_db),
    engine: SessionEscrowEngine = Depends(get_escrow_engine),
) -> SessionCancellationReceipt:
    """Cancel a session; the learner is refunded according to the notice given."""

    try:
        record, refund = engine.cancel_session(db, session_id, payload.actor_id, payload.reason)
        db.commit()
        db.refresh(record)
        return SessionCancellationReceipt(session=SessionRead.model_validate(record), refunded_credits=refund)
    except CreditRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
