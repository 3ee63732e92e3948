"""Credit balance, history and expiration endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ...core.config import get_settings
from ...core.database import get_db
from ...models import TransactionType
from ...schemas import (
    BonusCreate,
    CreditBalance,
    CreditStatistics,
    ExpirationInfoRead,
    TransactionPage,
    TransactionRead,
)
from ...services import ledger_service
from ...services.errors import CreditRuleViolation
from ...services.expiration_service import CreditExpirationSweeper
from ..deps import get_expiration_sweeper, get_notification_sink

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=CreditBalance, summary="Get credit balance")
def get_balance(
    user_id: UUID = Query(..., description="User whose balance to read"),
    db: Session = Depends(get_db),
) -> CreditBalance:
    try:
        return CreditBalance(user_id=user_id, balance=ledger_service.get_balance(db, user_id))
    except CreditRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.get(
    "/transactions",
    response_model=TransactionPage,
    summary="List transactions",
    responses={
        200: {
            "description": "Paged transaction history, newest first",
            "content": {
                "application/json": {
                    "example": {
                        "items": [
                            {
                                "transaction_id": 42,
                                "user_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
                                "transaction_type": "SPENT",
                                "amount": 15,
                                "description": "Session booking: Intro to Python",
                                "session_id": "44444444-4444-4444-4444-444444444444",
                                "payment_reference": None,
                                "created_at": "2025-11-12T14:30:00",
                            }
                        ],
                        "total": 1,
                        "page": 1,
                        "limit": 20,
                        "total_pages": 1,
                    }
                }
            },
        },
        404: {"description": "User not found"},
    },
)
def list_transactions(
    *,
    user_id: UUID = Query(..., description="User whose history to read"),
    transaction_type: Optional[TransactionType] = Query(None, description="Filter by transaction type"),
    start_date: Optional[datetime] = Query(None, description="Earliest creation time (inclusive)"),
    end_date: Optional[datetime] = Query(None, description="Latest creation time (inclusive)"),
    session_id: Optional[UUID] = Query(None, description="Filter by related session"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
) -> TransactionPage:
    """Fetch a user's transaction history with optional filters."""

    try:
        result = ledger_service.get_transaction_history(
            db,
            user_id=user_id,
            transaction_type=transaction_type,
            start=start_date,
            end=end_date,
            session_id=session_id,
            page=page,
            limit=limit,
        )
    except CreditRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return TransactionPage.model_validate(result)


@router.get("/statistics", response_model=CreditStatistics, summary="Credit totals by type")
def get_statistics(
    user_id: UUID = Query(...),
    db: Session = Depends(get_db),
) -> CreditStatistics:
    try:
        return CreditStatistics.model_validate(ledger_service.get_statistics(db, user_id))
    except CreditRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.get("/expiration", response_model=ExpirationInfoRead, summary="Credit expiration information")
def get_expiration_info(
    user_id: UUID = Query(...),
    db: Session = Depends(get_db),
    sweeper: CreditExpirationSweeper = Depends(get_expiration_sweeper),
) -> ExpirationInfoRead:
    try:
        return ExpirationInfoRead.model_validate(sweeper.get_credit_expiration_info(db, user_id))
    except CreditRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post("/activity", response_model=ExpirationInfoRead, summary="Record user activity")
def record_activity(
    user_id: UUID = Query(...),
    db: Session = Depends(get_db),
    sweeper: CreditExpirationSweeper = Depends(get_expiration_sweeper),
) -> ExpirationInfoRead:
    """Restart the dormancy clock for a user (login or session activity)."""

    try:
        sweeper.reset_expiration_timer(db, user_id)
        db.commit()
        return ExpirationInfoRead.model_validate(sweeper.get_credit_expiration_info(db, user_id))
    except CreditRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post(
    "/bonus",
    response_model=TransactionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Award bonus credits",
    responses={400: {"description": "Invalid amount"}, 404: {"description": "User not found"}},
)
def award_bonus(
    payload: BonusCreate,
    db: Session = Depends(get_db),
) -> TransactionRead:
    """Grant promotional or referral credits.

    Example request body::

        {
            "user_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
            "amount": 25,
            "description": "Referral bonus"
        }
    """

    try:
        transaction = ledger_service.award_bonus_credits(
            db,
            user_id=payload.user_id,
            amount=payload.amount,
            description=payload.description,
            notifier=get_notification_sink(),
        )
        db.commit()
        db.refresh(transaction)
        return transaction
    except CreditRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post(
    "/starter",
    response_model=TransactionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Award welcome credits",
)
def award_starter(
    user_id: UUID = Query(...),
    db: Session = Depends(get_db),
) -> TransactionRead:
    try:
        transaction = ledger_service.award_starter_credits(
            db,
            user_id=user_id,
            amount=get_settings().starter_credits,
            notifier=get_notification_sink(),
        )
        db.commit()
        db.refresh(transaction)
        return transaction
    except CreditRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
