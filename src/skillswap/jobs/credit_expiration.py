"""Background scheduler for dormant-credit warnings and expiry."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from sqlalchemy.orm import Session

from ..api.deps import get_expiration_sweeper
from ..core.config import get_settings
from ..core.database import SessionLocal, session_scope
from ..services.expiration_service import CreditExpirationSweeper

logger = logging.getLogger(__name__)

settings = get_settings()

_scheduler = AsyncIOScheduler(timezone="UTC")


def sweep(session: Session, sweeper: CreditExpirationSweeper, now: datetime) -> dict[str, dict[str, int]]:
    """Run both passes in one unit of work; the caller commits."""

    return {
        "warnings": sweeper.run_warning_pass(session, now),
        "expirations": sweeper.run_expiration_pass(session, now),
    }


async def _execute_credit_sweep() -> None:
    try:
        summary = run_sweep_once()
    except Exception:  # pragma: no cover - safeguard for background job
        logger.exception("credit expiration sweep failed")
        raise
    logger.info("credit expiration sweep completed: %s", summary)


@_scheduler.scheduled_job(
    "cron",
    hour=settings.expiration_job_hour,
    minute=settings.expiration_job_minute,
    id="credit_expiration",
    misfire_grace_time=3600,
)
async def _scheduled_job() -> None:
    await _execute_credit_sweep()


def register_scheduler(app: FastAPI) -> None:
    """Attach APScheduler lifecycle hooks to the FastAPI app."""

    @app.on_event("startup")
    async def start_scheduler() -> None:
        if not _scheduler.running:
            _scheduler.start()
            logger.info("credit expiration scheduler started")

    @app.on_event("shutdown")
    async def shutdown_scheduler() -> None:
        if _scheduler.running:
            _scheduler.shutdown(wait=False)
            logger.info("credit expiration scheduler stopped")


def run_sweep_once(
    current_time: datetime | None = None,
    *,
    sweeper: CreditExpirationSweeper | None = None,
    session_factory=SessionLocal,
) -> dict[str, dict[str, int]]:
    """Run one sweep synchronously and commit it; used by the scheduler and for manual runs."""

    with session_scope(session_factory) as session:
        return sweep(session, sweeper or get_expiration_sweeper(), current_time or datetime.now(timezone.utc))
