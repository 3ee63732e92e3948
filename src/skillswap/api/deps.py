"""Shared FastAPI dependencies for service singletons."""

from functools import lru_cache

from ..core.config import get_settings
from ..services.escrow_service import SessionEscrowEngine
from ..services.expiration_service import CreditExpirationSweeper, DormancyPolicy
from ..services.notifications import LoggingNotificationSink
from ..services.pricing import EscrowPolicy
from ..services.video_service import RoomLinkVideoProvider


@lru_cache(maxsize=1)
def get_notification_sink() -> LoggingNotificationSink:
    return LoggingNotificationSink()


@lru_cache(maxsize=1)
def get_escrow_engine() -> SessionEscrowEngine:
    """Engine configured from environment settings."""

    settings = get_settings()
    return SessionEscrowEngine(
        EscrowPolicy.from_settings(settings),
        notifier=get_notification_sink(),
        video=RoomLinkVideoProvider(settings.video_base_url),
    )


@lru_cache(maxsize=1)
def get_expiration_sweeper() -> CreditExpirationSweeper:
    return CreditExpirationSweeper(
        DormancyPolicy.from_settings(get_settings()),
        notifier=get_notification_sink(),
    )
