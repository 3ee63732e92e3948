"""Video meeting provisioning collaborator."""

from __future__ import annotations

import logging
import secrets
from typing import Optional, Protocol

from ..models import TeachingSession

logger = logging.getLogger(__name__)


class VideoProvider(Protocol):
    def provision(self, session: TeachingSession) -> Optional[str]:
        ...

    def deprovision(self, meeting_ref: str) -> None:
        ...


class RoomLinkVideoProvider:
    """Issues unguessable room links under a fixed meeting host."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def provision(self, session: TeachingSession) -> Optional[str]:
        return f"{self.base_url}/{secrets.token_urlsafe(12)}"

    def deprovision(self, meeting_ref: str) -> None:
        logger.info("released video room %s", meeting_ref)
