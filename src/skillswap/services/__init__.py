"""Service layer exports."""

from . import (
	escrow_service,
	expiration_service,
	ledger_service,
	notifications,
	pricing,
	video_service,
)

__all__ = [
	"escrow_service",
	"expiration_service",
	"ledger_service",
	"notifications",
	"pricing",
	"video_service",
]
