"""Public schema exports."""

from .credit import (
	BonusCreate,
	CreditBalance,
	CreditStatistics,
	ExpirationInfoRead,
	TransactionPage,
	TransactionRead,
)
from .session import (
	SessionAction,
	SessionCancel,
	SessionCancellationReceipt,
	SessionCreate,
	SessionDetailsRead,
	SessionList,
	SessionRead,
	SessionReschedule,
)

__all__ = [
	"BonusCreate",
	"CreditBalance",
	"CreditStatistics",
	"ExpirationInfoRead",
	"SessionAction",
	"SessionCancel",
	"SessionCancellationReceipt",
	"SessionCreate",
	"SessionDetailsRead",
	"SessionList",
	"SessionRead",
	"SessionReschedule",
	"TransactionPage",
	"TransactionRead",
]
