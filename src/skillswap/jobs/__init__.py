"""Background jobs."""

from .credit_expiration import register_scheduler, run_sweep_once

__all__ = ["register_scheduler", "run_sweep_once"]
