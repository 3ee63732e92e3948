"""Data-access primitives shared by the credit and session services."""

from . import ledger_store

__all__ = ["ledger_store"]
