"""SkillSwap credit ledger and session escrow service."""

__version__ = "0.1.0"
