"""Coin escrow and settlement ledger for a task marketplace."""

__version__ = "0.1.0"
