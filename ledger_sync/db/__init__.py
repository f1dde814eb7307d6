"""Database layer for ledger-sync."""

from .database import Database

__all__ = ["Database"]
