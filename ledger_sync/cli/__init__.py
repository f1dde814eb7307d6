"""Command line interface for ledger-sync."""

from .main import main

__all__ = ["main"]
