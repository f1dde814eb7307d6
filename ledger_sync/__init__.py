"""ledger-sync: synchronization and reconciliation engine for aggregated bank data."""

__version__ = "0.1.0"
