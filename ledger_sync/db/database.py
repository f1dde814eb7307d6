"""SQLite database management for ledger-sync.

Handles connection management and provides query methods for:
- Reconciled transactions (keyed by local id, unique provider transaction id)
- Accounts
- Per-account sync state (last successful sync watermark)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from ..models import Account, DateRange, Location, Transaction

__all__ = ["Database"]

logger = logging.getLogger(__name__)

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _now_iso() -> str:
    """Return current datetime as ISO format string."""
    return datetime.now().strftime(_TS_FORMAT)


def _ts(dt: Optional[datetime]) -> Optional[str]:
    return dt.strftime(_TS_FORMAT) if dt else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


_TRANSACTION_COLUMNS = (
    "id, user_id, account_id, provider, provider_transaction_id, date, amount, description, "
    "original_description, merchant_name, category, subcategory, category_confidence, currency, "
    "pending, location, notes, edited_fields, converted_amount, converted_currency, quality_score, "
    "conflict_resolution, needs_review, review_candidate_ids, created_at, updated_at"
)
# created_at is kept from the first insert
_UPDATE_ASSIGNMENTS = ", ".join(
    f"{col}=excluded.{col}"
    for col in (c.strip() for c in _TRANSACTION_COLUMNS.split(","))
    if col not in ("id", "created_at")
)


class Database:
    """SQLite store for reconciled records and sync bookkeeping.

    Implements the engine's ``Store`` protocol. One connection is shared and
    serialized with a re-entrant lock, so a Database may be used from the
    worker pool's threads.
    """

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create a persistent database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    def close(self):
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _count(self, table: str, where: str = "", params: tuple[Any, ...] = ()) -> int:
        """Count rows in a table with optional WHERE clause."""
        query = f"SELECT COUNT(*) as count FROM {table}"
        if where:
            query += f" WHERE {where}"
        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()
            return int(row["count"]) if row else 0

    def _init_schema(self):
        """Create database tables if they don't exist."""
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT,
                    account_id TEXT NOT NULL,
                    provider TEXT,
                    provider_transaction_id TEXT,
                    date TIMESTAMP NOT NULL,
                    amount REAL NOT NULL,
                    description TEXT,
                    original_description TEXT,
                    merchant_name TEXT,
                    category TEXT,
                    subcategory TEXT,
                    category_confidence REAL,
                    currency TEXT DEFAULT 'USD',
                    pending BOOLEAN DEFAULT 0,
                    location TEXT,
                    notes TEXT,
                    edited_fields TEXT,
                    converted_amount REAL,
                    converted_currency TEXT,
                    quality_score REAL,
                    conflict_resolution TEXT,
                    needs_review BOOLEAN DEFAULT 0,
                    review_candidate_ids TEXT,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP
                );
                CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_provider_id
                    ON transactions(provider_transaction_id);
                CREATE INDEX IF NOT EXISTS idx_transactions_account_date
                    ON transactions(account_id, date);
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    provider TEXT,
                    type TEXT,
                    subtype TEXT,
                    mask TEXT,
                    institution TEXT,
                    balance REAL,
                    available_balance REAL,
                    currency TEXT DEFAULT 'USD',
                    is_active BOOLEAN DEFAULT 1,
                    updated_at TIMESTAMP
                );
                CREATE TABLE IF NOT EXISTS sync_state (
                    user_id TEXT NOT NULL,
                    account_id TEXT NOT NULL,
                    last_synced_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (user_id, account_id)
                );
            """)
            self._run_migrations(conn)

    def _run_migrations(self, conn: sqlite3.Connection) -> None:
        """Bring databases created by older versions up to the current schema."""
        cursor = conn.execute("PRAGMA table_info(transactions)")
        columns = {row[1] for row in cursor.fetchall()}
        if "needs_review" not in columns:
            conn.execute("ALTER TABLE transactions ADD COLUMN needs_review BOOLEAN DEFAULT 0")
        if "review_candidate_ids" not in columns:
            conn.execute("ALTER TABLE transactions ADD COLUMN review_candidate_ids TEXT")

    def clear_all(self) -> dict[str, int]:
        """Delete every row. Returns the number of rows removed per table."""
        counts = {}
        with self._connection() as conn:
            for table in ("transactions", "accounts", "sync_state"):
                counts[table] = conn.execute(f"DELETE FROM {table}").rowcount
        return counts

    # Transactions

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        location = json.loads(row["location"]) if row["location"] else None
        return Transaction(
            id=row["id"],
            user_id=row["user_id"] or "",
            account_id=row["account_id"],
            provider=row["provider"] or "",
            provider_transaction_id=row["provider_transaction_id"],
            date=datetime.fromisoformat(row["date"]),
            amount=row["amount"],
            description=row["description"] or "",
            original_description=row["original_description"],
            merchant_name=row["merchant_name"],
            category=row["category"],
            subcategory=row["subcategory"],
            category_confidence=row["category_confidence"],
            currency=row["currency"] or "USD",
            pending=bool(row["pending"]),
            location=Location.from_dict(location) if location else None,
            notes=row["notes"],
            edited_fields=set(json.loads(row["edited_fields"])) if row["edited_fields"] else set(),
            converted_amount=row["converted_amount"],
            converted_currency=row["converted_currency"],
            quality_score=row["quality_score"],
            conflict_resolution=row["conflict_resolution"],
            needs_review=bool(row["needs_review"]),
            review_candidate_ids=(
                json.loads(row["review_candidate_ids"]) if row["review_candidate_ids"] else []
            ),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def upsert(self, record: Transaction) -> bool:
        """Insert or update a transaction by local id.

        Returns:
            True if a new row was inserted, False if an existing row was updated.
        """
        now = _now_iso()
        with self._connection() as conn:
            existing = conn.execute(
                "SELECT created_at FROM transactions WHERE id = ?", (record.id,)
            ).fetchone()
            created_at = existing["created_at"] if existing else (_ts(record.created_at) or now)
            conn.execute(
                f"""INSERT INTO transactions ({_TRANSACTION_COLUMNS})
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET {_UPDATE_ASSIGNMENTS}""",
                (
                    record.id,
                    record.user_id,
                    record.account_id,
                    record.provider,
                    record.provider_transaction_id,
                    _ts(record.date),
                    record.amount,
                    record.description,
                    record.original_description,
                    record.merchant_name,
                    record.category,
                    record.subcategory,
                    record.category_confidence,
                    record.currency,
                    record.pending,
                    json.dumps(record.location.to_dict()) if record.location else None,
                    record.notes,
                    json.dumps(sorted(record.edited_fields)),
                    record.converted_amount,
                    record.converted_currency,
                    record.quality_score,
                    record.conflict_resolution,
                    record.needs_review,
                    json.dumps(record.review_candidate_ids) if record.review_candidate_ids else None,
                    created_at,
                    now,
                ),
            )
        if existing:
            logger.debug("Updated transaction %s", record.id)
        else:
            logger.debug("Inserted transaction %s", record.id)
        return existing is None

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get a single transaction by local id."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_TRANSACTION_COLUMNS} FROM transactions WHERE id = ?",
                (transaction_id,),
            ).fetchone()
            return self._row_to_transaction(row) if row else None

    def find_by_provider_id(self, provider_transaction_id: str) -> Optional[Transaction]:
        """Get the transaction carrying an aggregator transaction id."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_TRANSACTION_COLUMNS} FROM transactions WHERE provider_transaction_id = ?",
                (provider_transaction_id,),
            ).fetchone()
            return self._row_to_transaction(row) if row else None

    def find_window(self, account_id: str, date_range: DateRange) -> list[Transaction]:
        """Transactions of an account whose date falls inside the range."""
        with self._connection() as conn:
            rows = conn.execute(
                f"""SELECT {_TRANSACTION_COLUMNS} FROM transactions
                WHERE account_id = ? AND date >= ? AND date <= ? ORDER BY date""",
                (account_id, _ts(date_range.start), _ts(date_range.end)),
            ).fetchall()
            return [self._row_to_transaction(row) for row in rows]

    def get_transactions(
        self,
        user_id: Optional[str] = None,
        account_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """Query transactions, newest first."""
        conditions, params = [], []
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if account_id:
            conditions.append("account_id = ?")
            params.append(account_id)
        where_clause = " AND ".join(conditions) if conditions else "1=1"
        limit_clause = f"LIMIT {int(limit)}" if limit else ""
        with self._connection() as conn:
            rows = conn.execute(
                f"""SELECT {_TRANSACTION_COLUMNS} FROM transactions
                WHERE {where_clause} ORDER BY date DESC {limit_clause}""",
                params,
            ).fetchall()
            return [self._row_to_transaction(row) for row in rows]

    def get_transaction_count(self, user_id: Optional[str] = None) -> int:
        if user_id:
            return self._count("transactions", "user_id = ?", (user_id,))
        return self._count("transactions")

    def get_uncategorized_count(self) -> int:
        return self._count("transactions", "category IS NULL")

    def get_review_transactions(self, user_id: Optional[str] = None) -> list[Transaction]:
        """Transactions flagged as possible duplicates, newest first."""
        query = f"SELECT {_TRANSACTION_COLUMNS} FROM transactions WHERE needs_review = 1"
        params: tuple[Any, ...] = ()
        if user_id:
            query += " AND user_id = ?"
            params = (user_id,)
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY date DESC", params).fetchall()
            return [self._row_to_transaction(row) for row in rows]

    def get_review_count(self) -> int:
        return self._count("transactions", "needs_review = 1")

    # Accounts

    def upsert_account(self, account: Account) -> bool:
        """Insert or update an account. Returns True if it was inserted."""
        with self._connection() as conn:
            existing = conn.execute(
                "SELECT id FROM accounts WHERE id = ?", (account.id,)
            ).fetchone()
            conn.execute(
                """INSERT OR REPLACE INTO accounts (id, user_id, name, provider, type, subtype, mask,
                institution, balance, available_balance, currency, is_active, updated_at)
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)""",
                (
                    account.id,
                    account.user_id,
                    account.name,
                    account.provider,
                    account.type,
                    account.subtype,
                    account.mask,
                    account.institution,
                    account.balance,
                    account.available_balance,
                    account.currency,
                    account.is_active,
                    _ts(account.updated_at) or _now_iso(),
                ),
            )
            return existing is None

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            provider=row["provider"] or "",
            type=row["type"] or "depository",
            subtype=row["subtype"],
            mask=row["mask"],
            institution=row["institution"],
            balance=row["balance"],
            available_balance=row["available_balance"],
            currency=row["currency"] or "USD",
            is_active=bool(row["is_active"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def get_accounts(self, user_id: Optional[str] = None) -> list[Account]:
        query = "SELECT * FROM accounts"
        params: tuple[Any, ...] = ()
        if user_id:
            query += " WHERE user_id = ?"
            params = (user_id,)
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY name", params).fetchall()
            return [self._row_to_account(row) for row in rows]

    def get_account_count(self) -> int:
        return self._count("accounts")

    # Sync state

    def get_last_synced(self, user_id: str, account_id: str) -> Optional[datetime]:
        """Get the last successful sync time for an account."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT last_synced_at FROM sync_state WHERE user_id = ? AND account_id = ?",
                (user_id, account_id),
            ).fetchone()
            return _parse_ts(row["last_synced_at"]) if row else None

    def set_last_synced(self, user_id: str, account_id: str, when: datetime) -> None:
        """Update sync state for an account."""
        with self._connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_state (user_id, account_id, last_synced_at) VALUES (?,?,?)",
                (user_id, account_id, _ts(when)),
            )

    def get_sync_states(self, user_id: Optional[str] = None) -> list[dict[str, Any]]:
        """All sync watermarks, most recent first."""
        query = "SELECT user_id, account_id, last_synced_at FROM sync_state"
        params: tuple[Any, ...] = ()
        if user_id:
            query += " WHERE user_id = ?"
            params = (user_id,)
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY last_synced_at DESC", params).fetchall()
            return [
                {
                    "user_id": row["user_id"],
                    "account_id": row["account_id"],
                    "last_synced_at": _parse_ts(row["last_synced_at"]),
                }
                for row in rows
            ]
