"""Map provider raw records onto canonical Account / Transaction records.

Aggregators name the same things differently. Plaid (and the mock provider)
use ``transaction_id``/``name``/``iso_currency_code``; Yodlee nests amounts
and descriptions. Anything the mapping cannot make sense of raises
``RecordError`` so the engine can skip that one record.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Optional

from ..clients.errors import RecordError
from ..models import Account, Location, Transaction

logger = logging.getLogger(__name__)

RawRecord = dict[str, Any]


def new_local_id() -> str:
    """Fresh local record id."""
    return f"txn_{uuid.uuid4().hex[:16]}"


def _parse_date(value: Any, record_id: Optional[str]) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif not value or not isinstance(value, str):
        raise RecordError("Transaction has no date", record_id)
    else:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as e:
            raise RecordError(f"Unparseable date {value!r}", record_id) from e
    # Stored dates are naive local time
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _parse_amount(value: Any, record_id: Optional[str]) -> float:
    if isinstance(value, bool) or value is None:
        raise RecordError("Transaction has no amount", record_id)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise RecordError(f"Unparseable amount {value!r}", record_id) from e


def _parse_location(raw: Optional[dict[str, Any]]) -> Optional[Location]:
    if not raw:
        return None
    location = Location(
        address=raw.get("address"),
        city=raw.get("city"),
        region=raw.get("region") or raw.get("state"),
        postal_code=raw.get("postal_code") or raw.get("zip"),
        country=raw.get("country"),
        lat=raw.get("lat"),
        lon=raw.get("lon"),
    )
    return location if location.to_dict() else None


def _split_category(value: Any) -> tuple[Optional[str], Optional[str]]:
    """Plaid sends a category hierarchy list; others send a plain string."""
    if isinstance(value, list):
        if not value:
            return None, None
        return value[0], (value[-1] if len(value) > 1 else None)
    if isinstance(value, str) and value:
        return value, None
    return None, None


# Plaid-shaped records (Plaid and the mock provider)


def _plaid_account(raw: RawRecord, user_id: str, provider: str) -> Account:
    account_id = raw.get("account_id")
    if not account_id:
        raise RecordError("Account has no account_id")
    balances = raw.get("balances") or {}
    return Account(
        id=account_id,
        user_id=user_id,
        name=raw.get("name") or raw.get("official_name") or account_id,
        provider=provider,
        type=raw.get("type") or "depository",
        subtype=raw.get("subtype"),
        mask=raw.get("mask"),
        institution=raw.get("institution_name"),
        balance=balances.get("current"),
        available_balance=balances.get("available"),
        currency=balances.get("iso_currency_code") or "USD",
        updated_at=datetime.now(),
    )


def _plaid_transaction(raw: RawRecord, user_id: str, provider: str) -> Transaction:
    provider_id = raw.get("transaction_id")
    if not provider_id:
        raise RecordError("Transaction has no transaction_id")
    account_id = raw.get("account_id")
    if not account_id:
        raise RecordError("Transaction has no account_id", provider_id)
    category, subcategory = _split_category(raw.get("category"))
    name = raw.get("name") or ""
    return Transaction(
        id=new_local_id(),
        user_id=user_id,
        account_id=account_id,
        provider=provider,
        provider_transaction_id=provider_id,
        date=_parse_date(raw.get("date"), provider_id),
        amount=_parse_amount(raw.get("amount"), provider_id),
        description=name,
        original_description=raw.get("original_description") or name,
        merchant_name=raw.get("merchant_name"),
        category=category,
        subcategory=subcategory,
        currency=raw.get("iso_currency_code") or "USD",
        pending=bool(raw.get("pending", False)),
        location=_parse_location(raw.get("location")),
    )


# Yodlee


def _yodlee_account(raw: RawRecord, user_id: str, provider: str) -> Account:
    account_id = raw.get("id")
    if not account_id:
        raise RecordError("Account has no id")
    balance = raw.get("balance") or {}
    available = raw.get("availableBalance") or {}
    return Account(
        id=str(account_id),
        user_id=user_id,
        name=raw.get("accountName") or str(account_id),
        provider=provider,
        type=(raw.get("CONTAINER") or "bank").lower(),
        subtype=raw.get("accountType"),
        mask=raw.get("accountNumber"),
        institution=raw.get("providerName"),
        balance=balance.get("amount"),
        available_balance=available.get("amount"),
        currency=balance.get("currency") or "USD",
        updated_at=datetime.now(),
    )


def _yodlee_transaction(raw: RawRecord, user_id: str, provider: str) -> Transaction:
    provider_id = raw.get("id")
    if not provider_id:
        raise RecordError("Transaction has no id")
    provider_id = str(provider_id)
    account_id = raw.get("accountId")
    if not account_id:
        raise RecordError("Transaction has no accountId", provider_id)
    amount = raw.get("amount") or {}
    description = raw.get("description") or {}
    merchant = raw.get("merchant") or {}
    category, subcategory = _split_category(raw.get("category"))
    address = (merchant.get("address") or {}) if isinstance(merchant, dict) else {}
    return Transaction(
        id=new_local_id(),
        user_id=user_id,
        account_id=str(account_id),
        provider=provider,
        provider_transaction_id=provider_id,
        date=_parse_date(raw.get("transactionDate") or raw.get("date"), provider_id),
        amount=_parse_amount(amount.get("amount"), provider_id),
        description=description.get("simple") or description.get("original") or "",
        original_description=description.get("original"),
        merchant_name=merchant.get("name"),
        category=category,
        subcategory=subcategory,
        currency=amount.get("currency") or "USD",
        pending=str(raw.get("status", "")).upper() == "PENDING",
        location=_parse_location(address),
    )


_ACCOUNT_MAPPERS: dict[str, Callable[[RawRecord, str, str], Account]] = {
    "plaid": _plaid_account,
    "mock": _plaid_account,
    "yodlee": _yodlee_account,
}

_TRANSACTION_MAPPERS: dict[str, Callable[[RawRecord, str, str], Transaction]] = {
    "plaid": _plaid_transaction,
    "mock": _plaid_transaction,
    "yodlee": _yodlee_transaction,
}


def normalize_account(raw: RawRecord, user_id: str, provider: str) -> Account:
    """Build an Account from a provider raw account."""
    mapper = _ACCOUNT_MAPPERS.get(provider, _plaid_account)
    return mapper(raw, user_id, provider)


def normalize_transaction(raw: RawRecord, user_id: str, provider: str) -> Transaction:
    """Build a Transaction (with a fresh local id) from a provider raw transaction.

    Raises:
        RecordError: If the record lacks an id, account, date or amount.
    """
    if not isinstance(raw, dict):
        raise RecordError(f"Expected a mapping, got {type(raw).__name__}")
    mapper = _TRANSACTION_MAPPERS.get(provider, _plaid_transaction)
    return mapper(raw, user_id, provider)
