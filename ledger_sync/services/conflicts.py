"""Conflict resolution between a locally held record and fresh provider data.

Three strategies:

- provider_wins: provider-supplied values overwrite local ones
- local_wins: local values stay, provider only fills gaps
- merge: user edits survive, provider owns structural and enrichment fields

Resolution is pure: neither input is mutated.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from ..models import ConflictResolutionStrategy, ResolvedRecord, Transaction

logger = logging.getLogger(__name__)

# Fields the user edits locally
EDITABLE_FIELDS = ("description", "category", "subcategory")
# Provider enrichment; taken from the provider when it supplies a value
ENRICHMENT_FIELDS = ("merchant_name", "location", "original_description")
# Facts about the money movement; the provider is authoritative
STRUCTURAL_FIELDS = ("amount", "date", "account_id", "currency", "pending")
# Derived from the amount; always follow it
DERIVED_FIELDS = ("converted_amount", "converted_currency")

COMPARED_FIELDS = STRUCTURAL_FIELDS + EDITABLE_FIELDS + ENRICHMENT_FIELDS


def _differs(local_value: Any, provider_value: Any) -> bool:
    if provider_value is None:
        return False
    if isinstance(local_value, float) and isinstance(provider_value, float):
        return abs(local_value - provider_value) >= 0.005
    return local_value != provider_value


def find_conflicts(local: Transaction, provider: Transaction) -> list[str]:
    """Fields whose local value differs from a value the provider supplied."""
    return [
        name
        for name in COMPARED_FIELDS
        if _differs(getattr(local, name), getattr(provider, name))
    ]


def _provider_wins(local: Transaction, provider: Transaction) -> Transaction:
    resolved = copy.deepcopy(local)
    for name in COMPARED_FIELDS + DERIVED_FIELDS + ("category_confidence",):
        value = getattr(provider, name)
        if value is not None:
            setattr(resolved, name, copy.deepcopy(value))
            resolved.edited_fields.discard(name)
    return resolved


def _local_wins(local: Transaction, provider: Transaction) -> Transaction:
    resolved = copy.deepcopy(local)
    for name in COMPARED_FIELDS:
        if getattr(resolved, name) is None or getattr(resolved, name) == "":
            value = getattr(provider, name)
            if value is not None:
                setattr(resolved, name, copy.deepcopy(value))
    return resolved


def _merge(local: Transaction, provider: Transaction) -> Transaction:
    resolved = copy.deepcopy(local)
    for name in STRUCTURAL_FIELDS + DERIVED_FIELDS:
        setattr(resolved, name, copy.deepcopy(getattr(provider, name)))
    for name in EDITABLE_FIELDS:
        if name in local.edited_fields:
            continue
        value = getattr(provider, name)
        if value is not None:
            setattr(resolved, name, copy.deepcopy(value))
    if "category" not in local.edited_fields and provider.category is not None:
        resolved.category_confidence = provider.category_confidence
    for name in ENRICHMENT_FIELDS:
        value = getattr(provider, name)
        if value is not None:
            setattr(resolved, name, copy.deepcopy(value))
    # notes and other local-only fields stay as they are
    return resolved


_STRATEGIES = {
    ConflictResolutionStrategy.PROVIDER_WINS: _provider_wins,
    ConflictResolutionStrategy.LOCAL_WINS: _local_wins,
    ConflictResolutionStrategy.MERGE: _merge,
}


def resolve(
    local: Transaction,
    provider: Transaction,
    strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.MERGE,
) -> ResolvedRecord:
    """Reconcile a local record with the provider's version of it.

    The result keeps the local record id, takes ``provider_transaction_id``
    from the provider and is tagged with the strategy used.
    """
    conflict_fields = find_conflicts(local, provider)
    resolved = _STRATEGIES[strategy](local, provider)
    resolved.id = local.id
    resolved.provider_transaction_id = (
        provider.provider_transaction_id or local.provider_transaction_id
    )
    resolved.provider = provider.provider or local.provider
    resolved.conflict_resolution = strategy.value
    if conflict_fields:
        logger.debug(
            "Resolved %s with %s; conflicting fields: %s",
            local.id,
            strategy.value,
            ", ".join(conflict_fields),
        )
    return ResolvedRecord(record=resolved, strategy=strategy, conflict_fields=conflict_fields)
