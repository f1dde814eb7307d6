"""In-memory consent gate."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .protocols import ConsentType, Permission

logger = logging.getLogger(__name__)


class StaticConsentGate:
    """Consent gate backed by an in-memory grant table.

    With ``allow_all=True`` every user is treated as consenting, which is what
    the CLI uses for local and mock runs.
    """

    def __init__(self, allow_all: bool = False):
        self._allow_all = allow_all
        self._grants: dict[tuple[str, ConsentType], set[Permission]] = {}

    def grant(
        self,
        user_id: str,
        permissions: Optional[Iterable[Permission]] = None,
        consent_type: ConsentType = ConsentType.FINANCIAL_DATA,
    ) -> None:
        perms = set(permissions) if permissions is not None else set(Permission)
        self._grants.setdefault((user_id, consent_type), set()).update(perms)

    def revoke(self, user_id: str, consent_type: ConsentType = ConsentType.FINANCIAL_DATA) -> None:
        self._grants.pop((user_id, consent_type), None)

    def has_consent(
        self, user_id: str, consent_type: ConsentType, permissions: list[Permission]
    ) -> bool:
        if self._allow_all:
            return True
        granted = self._grants.get((user_id, consent_type), set())
        missing = set(permissions) - granted
        if missing:
            logger.debug(
                "Consent check failed for user %s: missing %s",
                user_id,
                sorted(p.value for p in missing),
            )
            return False
        return True
