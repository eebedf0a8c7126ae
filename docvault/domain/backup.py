"""Whole-account backup export and restore."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from .documents import (
    CATEGORY_MAP,
    FINANCIAL_POSITION,
    LEDGER,
    REFERENCE_DATA,
    RULES,
    DocumentService,
    default_section,
)
from .errors import NotFound, ValidationError
from ..repository import AccountRepository

logger = logging.getLogger(__name__)

BACKUP_VERSION = "ft5-server"

REQUIRED_SECTIONS = (LEDGER, REFERENCE_DATA)
OPTIONAL_SECTIONS = (CATEGORY_MAP, RULES, FINANCIAL_POSITION)


class BackupService:
    """Exports an account's document set and restores it from a payload."""

    def __init__(self, accounts: AccountRepository, documents: DocumentService) -> None:
        self._accounts = accounts
        self._documents = documents

    def export(self, account_id: int) -> dict[str, Any]:
        """Build a backup payload: metadata followed by every stored document."""
        account = self._accounts.get_account(account_id)
        if account is None:
            raise NotFound("account not found")
        payload: dict[str, Any] = {
            "version": BACKUP_VERSION,
            "exportedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "user": {"email": account.email, "name": account.name},
        }
        payload.update(self._documents.get_values(account_id))
        return payload

    def restore(self, account_id: int, payload: Mapping[str, Any]) -> int:
        """Replace the account's sections with the ones in ``payload``.

        The ledger and reference-data sections are mandatory; the others fall
        back to their empty shapes. The payload is validated completely before
        the single atomic write. Returns the number of ledger operations restored.
        """
        documents = self._validate(payload)
        self._documents.upsert_many(account_id, documents)
        ops = documents[LEDGER].get("ops")
        count = len(ops) if isinstance(ops, list) else 0
        logger.info("restored backup for account %s (%d ledger ops)", account_id, count)
        return count

    def _validate(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(payload, Mapping):
            raise ValidationError("invalid backup")
        documents: dict[str, Any] = {}
        for key in REQUIRED_SECTIONS:
            value = payload.get(key)
            if not isinstance(value, dict):
                raise ValidationError("invalid backup")
            documents[key] = value
        for key in OPTIONAL_SECTIONS:
            value = payload.get(key)
            documents[key] = value if value is not None else default_section(key)
        return documents
