"""Account documents: default sections and the JSON boundary over storage."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from .contracts import DocumentEntry
from .errors import NotFound, ValidationError
from ..repository import DocumentRepository

logger = logging.getLogger(__name__)

LEDGER = "DB"
REFERENCE_DATA = "REF"
CATEGORY_MAP = "cpMap"
RULES = "rules"
FINANCIAL_POSITION = "FP"

SECTIONS = (LEDGER, REFERENCE_DATA, CATEGORY_MAP, RULES, FINANCIAL_POSITION)


def default_section(key: str) -> Any:
    """Return a fresh empty value for one of the known sections."""
    if key == LEDGER:
        return {"ops": [], "bal": 0}
    if key == REFERENCE_DATA:
        return {"incCats": [], "svcs": [], "expCats": [], "expTypes": []}
    if key == CATEGORY_MAP:
        return {}
    if key == RULES:
        return []
    if key == FINANCIAL_POSITION:
        return {"assets": [], "liabilities": [], "openBal": [], "clientObl": [], "accounts": []}
    raise KeyError(key)


def default_documents() -> dict[str, Any]:
    """The document set every new account starts with."""
    return {key: default_section(key) for key in SECTIONS}


def serialize_documents(documents: Mapping[str, Any]) -> dict[str, str]:
    """Serialize every value up front so a bad value fails before any write."""
    serialized: dict[str, str] = {}
    for key, value in documents.items():
        if not isinstance(key, str) or not key:
            raise ValidationError("document keys must be non-empty strings")
        serialized[key] = _dumps(key, value)
    return serialized


def _dumps(key: str, value: Any) -> str:
    try:
        return json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"value for {key!r} is not JSON serializable") from exc


class DocumentService:
    """Reads and writes an account's documents, translating to and from JSON."""

    def __init__(self, repository: DocumentRepository) -> None:
        self._repository = repository

    def get_all(self, account_id: int) -> dict[str, DocumentEntry]:
        """Return every document for the account.

        A stored value that is not valid JSON is returned as its raw text;
        the failure is logged and does not affect the other keys.
        """
        stored = self._repository.get_all(account_id)
        return {
            key: DocumentEntry(value=self._loads(account_id, key, row.value), updated_at=row.updated_at)
            for key, row in stored.items()
        }

    def get_values(self, account_id: int) -> dict[str, Any]:
        return {key: entry.value for key, entry in self.get_all(account_id).items()}

    def get_one(self, account_id: int, key: str) -> DocumentEntry:
        row = self._repository.get_one(account_id, key)
        if row is None:
            raise NotFound(f"document {key!r} not found")
        return DocumentEntry(value=self._loads(account_id, key, row.value), updated_at=row.updated_at)

    def upsert_one(self, account_id: int, key: str, value: Any) -> None:
        if not key:
            raise ValidationError("document key required")
        self._repository.upsert_one(account_id, key, _dumps(key, value))

    def upsert_many(self, account_id: int, documents: Mapping[str, Any]) -> None:
        """Replace all given documents in one atomic write."""
        serialized = serialize_documents(documents)
        self._repository.upsert_many(account_id, serialized)
        logger.debug("bulk saved %d documents for account %s", len(serialized), account_id)

    def delete_one(self, account_id: int, key: str) -> None:
        # deleting a missing key is not an error
        self._repository.delete_one(account_id, key)

    def _loads(self, account_id: int, key: str, text: str) -> Any:
        try:
            return json.loads(text)
        except ValueError:
            logger.warning("stored document %r for account %s is not valid JSON", key, account_id)
            return text
