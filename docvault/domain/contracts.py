"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .account import Account, Role


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to create an account.

    A ``role`` of ``None`` asks the repository to apply the bootstrap rule:
    the first account ever created becomes ``owner``, every later one ``tester``.
    """

    email: str
    password_hash: str
    name: str = ""
    role: Role | None = None


@dataclass(slots=True)
class SessionClaims:
    """Identity extracted from a verified session token."""

    account_id: int
    role: Role

    @property
    def is_owner(self) -> bool:
        return self.role is Role.owner


@dataclass(slots=True)
class SessionGrant:
    """Token plus the account it was issued for."""

    token: str
    account: Account


@dataclass(slots=True)
class StoredDocument:
    """Raw document row as persisted: serialized JSON text and its timestamp."""

    value: str
    updated_at: datetime


@dataclass(slots=True)
class DocumentEntry:
    """Decoded document value with its last write timestamp."""

    value: Any
    updated_at: datetime
