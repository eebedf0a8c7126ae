from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    owner = "owner"
    tester = "tester"


@dataclass(slots=True)
class Account:
    """Public view of a registered account; never carries the password hash."""

    account_id: int
    email: str
    name: str
    role: Role
    created_at: datetime

    @property
    def is_owner(self) -> bool:
        return self.role is Role.owner


@dataclass(slots=True)
class AccountCredentials:
    """Account plus its stored password hash, used only for login checks."""

    account: Account
    password_hash: str
