from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Mapping

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from docvault.api import routes
from docvault.config import Settings
from docvault.domain.account import Account, AccountCredentials, Role
from docvault.domain.backup import BackupService
from docvault.domain.contracts import CreateAccountInput, StoredDocument
from docvault.domain.documents import DocumentService
from docvault.domain.errors import Conflict, NotFound, StorageFailure
from docvault.domain.service import AccountService
from docvault.main import wire_services
from docvault.security.rate_limiter import SlidingWindowRateLimiter
from docvault.security.tokens import SessionIssuer

TEST_SETTINGS = Settings(
    jwt_secret="test-secret",
    jwt_issuer="docvault-test",
    session_ttl_seconds=3600,
    password_hash_iterations=1000,
    min_password_length=4,
)


class FakeDatabase:
    """Shared in-memory tables so account deletion can cascade to documents."""

    def __init__(self) -> None:
        self.accounts: dict[int, AccountCredentials] = {}
        self.documents: dict[tuple[int, str], StoredDocument] = {}
        self._sequence = 0
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def next_id(self) -> int:
        self._sequence += 1
        return self._sequence

    def now(self) -> datetime:
        # strictly increasing so ordering by creation time is deterministic
        self._clock += timedelta(seconds=1)
        return self._clock


class FakeAccountRepository:
    """In-memory repository mimicking the Postgres credential store."""

    def __init__(self, db: FakeDatabase) -> None:
        self._db = db

    def create_account(
        self, payload: CreateAccountInput, seed_documents: Mapping[str, str] | None = None
    ) -> Account:
        if any(record.account.email == payload.email for record in self._db.accounts.values()):
            raise Conflict("email already registered")
        role = payload.role
        if role is None:
            role = Role.tester if self._db.accounts else Role.owner
        account = Account(
            account_id=self._db.next_id(),
            email=payload.email,
            name=payload.name,
            role=role,
            created_at=self._db.now(),
        )
        self._db.accounts[account.account_id] = AccountCredentials(account, payload.password_hash)
        for key, text in (seed_documents or {}).items():
            self._db.documents[(account.account_id, key)] = StoredDocument(text, self._db.now())
        return account

    def find_by_email(self, email: str) -> AccountCredentials | None:
        for record in self._db.accounts.values():
            if record.account.email == email:
                return record
        return None

    def get_account(self, account_id: int) -> Account | None:
        record = self._db.accounts.get(account_id)
        return record.account if record else None

    def list_accounts(self) -> list[Account]:
        accounts = [record.account for record in self._db.accounts.values()]
        return sorted(accounts, key=lambda a: (a.created_at, a.account_id))

    def update_account(self, account_id: int, name: str, role: Role) -> Account | None:
        record = self._db.accounts.get(account_id)
        if record is None:
            return None
        record.account = dataclasses.replace(record.account, name=name, role=role)
        return record.account

    def delete_account(self, account_id: int) -> bool:
        if self._db.accounts.pop(account_id, None) is None:
            return False
        for key in [k for k in self._db.documents if k[0] == account_id]:
            del self._db.documents[key]
        return True


class FakeDocumentRepository:
    """In-memory document table; ``fail_on_key`` simulates a write failing mid-batch."""

    def __init__(self, db: FakeDatabase) -> None:
        self._db = db
        self.fail_on_key: str | None = None

    def get_all(self, account_id: int) -> dict[str, StoredDocument]:
        return {key: row for (owner, key), row in sorted(self._db.documents.items()) if owner == account_id}

    def get_one(self, account_id: int, key: str) -> StoredDocument | None:
        return self._db.documents.get((account_id, key))

    def upsert_one(self, account_id: int, key: str, value: str) -> None:
        self._require_account(account_id)
        if key == self.fail_on_key:
            raise StorageFailure("storage failure")
        self._db.documents[(account_id, key)] = StoredDocument(value, self._db.now())

    def upsert_many(self, account_id: int, documents: Mapping[str, str]) -> None:
        self._require_account(account_id)
        staged = dict(self._db.documents)
        for key, value in documents.items():
            if key == self.fail_on_key:
                raise StorageFailure("storage failure")
            staged[(account_id, key)] = StoredDocument(value, self._db.now())
        self._db.documents = staged

    def delete_one(self, account_id: int, key: str) -> bool:
        return self._db.documents.pop((account_id, key), None) is not None

    def _require_account(self, account_id: int) -> None:
        if account_id not in self._db.accounts:
            raise NotFound("account not found")


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def account_repository(database) -> FakeAccountRepository:
    return FakeAccountRepository(database)


@pytest.fixture
def document_repository(database) -> FakeDocumentRepository:
    return FakeDocumentRepository(database)


@pytest.fixture
def issuer() -> SessionIssuer:
    return SessionIssuer.from_settings(TEST_SETTINGS)


@pytest.fixture
def account_service(account_repository, issuer) -> AccountService:
    return AccountService(
        account_repository,
        issuer,
        min_password_length=TEST_SETTINGS.min_password_length,
        password_hash_iterations=TEST_SETTINGS.password_hash_iterations,
    )


@pytest.fixture
def document_service(document_repository) -> DocumentService:
    return DocumentService(document_repository)


@pytest.fixture
def backup_service(account_repository, document_service) -> BackupService:
    return BackupService(account_repository, document_service)


@pytest.fixture
def api_client(account_repository, document_repository):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    routes.install_exception_handlers(app)
    app.include_router(routes.router, prefix="/api")
    wire_services(app, TEST_SETTINGS, account_repository, document_repository)

    original_limiter = routes.rate_limiter
    routes.rate_limiter = SlidingWindowRateLimiter(max_requests=100, window_seconds=60)

    with TestClient(app) as client:
        yield client

    routes.rate_limiter = original_limiter
