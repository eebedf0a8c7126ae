"""Repository tests against a live Postgres; set DOCVAULT_TEST_DATABASE_URL to run them."""

from __future__ import annotations

import os
import uuid

import pytest

from docvault.domain.account import Role
from docvault.domain.contracts import CreateAccountInput
from docvault.domain.errors import Conflict, StorageFailure
from docvault.repository import AccountRepository, DocumentRepository, ensure_schema

DATABASE_URL = os.getenv("DOCVAULT_TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not DATABASE_URL, reason="DOCVAULT_TEST_DATABASE_URL not set")


@pytest.fixture(scope="module")
def pool():
    from psycopg_pool import ConnectionPool

    pool = ConnectionPool(DATABASE_URL, open=True)
    ensure_schema(pool)
    yield pool
    pool.close()


@pytest.fixture
def account(pool):
    repository = AccountRepository(pool)
    account = repository.create_account(
        CreateAccountInput(email=f"{uuid.uuid4()}@x.com", password_hash="h", role=Role.tester),
        {"DB": '{"ops": [], "bal": 0}', "rules": "[]"},
    )
    yield account
    repository.delete_account(account.account_id)


def test_seed_documents_are_written_with_the_account(pool, account):
    stored = DocumentRepository(pool).get_all(account.account_id)
    assert {key: row.value for key, row in stored.items()} == {
        "DB": '{"ops": [], "bal": 0}',
        "rules": "[]",
    }


def test_duplicate_email_is_rejected_by_the_store(pool, account):
    with pytest.raises(Conflict):
        AccountRepository(pool).create_account(
            CreateAccountInput(email=account.email, password_hash="h", role=Role.tester)
        )


def test_upsert_is_idempotent(pool, account):
    documents = DocumentRepository(pool)
    documents.upsert_one(account.account_id, "cpMap", '{"a": 1}')
    documents.upsert_one(account.account_id, "cpMap", '{"a": 1}')

    stored = documents.get_all(account.account_id)
    assert len(stored) == 3
    assert stored["cpMap"].value == '{"a": 1}'


def test_failed_bulk_write_leaves_documents_untouched(pool, account):
    documents = DocumentRepository(pool)
    before = {key: row.value for key, row in documents.get_all(account.account_id).items()}

    # Postgres text cannot hold NUL, so the batch fails on its last row
    with pytest.raises(StorageFailure):
        documents.upsert_many(
            account.account_id,
            {"DB": '{"ops": [1]}', "rules": '["x"]', "FP": '"\x00"'},
        )

    after = {key: row.value for key, row in documents.get_all(account.account_id).items()}
    assert after == before


def test_deleting_account_cascades_to_documents(pool):
    accounts = AccountRepository(pool)
    created = accounts.create_account(
        CreateAccountInput(email=f"{uuid.uuid4()}@x.com", password_hash="h", role=Role.tester),
        {"DB": "{}"},
    )

    assert accounts.delete_account(created.account_id)
    assert DocumentRepository(pool).get_all(created.account_id) == {}
    assert accounts.get_account(created.account_id) is None
