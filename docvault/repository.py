"""Database repositories for accounts and their documents."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Mapping

import psycopg
from psycopg import errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, AccountCredentials, Role
from .domain.contracts import CreateAccountInput, StoredDocument
from .domain.errors import Conflict, NotFound, StorageFailure, ValidationError

logger = logging.getLogger(__name__)

# Key for pg_advisory_xact_lock; serializes account creation so the
# "first account becomes owner" check and the insert cannot interleave.
ACCOUNT_CREATION_LOCK = 0x646F6376

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id BIGSERIAL PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        name TEXT NOT NULL DEFAULT '',
        role TEXT NOT NULL DEFAULT 'tester' CHECK (role IN ('owner', 'tester')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS account_documents (
        account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
        key TEXT NOT NULL,
        value TEXT NOT NULL DEFAULT '{}',
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (account_id, key)
    )
    """,
)

_ACCOUNT_COLUMNS = "id, email, name, role, created_at"

_UPSERT_DOCUMENT_SQL = """
    INSERT INTO account_documents (account_id, key, value, updated_at)
    VALUES (%s, %s, %s, %s)
    ON CONFLICT (account_id, key)
    DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
"""


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate driver exceptions into the service error taxonomy."""
    try:
        yield
    except errors.UniqueViolation as exc:
        raise Conflict("email already registered") from exc
    except errors.ForeignKeyViolation as exc:
        raise NotFound("account not found") from exc
    except UnicodeError as exc:
        # unpaired surrogates cannot be encoded for the wire
        raise ValidationError("text is not valid unicode") from exc
    except psycopg.Error as exc:
        logger.exception("storage failure during %s", operation)
        raise StorageFailure("storage failure") from exc


def _write_documents(cur: psycopg.Cursor, account_id: int, documents: Mapping[str, str]) -> None:
    if not documents:
        return
    now = datetime.now(timezone.utc)
    cur.executemany(
        _UPSERT_DOCUMENT_SQL,
        [(account_id, key, text, now) for key, text in documents.items()],
    )


def ensure_schema(pool: ConnectionPool) -> None:
    """Create the accounts and documents tables when they do not exist yet."""
    with _storage_errors("ensure_schema"):
        with pool.connection() as conn:
            with conn.cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    cur.execute(statement)
            conn.commit()


class AccountRepository:
    """Postgres-backed credential store."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def create_account(
        self,
        payload: CreateAccountInput,
        seed_documents: Mapping[str, str] | None = None,
    ) -> Account:
        """Insert an account and its seed documents in one transaction.

        When ``payload.role`` is ``None`` the role is decided under the
        creation lock: ``owner`` for the very first account, ``tester`` otherwise.
        """
        with _storage_errors("create_account"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor(row_factory=tuple_row) as cur:
                        cur.execute("SELECT pg_advisory_xact_lock(%s)", (ACCOUNT_CREATION_LOCK,))
                        role = payload.role
                        if role is None:
                            cur.execute("SELECT EXISTS (SELECT 1 FROM accounts)")
                            role = Role.tester if cur.fetchone()[0] else Role.owner
                        cur.execute(
                            f"""
                            INSERT INTO accounts (email, password_hash, name, role)
                            VALUES (%s, %s, %s, %s)
                            RETURNING {_ACCOUNT_COLUMNS}
                            """,
                            (payload.email, payload.password_hash, payload.name, role.value),
                        )
                        row = cur.fetchone()
                        _write_documents(cur, row[0], seed_documents or {})
        return self._map_record(row)

    def find_by_email(self, email: str) -> AccountCredentials | None:
        """Return the account and its password hash, or ``None`` when unknown."""
        with _storage_errors("find_by_email"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"SELECT {_ACCOUNT_COLUMNS}, password_hash FROM accounts WHERE email = %s",
                        (email,),
                    )
                    row = cur.fetchone()
        if not row:
            return None
        return AccountCredentials(account=self._map_record(row[:5]), password_hash=row[5])

    def get_account(self, account_id: int) -> Account | None:
        with _storage_errors("get_account"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = %s",
                        (account_id,),
                    )
                    row = cur.fetchone()
        if not row:
            return None
        return self._map_record(row)

    def list_accounts(self) -> list[Account]:
        """Return every account ordered by creation time."""
        with _storage_errors("list_accounts"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts ORDER BY created_at, id")
                    rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def update_account(self, account_id: int, name: str, role: Role) -> Account | None:
        """Replace the mutable profile fields; ``None`` when the account is absent."""
        with _storage_errors("update_account"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        UPDATE accounts SET name = %s, role = %s
                        WHERE id = %s
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (name, role.value, account_id),
                    )
                    row = cur.fetchone()
                conn.commit()
        if not row:
            return None
        return self._map_record(row)

    def delete_account(self, account_id: int) -> bool:
        """Delete an account; its documents go with it through the cascade."""
        with _storage_errors("delete_account"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("DELETE FROM accounts WHERE id = %s", (account_id,))
                    deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            email=row[1],
            name=row[2],
            role=Role(row[3]),
            created_at=row[4],
        )


class DocumentRepository:
    """Per-account key/value store holding serialized JSON text.

    The repository never parses values; callers serialize before writing and
    deserialize after reading.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def get_all(self, account_id: int) -> dict[str, StoredDocument]:
        with _storage_errors("get_all"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        """
                        SELECT key, value, updated_at
                        FROM account_documents
                        WHERE account_id = %s
                        ORDER BY key
                        """,
                        (account_id,),
                    )
                    rows = cur.fetchall()
        return {row[0]: StoredDocument(value=row[1], updated_at=row[2]) for row in rows}

    def get_one(self, account_id: int, key: str) -> StoredDocument | None:
        with _storage_errors("get_one"):
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        """
                        SELECT value, updated_at
                        FROM account_documents
                        WHERE account_id = %s AND key = %s
                        """,
                        (account_id, key),
                    )
                    row = cur.fetchone()
        if not row:
            return None
        return StoredDocument(value=row[0], updated_at=row[1])

    def upsert_one(self, account_id: int, key: str, value: str) -> None:
        """Insert or replace a single document, refreshing its timestamp."""
        with _storage_errors("upsert_one"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        _UPSERT_DOCUMENT_SQL,
                        (account_id, key, value, datetime.now(timezone.utc)),
                    )
                conn.commit()

    def upsert_many(self, account_id: int, documents: Mapping[str, str]) -> None:
        """Insert or replace every document in ``documents`` atomically.

        All rows are written inside one transaction; any failure rolls the
        whole batch back, so readers see either the old set or the new one.
        """
        with _storage_errors("upsert_many"):
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        _write_documents(cur, account_id, documents)

    def delete_one(self, account_id: int, key: str) -> bool:
        with _storage_errors("delete_one"):
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "DELETE FROM account_documents WHERE account_id = %s AND key = %s",
                        (account_id, key),
                    )
                    deleted = cur.rowcount > 0
                conn.commit()
        return deleted
