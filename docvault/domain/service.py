"""Account service orchestrating credentials, seeding and session issuance."""

from __future__ import annotations

import logging
import secrets

from .account import Account, Role
from .contracts import CreateAccountInput, SessionClaims, SessionGrant
from .documents import default_documents, serialize_documents
from .errors import Conflict, Forbidden, NotFound, Unauthenticated, ValidationError
from ..repository import AccountRepository
from ..security.passwords import hash_password, verify_password
from ..security.tokens import SessionIssuer

logger = logging.getLogger(__name__)


class AccountService:
    """Registration, login and owner-only account administration."""

    def __init__(
        self,
        repository: AccountRepository,
        issuer: SessionIssuer,
        *,
        min_password_length: int = 4,
        password_hash_iterations: int = 310000,
    ) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._repository = repository
        self._issuer = issuer
        self._min_password_length = min_password_length
        self._iterations = password_hash_iterations
        # verified against for unknown emails
        self._dummy_hash = hash_password(secrets.token_urlsafe(16), iterations=password_hash_iterations)

    def register(self, email: str | None, password: str | None, name: str | None = None) -> SessionGrant:
        """Create an account through self-registration and open a session for it.

        The first account ever registered becomes ``owner``; everyone after
        that starts as ``tester``.
        """
        account = self._create(email, password, name, role=None)
        logger.info("registered account %s as %s", account.account_id, account.role.value)
        return SessionGrant(token=self._issuer.issue(account), account=account)

    def login(self, email: str | None, password: str | None) -> SessionGrant:
        """Verify credentials and issue a session token.

        Unknown emails and wrong passwords raise the same error.
        """
        if not email or not password:
            raise ValidationError("email and password required")
        credentials = self._repository.find_by_email(email)
        if credentials is None:
            verify_password(password, self._dummy_hash)
            logger.info("login rejected: unknown email")
            raise Unauthenticated("invalid credentials")
        if not verify_password(password, credentials.password_hash):
            logger.info("login rejected for account %s", credentials.account.account_id)
            raise Unauthenticated("invalid credentials")
        account = credentials.account
        return SessionGrant(token=self._issuer.issue(account), account=account)

    def get_self(self, account_id: int) -> Account:
        account = self._repository.get_account(account_id)
        if account is None:
            raise NotFound("user not found")
        return account

    def admin_list(self, caller: SessionClaims) -> list[Account]:
        self._require_owner(caller)
        return self._repository.list_accounts()

    def admin_create(
        self,
        caller: SessionClaims,
        email: str | None,
        password: str | None,
        name: str | None = None,
        role: Role | str | None = None,
    ) -> Account:
        """Create an account on behalf of an owner; the role defaults to ``tester``."""
        self._require_owner(caller)
        account = self._create(email, password, name, role=_parse_role(role) or Role.tester)
        logger.info(
            "account %s created account %s as %s",
            caller.account_id,
            account.account_id,
            account.role.value,
        )
        return account

    def admin_update(
        self,
        caller: SessionClaims,
        account_id: int,
        name: str | None = None,
        role: Role | str | None = None,
    ) -> Account:
        """Change an account's display name and/or role; omitted fields are kept."""
        self._require_owner(caller)
        current = self._repository.get_account(account_id)
        if current is None:
            raise NotFound("user not found")
        new_role = _parse_role(role) or current.role
        updated = self._repository.update_account(
            account_id,
            current.name if name is None else name,
            new_role,
        )
        if updated is None:
            raise NotFound("user not found")
        logger.info("account %s updated account %s", caller.account_id, account_id)
        return updated

    def admin_delete(self, caller: SessionClaims, account_id: int) -> None:
        """Delete another account together with all of its documents."""
        self._require_owner(caller)
        if account_id == caller.account_id:
            raise ValidationError("cannot delete yourself")
        if not self._repository.delete_account(account_id):
            raise NotFound("user not found")
        logger.info("account %s deleted account %s", caller.account_id, account_id)

    def _create(
        self,
        email: str | None,
        password: str | None,
        name: str | None,
        *,
        role: Role | None,
    ) -> Account:
        if not email or not password:
            raise ValidationError("email and password required")
        if len(password) < self._min_password_length:
            raise ValidationError("password too short")
        # the unique constraint still guards concurrent registrations
        if self._repository.find_by_email(email) is not None:
            raise Conflict("email already registered")
        payload = CreateAccountInput(
            email=email,
            password_hash=hash_password(password, iterations=self._iterations),
            name=name or "",
            role=role,
        )
        return self._repository.create_account(payload, serialize_documents(default_documents()))

    def _require_owner(self, caller: SessionClaims) -> None:
        if not caller.is_owner:
            raise Forbidden("owner only")


def _parse_role(role: Role | str | None) -> Role | None:
    if not role:
        return None
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError as exc:
        raise ValidationError(f"unknown role {role!r}") from exc
