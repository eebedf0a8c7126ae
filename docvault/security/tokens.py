"""Issuing and verifying signed session tokens."""

from __future__ import annotations

import time
from typing import Any

import jwt

from ..config import Settings
from ..domain.account import Account, Role
from ..domain.contracts import SessionClaims
from ..domain.errors import Unauthenticated

_ALGORITHM = "HS256"


class SessionIssuer:
    """Stateless HS256 session tokens bound to an account id and role.

    There is no revocation list: a token stays valid until it expires, and a
    role change only reaches the client with the next issued token.
    """

    def __init__(self, secret: str, *, ttl_seconds: int, issuer: str) -> None:
        self._secret = secret
        self._ttl_seconds = ttl_seconds
        self._issuer = issuer

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionIssuer":
        return cls(
            settings.jwt_secret,
            ttl_seconds=settings.session_ttl_seconds,
            issuer=settings.jwt_issuer,
        )

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, account: Account) -> str:
        """Create a signed token for ``account``.

        Parameters
        ----------
        account:
            Account whose id and role are embedded in the ``sub`` and ``role`` claims.

        Returns
        -------
        str
            The encoded JWT, valid for the configured TTL.
        """
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": str(account.account_id),
            "role": account.role.value,
            "iat": now,
            "exp": now + self._ttl_seconds,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> SessionClaims:
        """Decode ``token`` and return its claims.

        Raises
        ------
        Unauthenticated
            When the signature, issuer or expiry check fails, or the claims
            do not describe a known account id and role.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                issuer=self._issuer,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise Unauthenticated("session expired") from exc
        except jwt.PyJWTError as exc:
            raise Unauthenticated("invalid token") from exc

        try:
            return SessionClaims(account_id=int(claims["sub"]), role=Role(claims.get("role")))
        except (TypeError, ValueError) as exc:
            raise Unauthenticated("invalid token") from exc
