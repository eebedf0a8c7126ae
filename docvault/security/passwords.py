"""Salted PBKDF2 password hashing."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os

_ALGORITHM = "pbkdf2_sha256"
_ITERATIONS = 310000


def _b64u_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _b64u_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def hash_password(password: str, *, iterations: int = _ITERATIONS) -> str:
    """Return ``algorithm$iterations$salt$digest`` for ``password``."""
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations, dklen=32)
    return f"{_ALGORITHM}${iterations}${_b64u_encode(salt)}${_b64u_encode(digest)}"


def verify_password(password: str, password_hash: str) -> bool:
    """Check ``password`` against a stored hash using a constant-time comparison."""
    try:
        algorithm, iterations, salt, expected = password_hash.split("$", 3)
        if algorithm != _ALGORITHM:
            return False
        expected_digest = _b64u_decode(expected)
        actual = hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            _b64u_decode(salt),
            int(iterations),
            dklen=len(expected_digest),
        )
    except (ValueError, TypeError):
        return False
    return hmac.compare_digest(actual, expected_digest)
