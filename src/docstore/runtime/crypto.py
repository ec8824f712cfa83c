"""
Password hashing and access-token signing for the protected user store.

Stored hashes carry their own parameters, ``pbkdf2_sha256$<iterations>$<salt>$<hex>``,
so the iteration count can be raised without invalidating existing users.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

HASH_SCHEME = "pbkdf2_sha256"
HASH_ITERATIONS = 100_000
SALT_BYTES = 16


def _derive(password: str, salt: str, iterations: int) -> str:
    key = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return key.hex()


def hash_password(
    password: str,
    salt: str | None = None,
    iterations: int = HASH_ITERATIONS,
) -> str:
    """
    Hash a password for the ``hashedPassword`` field of a user record.

    Args:
        password: Plain password from a register request
        salt: Fixed salt (default: random hex)
        iterations: PBKDF2 rounds

    Returns:
        ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``
    """
    salt = salt if salt is not None else secrets.token_hex(SALT_BYTES)
    return f"{HASH_SCHEME}${iterations}${salt}${_derive(password, salt, iterations)}"


def verify_password(password: str, stored_hash: str) -> bool:
    """Check a login password against a stored hash; malformed hashes never match."""
    scheme, _, rest = stored_hash.partition("$")
    if scheme != HASH_SCHEME:
        return False
    rounds, _, rest = rest.partition("$")
    salt, _, digest = rest.partition("$")
    if not rounds.isdigit() or not salt or not digest:
        return False
    return hmac.compare_digest(_derive(password, salt, int(rounds)), digest)


def sign_token(value: str, secret: str) -> str:
    """HMAC-SHA256 hex digest of value, used as a session access token."""
    return hmac.new(secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()
