"""
Session/identity provider.

Users and sessions live in a separate protected record store, so the
generic CRUD façade never exposes them. A session binds an access token
(HMAC of the session id) to a user id; sessions never expire and a user
may hold several at once.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docstore.errors import (
    AuthorizationError,
    ConflictError,
    CredentialError,
    NotFoundError,
    RequestError,
)
from docstore.logging import get_logger
from docstore.runtime.crypto import hash_password, sign_token, verify_password
from docstore.runtime.query_engine import PASSWORD_HASH_FIELD
from docstore.runtime.record_store import RecordStore
from docstore.values import Record

logger = get_logger("Auth")

USERS_COLLECTION = "users"
SESSIONS_COLLECTION = "sessions"

LOGIN_FAILED = "Login or password don't match"


class SessionRecord(BaseModel):
    """A stored session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="_id")
    user_id: str = Field(alias="userId")
    access_token: str = Field(alias="accessToken", repr=False)


def public_user(user: Mapping[str, Any]) -> Record:
    """Copy of a user record without its password hash."""
    result = dict(user)
    result.pop(PASSWORD_HASH_FIELD, None)
    return result


class IdentityProvider:
    """
    Register, log in and resolve callers against the protected store.

    Example:
        provider = IdentityProvider(protected_store, identity="email")
        user = provider.register({"email": "peter@abv.bg", "password": "123456"})
        provider.resolve(user["accessToken"])
    """

    def __init__(
        self,
        store: RecordStore,
        identity: str = "username",
        secret: str | None = None,
    ):
        self.store = store
        self.identity = identity
        self._secret = secret or secrets.token_hex(32)

    # =========================================================================
    # Sessions
    # =========================================================================

    def _create_session(self, user_id: str) -> SessionRecord:
        session = self.store.add(SESSIONS_COLLECTION, {"userId": user_id})
        session_id = str(session["_id"])
        stored = self.store.set(
            SESSIONS_COLLECTION,
            session_id,
            {"userId": user_id, "accessToken": sign_token(session_id, self._secret)},
        )
        return SessionRecord.model_validate(stored)

    def _find_session(self, token: str) -> SessionRecord | None:
        if not self.store.has_collection(SESSIONS_COLLECTION):
            return None
        matches = self.store.query_exact(SESSIONS_COLLECTION, {"accessToken": token})
        return SessionRecord.model_validate(matches[0]) if matches else None

    def _find_users(self, identity_value: Any) -> list[Record]:
        if not self.store.has_collection(USERS_COLLECTION):
            return []
        return self.store.query_exact(USERS_COLLECTION, {self.identity: identity_value})

    def _with_token(self, user: Record) -> Record:
        session = self._create_session(str(user["_id"]))
        result = public_user(user)
        result["accessToken"] = session.access_token
        return result

    # =========================================================================
    # Operations
    # =========================================================================

    def register(self, body: Any) -> Record:
        """
        Create a user and log them in.

        Raises:
            RequestError: If the identity field or password is missing
            ConflictError: If the identity value is taken
        """
        if not isinstance(body, Mapping):
            raise RequestError("Missing fields")
        identity_value = body.get(self.identity)
        password = body.get("password")
        if not identity_value or not isinstance(password, str) or not password:
            raise RequestError("Missing fields")

        if self._find_users(identity_value):
            raise ConflictError(f"A user with the same {self.identity} already exists")

        new_user = {k: v for k, v in body.items() if k != "password"}
        new_user[PASSWORD_HASH_FIELD] = hash_password(password)
        try:
            user = self.store.add(USERS_COLLECTION, new_user)
        except ValueError as e:
            raise RequestError() from e

        logger.info("Registered %s", identity_value)
        return self._with_token(user)

    def login(self, body: Any) -> Record:
        """
        Verify credentials and open a new session.

        Raises:
            CredentialError: Unknown identity or wrong password (same message)
        """
        if not isinstance(body, Mapping):
            raise CredentialError(LOGIN_FAILED)

        password = body.get("password")
        matches = self._find_users(body.get(self.identity))
        if len(matches) != 1 or not isinstance(password, str):
            raise CredentialError(LOGIN_FAILED)

        user = matches[0]
        stored_hash = user.get(PASSWORD_HASH_FIELD)
        if not isinstance(stored_hash, str) or not verify_password(password, stored_hash):
            raise CredentialError(LOGIN_FAILED)

        logger.info("Logged in %s", user.get(self.identity))
        return self._with_token(user)

    def logout(self, token: str | None) -> None:
        """
        End the session bound to token.

        Raises:
            CredentialError: If no such session exists
        """
        session = self._find_session(token) if token else None
        if session is None:
            raise CredentialError("User session does not exist")
        self.store.delete(SESSIONS_COLLECTION, session.id)
        logger.debug("Closed session %s", session.id)

    def resolve(self, token: str | None) -> Record | None:
        """
        Resolve an access token to its user record.

        Returns:
            The user record (with password hash) or None for no token

        Raises:
            CredentialError: If the token does not map to a live user
        """
        if token is None:
            return None

        session = self._find_session(token)
        if session is None:
            raise CredentialError("Invalid access token")
        try:
            user = self.store.get_one(USERS_COLLECTION, session.user_id)
        except NotFoundError as e:
            raise CredentialError("Invalid access token") from e

        logger.debug("Authorized as %s", user.get(self.identity))
        return user

    def me(self, user: Mapping[str, Any] | None) -> Record:
        """
        The caller's own record without its password hash.

        Raises:
            AuthorizationError: For an anonymous caller
        """
        if user is None:
            raise AuthorizationError()
        return public_user(user)
