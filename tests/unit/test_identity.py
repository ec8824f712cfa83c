"""
Unit tests for the identity provider.

Tests cover:
- Registration (missing fields, duplicates, password storage)
- Login (success, wrong password, unknown identity)
- Token resolution and logout
- Password hashing helpers
"""

from __future__ import annotations

import pytest

from docstore.errors import AuthorizationError, ConflictError, CredentialError, RequestError
from docstore.runtime.crypto import hash_password, sign_token, verify_password
from docstore.runtime.identity import IdentityProvider
from docstore.runtime.record_store import RecordStore


@pytest.fixture
def provider(protected_store: RecordStore) -> IdentityProvider:
    return IdentityProvider(protected_store, identity="username", secret="test-secret")


# =============================================================================
# Registration
# =============================================================================


class TestRegister:
    def test_returns_user_with_token(self, provider: IdentityProvider):
        result = provider.register({"username": "Peter", "password": "pass123", "city": "Sofia"})

        assert result["username"] == "Peter"
        assert result["city"] == "Sofia"
        assert result["accessToken"]
        assert "hashedPassword" not in result
        assert "password" not in result

    def test_stores_only_password_hash(self, provider: IdentityProvider, protected_store):
        result = provider.register({"username": "Peter", "password": "pass123"})
        stored = protected_store.get_one("users", result["_id"])

        assert "password" not in stored
        assert verify_password("pass123", stored["hashedPassword"])

    @pytest.mark.parametrize(
        "body",
        [
            {"password": "pass123"},
            {"username": "Peter"},
            {"username": "", "password": "pass123"},
            {"username": "Peter", "password": ""},
            "not an object",
        ],
    )
    def test_missing_fields(self, provider: IdentityProvider, body):
        with pytest.raises(RequestError, match="Missing fields"):
            provider.register(body)

    def test_duplicate_identity(self, provider: IdentityProvider):
        with pytest.raises(ConflictError, match="A user with the same username already exists"):
            provider.register({"username": "ivan", "password": "other"})

    def test_custom_identity_field(self, protected_store: RecordStore):
        provider = IdentityProvider(protected_store, identity="email")

        with pytest.raises(ConflictError, match="same email"):
            provider.register({"email": "IVAN@abv.bg", "password": "x"})
        assert provider.register({"email": "new@abv.bg", "password": "x"})["accessToken"]

    def test_first_user_in_empty_store(self):
        provider = IdentityProvider(RecordStore())

        result = provider.register({"username": "first", "password": "x"})

        assert provider.resolve(result["accessToken"])["username"] == "first"


# =============================================================================
# Login / logout
# =============================================================================


class TestLogin:
    def test_success(self, provider: IdentityProvider):
        result = provider.login({"username": "Ivan", "password": "123456"})

        assert result["_id"] == "user-ivan"
        assert result["accessToken"]
        assert "hashedPassword" not in result

    def test_wrong_password_and_unknown_user_look_the_same(self, provider: IdentityProvider):
        with pytest.raises(CredentialError) as wrong_password:
            provider.login({"username": "Ivan", "password": "nope"})
        with pytest.raises(CredentialError) as unknown_user:
            provider.login({"username": "Nobody", "password": "123456"})

        assert wrong_password.value.message == "Login or password don't match"
        assert unknown_user.value.message == wrong_password.value.message

    def test_each_login_opens_a_session(self, provider: IdentityProvider):
        first = provider.login({"username": "Ivan", "password": "123456"})["accessToken"]
        second = provider.login({"username": "Ivan", "password": "123456"})["accessToken"]

        assert first != second
        assert provider.resolve(first)["_id"] == "user-ivan"
        assert provider.resolve(second)["_id"] == "user-ivan"

    def test_logout_ends_only_that_session(self, provider: IdentityProvider):
        first = provider.login({"username": "Ivan", "password": "123456"})["accessToken"]
        second = provider.login({"username": "Ivan", "password": "123456"})["accessToken"]

        assert provider.logout(first) is None

        with pytest.raises(CredentialError, match="Invalid access token"):
            provider.resolve(first)
        assert provider.resolve(second)["_id"] == "user-ivan"

    def test_logout_without_session(self, provider: IdentityProvider):
        with pytest.raises(CredentialError, match="User session does not exist"):
            provider.logout(None)
        with pytest.raises(CredentialError, match="User session does not exist"):
            provider.logout("unknown-token")


# =============================================================================
# Resolution
# =============================================================================


class TestResolve:
    def test_no_token_is_anonymous(self, provider: IdentityProvider):
        assert provider.resolve(None) is None

    def test_unknown_token(self, provider: IdentityProvider):
        with pytest.raises(CredentialError, match="Invalid access token"):
            provider.resolve("forged")

    def test_dangling_session(self, provider: IdentityProvider, protected_store):
        token = provider.login({"username": "John", "password": "123456"})["accessToken"]
        protected_store.delete("users", "user-john")

        with pytest.raises(CredentialError, match="Invalid access token"):
            provider.resolve(token)

    def test_token_is_hmac_of_session_id(self, provider: IdentityProvider, protected_store):
        token = provider.login({"username": "Ivan", "password": "123456"})["accessToken"]
        session = protected_store.query_exact("sessions", {"accessToken": token})[0]

        assert token == sign_token(session["_id"], "test-secret")
        assert session["userId"] == "user-ivan"


class TestMe:
    def test_strips_password_hash(self, provider: IdentityProvider, protected_store):
        user = protected_store.get_one("users", "user-ivan")

        assert provider.me(user) == {
            "_id": "user-ivan",
            "username": "Ivan",
            "email": "ivan@abv.bg",
        }

    def test_anonymous(self, provider: IdentityProvider):
        with pytest.raises(AuthorizationError):
            provider.me(None)


# =============================================================================
# Crypto helpers
# =============================================================================


class TestPasswordHashing:
    def test_salted(self):
        first, second = hash_password("secret"), hash_password("secret")

        assert first != second
        assert verify_password("secret", first)
        assert verify_password("secret", second)

    def test_wrong_password(self):
        assert not verify_password("other", hash_password("secret"))

    def test_malformed_hash(self):
        assert not verify_password("secret", "no-separator")

    def test_hash_records_its_parameters(self):
        stored = hash_password("secret", salt="abc", iterations=1000)

        assert stored.startswith("pbkdf2_sha256$1000$abc$")
        assert verify_password("secret", stored)
        assert not verify_password("secret", stored.replace("$1000$", "$1001$"))
