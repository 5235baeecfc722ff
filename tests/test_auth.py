"""
Test authentication utilities

Password hashing, token generation, user lookups, OAuth tokens and
session cookies against the in-memory credential store.
"""
import logging
import re
from datetime import datetime, timedelta, timezone

from backpack.core import auth
from backpack.core.store import MemoryStore, StorageUnavailableError


class BrokenStore(MemoryStore):
    """Every operation fails as if the database were down."""

    def _fail(self, *args, **kwargs):
        raise StorageUnavailableError("connection refused")

    insert_user = _fail
    find_user_by_credentials = _fail
    find_user_by_email = _fail
    find_user_by_api_key = _fail
    find_user_by_client_credentials = _fail
    insert_oauth_token = _fail
    find_user_by_oauth_token = _fail


class TestHashing:

    def test_hash_password_is_sha256_hex(self):
        assert auth.hash_password("password") == (
            "5e884898da28047151d0e56f8dc6292773603d0d6aabbdd62a11ef721d1542d8"
        )

    def test_hash_password_is_deterministic(self):
        assert auth.hash_password("s3cret-pass") == auth.hash_password("s3cret-pass")
        assert auth.hash_password("s3cret-pass") != auth.hash_password("s3cret-pasS")

    def test_generate_token_is_64_lowercase_hex(self):
        token = auth.generate_token()
        assert re.fullmatch(r"[0-9a-f]{64}", token)

    def test_generate_token_does_not_repeat(self):
        assert auth.generate_token() != auth.generate_token()


class TestUsers:

    def setup_method(self):
        self.store = MemoryStore()

    def test_create_then_authenticate(self):
        created = auth.create_user(self.store, "a@b.com", "longenough")
        assert created is not None
        assert created.email == "a@b.com"

        user = auth.authenticate_user(self.store, "a@b.com", "longenough")
        assert user is not None
        assert user.email == "a@b.com"
        assert user.id == created.id

    def test_created_user_has_generated_credentials(self):
        user = auth.create_user(self.store, "a@b.com", "longenough")
        for value in (user.api_key, user.oauth_client_id, user.oauth_client_secret):
            assert re.fullmatch(r"[0-9a-f]{64}", value)
        assert len({user.api_key, user.oauth_client_id, user.oauth_client_secret}) == 3
        assert user.created_at is not None

    def test_wrong_password_returns_none(self):
        auth.create_user(self.store, "a@b.com", "longenough")
        assert auth.authenticate_user(self.store, "a@b.com", "wrong-password") is None

    def test_unknown_email_returns_none(self):
        assert auth.authenticate_user(self.store, "nobody@b.com", "longenough") is None

    def test_duplicate_email_returns_none(self):
        assert auth.create_user(self.store, "a@b.com", "longenough") is not None
        assert auth.create_user(self.store, "a@b.com", "different-pass") is None

    def test_verify_api_key(self):
        user = auth.create_user(self.store, "a@b.com", "longenough")
        found = auth.verify_api_key(self.store, user.api_key)
        assert found is not None
        assert found.email == "a@b.com"

    def test_verify_api_key_never_issued(self):
        auth.create_user(self.store, "a@b.com", "longenough")
        assert auth.verify_api_key(self.store, auth.generate_token()) is None

    def test_get_user_by_email(self):
        assert auth.get_user_by_email(self.store, "a@b.com") is None
        auth.create_user(self.store, "a@b.com", "longenough")
        assert auth.get_user_by_email(self.store, "a@b.com").email == "a@b.com"


class TestOAuth:

    def setup_method(self):
        self.store = MemoryStore()
        self.user = auth.create_user(self.store, "a@b.com", "longenough")

    def test_create_then_verify_token(self):
        token = auth.create_oauth_token(self.store, self.user.id)
        assert token["expires_in"] == 3600
        assert re.fullmatch(r"[0-9a-f]{64}", token["access_token"])

        user = auth.verify_oauth_token(self.store, token["access_token"])
        assert user is not None
        assert user.id == self.user.id

    def test_expired_token_is_rejected(self):
        token = auth.create_oauth_token(self.store, self.user.id, ttl=60)
        later = datetime.now(timezone.utc) + timedelta(seconds=61)
        assert auth.verify_oauth_token(self.store, token["access_token"], now=later) is None

    def test_unknown_token_is_rejected(self):
        assert auth.verify_oauth_token(self.store, auth.generate_token()) is None

    def test_token_for_unknown_user_fails(self):
        assert auth.create_oauth_token(self.store, 9999) is None

    def test_client_credentials(self):
        found = auth.verify_oauth_client_credentials(
            self.store, self.user.oauth_client_id, self.user.oauth_client_secret
        )
        assert found is not None
        assert found.id == self.user.id

    def test_client_credentials_wrong_secret(self):
        assert auth.verify_oauth_client_credentials(
            self.store, self.user.oauth_client_id, auth.generate_token()
        ) is None


class TestStorageFailures:
    """Store errors collapse to None and are logged with their kind."""

    def setup_method(self):
        self.store = BrokenStore()

    def test_every_operation_returns_none(self):
        assert auth.create_user(self.store, "a@b.com", "longenough") is None
        assert auth.authenticate_user(self.store, "a@b.com", "longenough") is None
        assert auth.verify_api_key(self.store, "key") is None
        assert auth.get_user_by_email(self.store, "a@b.com") is None
        assert auth.create_oauth_token(self.store, 1) is None
        assert auth.verify_oauth_token(self.store, "token") is None
        assert auth.verify_oauth_client_credentials(self.store, "id", "secret") is None

    def test_error_kind_is_logged(self, caplog):
        with caplog.at_level(logging.ERROR, logger="backpack.core.auth"):
            auth.verify_api_key(self.store, "key")
        assert "storage_unavailable" in caplog.text


class TestSessionCookies:

    def test_create_session_cookie(self):
        assert auth.create_session_cookie("XYZ") == (
            "session=XYZ; Path=/; HttpOnly; SameSite=Lax; Max-Age=2592000"
        )

    def test_clear_session_cookie(self):
        assert auth.clear_session_cookie() == "session=; Path=/; HttpOnly; SameSite=Lax; Max-Age=0"

    def test_get_session_from_missing_header(self):
        assert auth.get_session_from_cookie(None) is None
        assert auth.get_session_from_cookie("") is None

    def test_get_session_among_other_cookies(self):
        assert auth.get_session_from_cookie("foo=bar; session=XYZ") == "XYZ"
        assert auth.get_session_from_cookie("session=XYZ;theme=dark") == "XYZ"

    def test_get_session_absent(self):
        assert auth.get_session_from_cookie("foo=bar; sessionid=XYZ") is None
        assert auth.get_session_from_cookie("session=") is None
