"""
Authentication utilities for Backpack

- Password hashing and random token generation
- User creation and email/password authentication
- API key, OAuth client credential and OAuth token verification
- Session cookie helpers

Storage-backed functions never raise on store failures: the error is
logged with its kind and the function returns None, so callers see the
same result for "not found" and "storage error".
"""
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Union

from .store import CredentialStore, StoreError, User

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "session"
SESSION_MAX_AGE = 2592000  # 30 days
OAUTH_TOKEN_TTL = 3600  # 1 hour
TOKEN_BYTES = 32


def hash_password(password: str) -> str:
    """SHA-256 hex digest of the UTF-8 password. Unsalted."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def generate_token() -> str:
    """64 hex chars of cryptographically secure randomness."""
    return secrets.token_hex(TOKEN_BYTES)


def _log_store_error(action: str, error: StoreError):
    logger.error(f"Error {action} ({error.kind.value}): {error}")


# =============================================================================
# USERS
# =============================================================================

def create_user(store: CredentialStore, email: str, password: str) -> Optional[User]:
    """Create a user with a fresh API key and OAuth client credentials."""
    try:
        user = store.insert_user(
            email=email,
            password_hash=hash_password(password),
            api_key=generate_token(),
            oauth_client_id=generate_token(),
            oauth_client_secret=generate_token(),
        )
    except StoreError as e:
        _log_store_error("creating user", e)
        return None

    logger.info(f"Created user id={user.id}")
    return user


def authenticate_user(store: CredentialStore, email: str, password: str) -> Optional[User]:
    try:
        return store.find_user_by_credentials(email, hash_password(password))
    except StoreError as e:
        _log_store_error("authenticating user", e)
        return None


def verify_api_key(store: CredentialStore, api_key: str) -> Optional[User]:
    try:
        return store.find_user_by_api_key(api_key)
    except StoreError as e:
        _log_store_error("verifying API key", e)
        return None


def get_user_by_email(store: CredentialStore, email: str) -> Optional[User]:
    try:
        return store.find_user_by_email(email)
    except StoreError as e:
        _log_store_error("getting user", e)
        return None


# =============================================================================
# OAUTH
# =============================================================================

def create_oauth_token(
    store: CredentialStore,
    user_id: int,
    ttl: int = OAUTH_TOKEN_TTL,
) -> Optional[Dict[str, Union[str, int]]]:
    """Issue a short-lived access token for a user."""
    access_token = generate_token()
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)

    try:
        store.insert_oauth_token(user_id, access_token, expires_at)
    except StoreError as e:
        _log_store_error("creating OAuth token", e)
        return None

    return {"access_token": access_token, "expires_in": ttl}


def verify_oauth_token(
    store: CredentialStore,
    access_token: str,
    now: Optional[datetime] = None,
) -> Optional[User]:
    """Resolve the owner of an unexpired access token."""
    try:
        return store.find_user_by_oauth_token(access_token, now or datetime.now(timezone.utc))
    except StoreError as e:
        _log_store_error("verifying OAuth token", e)
        return None


def verify_oauth_client_credentials(
    store: CredentialStore,
    client_id: str,
    client_secret: str,
) -> Optional[User]:
    try:
        return store.find_user_by_client_credentials(client_id, client_secret)
    except StoreError as e:
        _log_store_error("verifying OAuth client credentials", e)
        return None


# =============================================================================
# SESSION COOKIES
# =============================================================================

def create_session_cookie(token: str, max_age: int = SESSION_MAX_AGE) -> str:
    return f"{SESSION_COOKIE_NAME}={token}; Path=/; HttpOnly; SameSite=Lax; Max-Age={max_age}"


def get_session_from_cookie(cookie_header: Optional[str]) -> Optional[str]:
    """Return the session token from a Cookie header, if present."""
    if not cookie_header:
        return None

    for cookie in cookie_header.split(";"):
        name, _, value = cookie.strip().partition("=")
        if name == SESSION_COOKIE_NAME:
            return value or None
    return None


def clear_session_cookie() -> str:
    return create_session_cookie("", max_age=0)
