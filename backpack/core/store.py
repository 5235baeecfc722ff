"""
Credential Store

Persists users, password hashes, API keys, OAuth client credentials
and OAuth access tokens.

Backends:
- PostgresStore: PostgreSQL via psycopg2 (DATABASE_URL)
- MemoryStore: in-process fallback with the same unique constraints

Lookups return None when nothing matches. Driver failures are raised
as StoreError subclasses carrying an ErrorKind.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# MODELS
# =============================================================================

@dataclass
class User:
    """A registered user. The password hash never leaves the store."""
    id: int
    email: str
    api_key: str
    created_at: datetime
    oauth_client_id: Optional[str] = None
    oauth_client_secret: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class OAuthToken:
    access_token: str
    user_id: int
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


# =============================================================================
# ERRORS
# =============================================================================

class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class StoreError(Exception):
    kind: ErrorKind = ErrorKind.STORAGE_UNAVAILABLE


class ConflictError(StoreError):
    """A unique constraint was violated (duplicate email, key or token)."""
    kind = ErrorKind.CONFLICT


class StorageUnavailableError(StoreError):
    kind = ErrorKind.STORAGE_UNAVAILABLE


# =============================================================================
# INTERFACE
# =============================================================================

class CredentialStore(ABC):
    """Base class for credential store backends"""

    name: str = "base"

    @abstractmethod
    def insert_user(
        self,
        email: str,
        password_hash: str,
        api_key: str,
        oauth_client_id: str,
        oauth_client_secret: str,
    ) -> User:
        """Insert a user row and return it with generated fields"""

    @abstractmethod
    def find_user_by_credentials(self, email: str, password_hash: str) -> Optional[User]:
        pass

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    def find_user_by_api_key(self, api_key: str) -> Optional[User]:
        pass

    @abstractmethod
    def find_user_by_client_credentials(self, client_id: str, client_secret: str) -> Optional[User]:
        pass

    @abstractmethod
    def insert_oauth_token(self, user_id: int, access_token: str, expires_at: datetime) -> OAuthToken:
        pass

    @abstractmethod
    def find_user_by_oauth_token(self, access_token: str, now: datetime) -> Optional[User]:
        """Return the token's owner if the token exists and expires after `now`"""

    def close(self):
        pass


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================

class MemoryStore(CredentialStore):
    """Dict-backed store used when DATABASE_URL is not set."""

    name = "in-memory"

    def __init__(self):
        self._users: Dict[int, Dict[str, Any]] = {}
        self._tokens: Dict[str, OAuthToken] = {}
        self._next_id = 1

    def _to_user(self, row: Dict[str, Any]) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            api_key=row["api_key"],
            created_at=row["created_at"],
            oauth_client_id=row["oauth_client_id"],
            oauth_client_secret=row["oauth_client_secret"],
        )

    def _find(self, **criteria) -> Optional[User]:
        for row in self._users.values():
            if all(row.get(k) == v for k, v in criteria.items()):
                return self._to_user(row)
        return None

    def insert_user(self, email, password_hash, api_key, oauth_client_id, oauth_client_secret) -> User:
        for row in self._users.values():
            if row["email"] == email:
                raise ConflictError(f"duplicate email: {email}")
            if row["api_key"] == api_key:
                raise ConflictError("duplicate api_key")
            if row["oauth_client_id"] == oauth_client_id:
                raise ConflictError("duplicate oauth_client_id")

        row = {
            "id": self._next_id,
            "email": email,
            "password_hash": password_hash,
            "api_key": api_key,
            "oauth_client_id": oauth_client_id,
            "oauth_client_secret": oauth_client_secret,
            "created_at": datetime.now(timezone.utc),
        }
        self._users[row["id"]] = row
        self._next_id += 1
        return self._to_user(row)

    def find_user_by_credentials(self, email, password_hash) -> Optional[User]:
        return self._find(email=email, password_hash=password_hash)

    def find_user_by_email(self, email) -> Optional[User]:
        return self._find(email=email)

    def find_user_by_api_key(self, api_key) -> Optional[User]:
        return self._find(api_key=api_key)

    def find_user_by_client_credentials(self, client_id, client_secret) -> Optional[User]:
        return self._find(oauth_client_id=client_id, oauth_client_secret=client_secret)

    def insert_oauth_token(self, user_id, access_token, expires_at) -> OAuthToken:
        if user_id not in self._users:
            raise StoreError(f"unknown user_id: {user_id}")
        if access_token in self._tokens:
            raise ConflictError("duplicate access_token")
        token = OAuthToken(access_token=access_token, user_id=user_id, expires_at=expires_at)
        self._tokens[access_token] = token
        return token

    def find_user_by_oauth_token(self, access_token, now) -> Optional[User]:
        token = self._tokens.get(access_token)
        if token is None or token.is_expired(now):
            return None
        row = self._users.get(token.user_id)
        return self._to_user(row) if row else None


# =============================================================================
# POSTGRESQL BACKEND
# =============================================================================

USER_COLUMNS = "id, email, api_key, created_at, oauth_client_id, oauth_client_secret"

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        email VARCHAR(255) NOT NULL UNIQUE,
        password_hash VARCHAR(64) NOT NULL,
        api_key VARCHAR(64) NOT NULL UNIQUE,
        oauth_client_id VARCHAR(64) UNIQUE,
        oauth_client_secret VARCHAR(64),
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS oauth_tokens (
        id SERIAL PRIMARY KEY,
        user_id INTEGER NOT NULL REFERENCES users(id),
        access_token VARCHAR(64) NOT NULL UNIQUE,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_oauth_tokens_user ON oauth_tokens(user_id)",
]


class PostgresStore(CredentialStore):
    """PostgreSQL-backed credential store."""

    name = "postgres"

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.connection = None

    def connect(self) -> "PostgresStore":
        """Open the connection and create tables."""
        import psycopg2

        try:
            self.connection = psycopg2.connect(self.dsn)
            cursor = self.connection.cursor()
            for statement in SCHEMA:
                cursor.execute(statement)
            self.connection.commit()
        except psycopg2.Error as e:
            raise StorageUnavailableError(f"PostgreSQL initialization failed: {e}") from e

        logger.info("PostgreSQL initialized successfully")
        return self

    def close(self):
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def _execute(self, sql: str, params: tuple, fetch: bool = True, commit: bool = False) -> List[tuple]:
        import psycopg2

        if self.connection is None:
            raise StorageUnavailableError("PostgreSQL connection is not open")

        try:
            cursor = self.connection.cursor()
            cursor.execute(sql, params)
            rows = cursor.fetchall() if fetch else []
            if commit:
                self.connection.commit()
            return rows
        except psycopg2.IntegrityError as e:
            self.connection.rollback()
            raise ConflictError(str(e)) from e
        except psycopg2.Error as e:
            self.connection.rollback()
            raise StorageUnavailableError(str(e)) from e

    @staticmethod
    def _row_to_user(row: tuple) -> User:
        return User(
            id=row[0],
            email=row[1],
            api_key=row[2],
            created_at=row[3],
            oauth_client_id=row[4],
            oauth_client_secret=row[5],
        )

    def _first_user(self, where: str, params: tuple) -> Optional[User]:
        rows = self._execute(f"SELECT {USER_COLUMNS} FROM users WHERE {where} LIMIT 1", params)
        return self._row_to_user(rows[0]) if rows else None

    def insert_user(self, email, password_hash, api_key, oauth_client_id, oauth_client_secret) -> User:
        rows = self._execute(
            f"""
            INSERT INTO users (email, password_hash, api_key, oauth_client_id, oauth_client_secret)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {USER_COLUMNS}
            """,
            (email, password_hash, api_key, oauth_client_id, oauth_client_secret),
            commit=True,
        )
        return self._row_to_user(rows[0])

    def find_user_by_credentials(self, email, password_hash) -> Optional[User]:
        return self._first_user("email = %s AND password_hash = %s", (email, password_hash))

    def find_user_by_email(self, email) -> Optional[User]:
        return self._first_user("email = %s", (email,))

    def find_user_by_api_key(self, api_key) -> Optional[User]:
        return self._first_user("api_key = %s", (api_key,))

    def find_user_by_client_credentials(self, client_id, client_secret) -> Optional[User]:
        return self._first_user(
            "oauth_client_id = %s AND oauth_client_secret = %s", (client_id, client_secret)
        )

    def insert_oauth_token(self, user_id, access_token, expires_at) -> OAuthToken:
        self._execute(
            "INSERT INTO oauth_tokens (user_id, access_token, expires_at) VALUES (%s, %s, %s)",
            (user_id, access_token, expires_at),
            fetch=False,
            commit=True,
        )
        return OAuthToken(access_token=access_token, user_id=user_id, expires_at=expires_at)

    def find_user_by_oauth_token(self, access_token, now) -> Optional[User]:
        columns = ", ".join(f"u.{c.strip()}" for c in USER_COLUMNS.split(","))
        rows = self._execute(
            f"""
            SELECT {columns} FROM oauth_tokens t
            JOIN users u ON u.id = t.user_id
            WHERE t.access_token = %s AND t.expires_at > %s
            LIMIT 1
            """,
            (access_token, now),
        )
        return self._row_to_user(rows[0]) if rows else None


def open_store(database_url: str = "") -> CredentialStore:
    """Open the configured store, falling back to memory without DATABASE_URL."""
    if not database_url:
        logger.warning("DATABASE_URL not set - using in-memory storage")
        return MemoryStore()
    return PostgresStore(database_url).connect()
