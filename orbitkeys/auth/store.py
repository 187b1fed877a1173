"""Credential store contract and its SQLite implementation.

The authentication core only talks to ``CredentialStore``. Any durable
key/value or relational backend can implement it; uniqueness of key strings
and role names is the store's job.
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path

from .errors import RoleInUseError, RoleNameConflictError
from .models import APIKey, Role

logger = logging.getLogger("orbitkeys.auth.store")

DEFAULT_DB_PATH = Path("orbitkeys.db")


class CredentialStore(ABC):
    """Persistence operations required by the authentication core."""

    def initialize(self) -> None:
        """Prepare the backend (create schema, open pools). Safe to call twice."""

    def close(self) -> None:
        """Release backend resources."""

    # --- API keys ---

    @abstractmethod
    def find_by_token(self, key: str) -> APIKey | None:
        """Fetch a key by exact token match, with its role loaded."""

    @abstractmethod
    def create_key(self, api_key: APIKey) -> APIKey:
        """Persist a new key and return it with its id assigned."""

    @abstractmethod
    def update_expiry(self, key_id: int, expires_at: datetime | None) -> bool:
        """Set or clear a key's expiration. Returns False if not found."""

    @abstractmethod
    def update_last_used(self, key_id: int, timestamp: datetime) -> bool:
        """Record a key's last successful use. Returns False if not found."""

    @abstractmethod
    def count_by_role(self, role_id: int) -> int:
        """Count the keys referencing a role."""

    @abstractmethod
    def get_key(self, key_id: int) -> APIKey | None:
        """Fetch a key by id, with its role loaded."""

    @abstractmethod
    def list_keys(self) -> list[APIKey]:
        """List all keys, newest first, with their roles loaded."""

    @abstractmethod
    def delete_key(self, key_id: int) -> bool:
        """Delete a key. Returns False if not found."""

    # --- Roles ---

    @abstractmethod
    def create_role(self, role: Role) -> Role:
        """Persist a new role and return it with its id assigned."""

    @abstractmethod
    def get_role(self, role_id: int) -> Role | None:
        """Fetch a role by id."""

    @abstractmethod
    def get_role_by_name(self, name: str) -> Role | None:
        """Fetch a role by its unique name."""

    @abstractmethod
    def list_roles(self) -> list[Role]:
        """List all roles ordered by id."""

    @abstractmethod
    def update_role(self, role: Role) -> bool:
        """Save a role's name, description and permissions. Returns False if not found."""

    @abstractmethod
    def delete_role(self, role_id: int) -> bool:
        """Delete a role. Returns False if not found."""


_KEY_SELECT = """
    SELECT
        k.id, k.key, k.role_id, k.description, k.custom_data,
        k.created_at, k.last_used_at, k.expires_at,
        r.name AS role_name,
        r.description AS role_description,
        r.permissions AS role_permissions,
        r.created_at AS role_created_at,
        r.updated_at AS role_updated_at
    FROM api_keys k
    JOIN roles r ON r.id = k.role_id
"""


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class SQLiteCredentialStore(CredentialStore):
    """SQLite-backed role and API key storage.

    A connection is opened per operation, so the store can be called from
    worker threads without sharing connections.

    Usage:
        store = SQLiteCredentialStore(Path("orbitkeys.db"))
        store.initialize()  # Create tables if needed

        role = store.create_role(Role(name="reader", permissions=["orders:read"]))
        api_key = store.create_key(create_api_key(role.id))
        found = store.find_by_token(api_key.key)
    """

    def __init__(self, db_path: Path | None = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database. Defaults to ./orbitkeys.db
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._initialized = False

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Initialize the database schema.

        Creates the roles and api_keys tables if they don't exist.
        Safe to call multiple times.
        """
        if self._initialized:
            return

        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS roles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    description TEXT NOT NULL DEFAULT '',
                    permissions TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS api_keys (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL UNIQUE,
                    role_id INTEGER NOT NULL REFERENCES roles(id),
                    description TEXT NOT NULL DEFAULT '',
                    custom_data TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    last_used_at TEXT,
                    expires_at TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_api_keys_key
                ON api_keys(key)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_api_keys_role_id
                ON api_keys(role_id)
            """)
            conn.commit()
            self._initialized = True
            logger.info(f"Credential store initialized at {self.db_path}")
        finally:
            conn.close()

    # --- API keys ---

    def find_by_token(self, key: str) -> APIKey | None:
        self.initialize()

        conn = self._get_connection()
        try:
            row = conn.execute(f"{_KEY_SELECT} WHERE k.key = ?", (key,)).fetchone()
            return self._row_to_key(row) if row else None
        finally:
            conn.close()

    def get_key(self, key_id: int) -> APIKey | None:
        self.initialize()

        conn = self._get_connection()
        try:
            row = conn.execute(f"{_KEY_SELECT} WHERE k.id = ?", (key_id,)).fetchone()
            return self._row_to_key(row) if row else None
        finally:
            conn.close()

    def list_keys(self) -> list[APIKey]:
        self.initialize()

        conn = self._get_connection()
        try:
            rows = conn.execute(f"{_KEY_SELECT} ORDER BY k.created_at DESC, k.id DESC").fetchall()
            return [self._row_to_key(row) for row in rows]
        finally:
            conn.close()

    def create_key(self, api_key: APIKey) -> APIKey:
        """Persist a new API key.

        Args:
            api_key: Key built by create_api_key(); its id is ignored.

        Returns:
            The stored key, with id and role populated.

        Raises:
            sqlite3.IntegrityError: If the role does not exist or the key collides.
        """
        self.initialize()

        conn = self._get_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO api_keys
                (key, role_id, description, custom_data, created_at, last_used_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    api_key.key,
                    api_key.role_id,
                    api_key.description,
                    api_key.custom_data,
                    api_key.created_at.isoformat(),
                    api_key.last_used_at.isoformat() if api_key.last_used_at else None,
                    api_key.expires_at.isoformat() if api_key.expires_at else None,
                ),
            )
            conn.commit()
            api_key.id = cursor.lastrowid
        finally:
            conn.close()

        api_key.role = self.get_role(api_key.role_id)
        logger.info(f"Created API key {api_key.id} for role {api_key.role_id}")
        return api_key

    def update_expiry(self, key_id: int, expires_at: datetime | None) -> bool:
        self.initialize()

        conn = self._get_connection()
        try:
            result = conn.execute(
                "UPDATE api_keys SET expires_at = ? WHERE id = ?",
                (expires_at.isoformat() if expires_at else None, key_id),
            )
            conn.commit()
            return result.rowcount > 0
        finally:
            conn.close()

    def update_last_used(self, key_id: int, timestamp: datetime) -> bool:
        self.initialize()

        conn = self._get_connection()
        try:
            result = conn.execute(
                "UPDATE api_keys SET last_used_at = ? WHERE id = ?",
                (timestamp.isoformat(), key_id),
            )
            conn.commit()
            return result.rowcount > 0
        finally:
            conn.close()

    def count_by_role(self, role_id: int) -> int:
        self.initialize()

        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM api_keys WHERE role_id = ?",
                (role_id,),
            ).fetchone()
            return row["count"]
        finally:
            conn.close()

    def delete_key(self, key_id: int) -> bool:
        self.initialize()

        conn = self._get_connection()
        try:
            result = conn.execute("DELETE FROM api_keys WHERE id = ?", (key_id,))
            conn.commit()

            if result.rowcount > 0:
                logger.info(f"Deleted API key: {key_id}")
                return True
            return False
        finally:
            conn.close()

    # --- Roles ---

    def create_role(self, role: Role) -> Role:
        """Persist a new role.

        Raises:
            RoleNameConflictError: If the name is already taken.
        """
        self.initialize()

        now = datetime.now(UTC)
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO roles (name, description, permissions, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (
                    role.name,
                    role.description,
                    json.dumps(role.permissions),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed: roles.name" in str(e):
                raise RoleNameConflictError(role.name) from e
            raise
        finally:
            conn.close()

        role.id = cursor.lastrowid
        role.created_at = now
        role.updated_at = now
        logger.info(f"Created role '{role.name}' with permissions {role.permissions}")
        return role

    def get_role(self, role_id: int) -> Role | None:
        self.initialize()

        conn = self._get_connection()
        try:
            row = conn.execute("SELECT * FROM roles WHERE id = ?", (role_id,)).fetchone()
            return self._row_to_role(row) if row else None
        finally:
            conn.close()

    def get_role_by_name(self, name: str) -> Role | None:
        self.initialize()

        conn = self._get_connection()
        try:
            row = conn.execute("SELECT * FROM roles WHERE name = ?", (name,)).fetchone()
            return self._row_to_role(row) if row else None
        finally:
            conn.close()

    def list_roles(self) -> list[Role]:
        self.initialize()

        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT * FROM roles ORDER BY id").fetchall()
            return [self._row_to_role(row) for row in rows]
        finally:
            conn.close()

    def update_role(self, role: Role) -> bool:
        """Save a role's mutable fields.

        Raises:
            RoleNameConflictError: If the new name is already taken.
        """
        self.initialize()

        now = datetime.now(UTC)
        conn = self._get_connection()
        try:
            result = conn.execute(
                """
                UPDATE roles
                SET name = ?, description = ?, permissions = ?, updated_at = ?
                WHERE id = ?
            """,
                (role.name, role.description, json.dumps(role.permissions), now.isoformat(), role.id),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed: roles.name" in str(e):
                raise RoleNameConflictError(role.name) from e
            raise
        finally:
            conn.close()

        if result.rowcount > 0:
            role.updated_at = now
            logger.info(f"Updated role {role.id}")
            return True
        return False

    def delete_role(self, role_id: int) -> bool:
        """Delete a role.

        Raises:
            RoleInUseError: If API keys still reference the role.
        """
        self.initialize()

        conn = self._get_connection()
        try:
            result = conn.execute("DELETE FROM roles WHERE id = ?", (role_id,))
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise RoleInUseError(role_id) from e
        finally:
            conn.close()

        if result.rowcount > 0:
            logger.info(f"Deleted role: {role_id}")
            return True
        return False

    def _row_to_role(self, row: sqlite3.Row) -> Role:
        """Convert a roles row to a Role object."""
        return Role(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            permissions=json.loads(row["permissions"]),
            created_at=_parse_time(row["created_at"]),
            updated_at=_parse_time(row["updated_at"]),
        )

    def _row_to_key(self, row: sqlite3.Row) -> APIKey:
        """Convert a joined api_keys/roles row to an APIKey with its Role."""
        role = Role(
            id=row["role_id"],
            name=row["role_name"],
            description=row["role_description"],
            permissions=json.loads(row["role_permissions"]),
            created_at=_parse_time(row["role_created_at"]),
            updated_at=_parse_time(row["role_updated_at"]),
        )
        return APIKey(
            id=row["id"],
            key=row["key"],
            role_id=row["role_id"],
            role=role,
            description=row["description"],
            custom_data=row["custom_data"],
            created_at=_parse_time(row["created_at"]),
            last_used_at=_parse_time(row["last_used_at"]),
            expires_at=_parse_time(row["expires_at"]),
        )
