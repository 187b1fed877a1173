"""Authentication models for roles, API keys and authenticated identity."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from .permissions import check_permission, validate_permission_format


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


@dataclass
class Role:
    """A named bundle of permissions assigned to API keys."""

    name: str
    id: int | None = None  # Assigned by the store
    description: str = ""
    permissions: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def has_permission(self, permission: str) -> bool:
        """Check if this role grants the required permission (wildcard-aware)."""
        return check_permission(permission, self.permissions)

    def add_permission(self, permission: str) -> bool:
        """Add a permission if it is well formed and not already present.

        Returns:
            True if the permission list changed.
        """
        if not validate_permission_format(permission):
            return False
        if permission in self.permissions:
            return False

        self.permissions.append(permission)
        return True

    def remove_permission(self, permission: str) -> bool:
        """Remove a permission from the role.

        Returns:
            True if the permission list changed.
        """
        if permission not in self.permissions:
            return False

        self.permissions = [p for p in self.permissions if p != permission]
        return True

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": list(self.permissions),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class APIKey:
    """API key data model.

    The key string is the bearer secret itself. It is returned to callers
    holding keys:read, matching how the key management API exposes it.
    """

    key: str
    role_id: int
    id: int | None = None  # Assigned by the store
    role: Role | None = None  # Loaded with the key by find_by_token/get_key
    description: str = ""
    custom_data: str = ""  # Opaque caller metadata, usually JSON
    created_at: datetime = field(default_factory=_utcnow)
    last_used_at: datetime | None = None
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the key is past its expiration.

        Keys without an expiration never expire.
        """
        if self.expires_at is None:
            return False
        return self.expires_at < (now or _utcnow())

    def touch(self, now: datetime | None = None) -> datetime:
        """Record a use of the key and return the timestamp."""
        self.last_used_at = now or _utcnow()
        return self.last_used_at

    def to_dict(self, include_key: bool = True) -> dict:
        """Convert to dictionary.

        Args:
            include_key: Whether to include the secret key string.
        """
        data = {
            "id": self.id,
            "role_id": self.role_id,
            "description": self.description,
            "custom_data": self.custom_data,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "role": self.role.to_dict() if self.role else None,
        }
        if include_key:
            data["key"] = self.key
        return data


@dataclass
class AuthContext:
    """Identity established by a successful authentication.

    Attached to each authenticated request so downstream handlers can read
    the key and its role without re-authenticating.
    """

    api_key: APIKey
    role: Role

    @property
    def key_id(self) -> int | None:
        return self.api_key.id

    @property
    def custom_data(self) -> str:
        return self.api_key.custom_data

    def has_permission(self, required: str) -> bool:
        """Check if the authenticated role grants the required permission."""
        return self.role.has_permission(required)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization (excludes the key)."""
        return {
            "key_id": self.api_key.id,
            "role_id": self.role.id,
            "role": self.role.name,
            "permissions": list(self.role.permissions),
        }
