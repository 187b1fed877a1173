"""Role and API key lifecycle operations on top of a credential store."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from ..audit.logger import AuditEventType, AuditLogger
from .errors import (
    APIKeyNotFoundError,
    InvalidPermissionError,
    InvalidRoleReferenceError,
    RoleInUseError,
    RoleNotFoundError,
    ValidationError,
)
from .keys import MAX_KEY_TTL, create_api_key
from .models import APIKey, Role
from .permissions import WILDCARD_PERMISSION, invalid_permissions, validate_permission_format
from .store import CredentialStore

logger = logging.getLogger("orbitkeys.auth.service")

DEFAULT_ADMIN_ROLE = "admin"


class CredentialService:
    """Issues keys and manages roles while enforcing model invariants.

    The store enforces uniqueness; this service enforces the rest:
    well-formed permissions, keys bound to existing roles, and no role
    deletion while keys reference it.
    """

    def __init__(self, store: CredentialStore, audit_logger: AuditLogger | None = None):
        self.store = store
        self.audit_logger = audit_logger

    # --- API keys ---

    def issue_api_key(
        self,
        role_id: int | None,
        description: str = "",
        custom_data: str = "",
        expires_in: timedelta | None = None,
    ) -> APIKey:
        """Generate and persist a new API key for a role.

        Args:
            role_id: Role to bind the key to.
            description: Human-readable purpose of the key.
            custom_data: Opaque metadata carried with the key.
            expires_in: Optional lifetime, capped at MAX_KEY_TTL.

        Returns:
            The stored APIKey, including the key string.

        Raises:
            InvalidRoleReferenceError: If role_id is zero or unknown.
            KeyGenerationError: If the key could not be generated.
        """
        if not role_id:
            raise InvalidRoleReferenceError("Role ID is required")

        if self.store.get_role(role_id) is None:
            raise InvalidRoleReferenceError()

        api_key = self.store.create_key(
            create_api_key(role_id, description, custom_data, expires_in)
        )

        if self.audit_logger:
            self.audit_logger.log_key_event(
                AuditEventType.KEY_CREATED,
                api_key.id,
                role_id,
                expires_at=api_key.expires_at.isoformat() if api_key.expires_at else None,
            )
        return api_key

    def get_api_key(self, key_id: int) -> APIKey:
        api_key = self.store.get_key(key_id)
        if api_key is None:
            raise APIKeyNotFoundError()
        return api_key

    def lookup_api_key(self, key: str) -> APIKey:
        """Find a key by its token string.

        Raises:
            APIKeyNotFoundError: If no key matches.
        """
        api_key = self.store.find_by_token(key)
        if api_key is None:
            raise APIKeyNotFoundError()
        return api_key

    def list_api_keys(self) -> list[APIKey]:
        return self.store.list_keys()

    def set_key_expiration(self, key_id: int, expires_in_days: int | None) -> APIKey:
        """Change when a key expires.

        Args:
            key_id: The key's ID.
            expires_in_days: None removes the expiration, a negative value
                expires the key now, otherwise days from now (capped).

        Returns:
            The updated APIKey.
        """
        api_key = self.get_api_key(key_id)
        now = datetime.now(UTC)

        if expires_in_days is None:
            expires_at = None
        elif expires_in_days < 0:
            expires_at = now
        else:
            expires_at = now + timedelta(days=min(expires_in_days, MAX_KEY_TTL.days))

        self.store.update_expiry(key_id, expires_at)
        api_key.expires_at = expires_at
        logger.info(f"Updated expiration for API key {key_id}: {expires_at}")

        if self.audit_logger:
            self.audit_logger.log_key_event(
                AuditEventType.KEY_EXPIRATION_CHANGED,
                key_id,
                api_key.role_id,
                expires_at=expires_at.isoformat() if expires_at else None,
            )
        return api_key

    def delete_api_key(self, key_id: int) -> None:
        if not self.store.delete_key(key_id):
            raise APIKeyNotFoundError()

        if self.audit_logger:
            self.audit_logger.log_key_event(AuditEventType.KEY_DELETED, key_id)

    # --- Roles ---

    def create_role(self, name: str, description: str = "", permissions: list[str] | None = None) -> Role:
        """Create a role.

        Raises:
            ValidationError: If the name is empty.
            InvalidPermissionError: If any permission is malformed.
            RoleNameConflictError: If the name is taken.
        """
        if not name or not name.strip():
            raise ValidationError("Name is required")

        permissions = list(permissions or [])
        self._check_permissions(permissions)

        role = self.store.create_role(Role(name=name.strip(), description=description, permissions=permissions))
        self._audit_role(AuditEventType.ROLE_CREATED, role.id, name=role.name, permissions=role.permissions)
        return role

    def get_role(self, role_id: int) -> Role:
        role = self.store.get_role(role_id)
        if role is None:
            raise RoleNotFoundError()
        return role

    def list_roles(self) -> list[Role]:
        return self.store.list_roles()

    def update_role(
        self,
        role_id: int,
        name: str | None = None,
        description: str | None = None,
        permissions: list[str] | None = None,
    ) -> Role:
        """Partially update a role. Fields left as None are unchanged."""
        role = self.get_role(role_id)

        if name is not None:
            if not name.strip():
                raise ValidationError("Name is required")
            role.name = name.strip()
        if description:
            role.description = description
        if permissions is not None:
            self._check_permissions(permissions)
            role.permissions = list(permissions)

        self.store.update_role(role)
        self._audit_role(AuditEventType.ROLE_UPDATED, role.id, name=role.name, permissions=role.permissions)
        return role

    def add_role_permission(self, role_id: int, permission: str) -> Role:
        """Grant a single permission to a role (no-op if already granted)."""
        if not validate_permission_format(permission):
            raise InvalidPermissionError(permission)

        role = self.get_role(role_id)
        if role.add_permission(permission):
            self.store.update_role(role)
            self._audit_role(AuditEventType.ROLE_UPDATED, role.id, added_permission=permission)
        return role

    def remove_role_permission(self, role_id: int, permission: str) -> Role:
        """Revoke a single permission from a role (no-op if not granted)."""
        role = self.get_role(role_id)
        if role.remove_permission(permission):
            self.store.update_role(role)
            self._audit_role(AuditEventType.ROLE_UPDATED, role.id, removed_permission=permission)
        return role

    def delete_role(self, role_id: int) -> None:
        """Delete a role that no API key references.

        Raises:
            RoleInUseError: If keys still reference the role.
            RoleNotFoundError: If the role does not exist.
        """
        key_count = self.store.count_by_role(role_id)
        if key_count > 0:
            raise RoleInUseError(role_id, key_count)

        if not self.store.delete_role(role_id):
            raise RoleNotFoundError()
        self._audit_role(AuditEventType.ROLE_DELETED, role_id)

    def ensure_default_admin_role(self) -> Role:
        """Create the admin role with full access if it does not exist."""
        role = self.store.get_role_by_name(DEFAULT_ADMIN_ROLE)
        if role is not None:
            return role

        role = self.store.create_role(
            Role(
                name=DEFAULT_ADMIN_ROLE,
                description="Administrator role with full access",
                permissions=[WILDCARD_PERMISSION],
            )
        )
        logger.info("Default admin role created")
        return role

    def _check_permissions(self, permissions: list[str]) -> None:
        invalid = invalid_permissions(permissions)
        if invalid:
            raise InvalidPermissionError(invalid[0])

    def _audit_role(self, event: AuditEventType, role_id: int | None, **metadata) -> None:
        if self.audit_logger:
            self.audit_logger.log_role_event(event, role_id, **metadata)
