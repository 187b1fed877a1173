"""Pydantic schemas for API requests and responses."""

from datetime import datetime

from pydantic import BaseModel, Field

from ..auth.models import APIKey, Role


class RoleCreateRequest(BaseModel):
    """Request to create a role."""

    name: str = Field(..., description="Unique role name")
    description: str = Field("", description="What the role is for")
    permissions: list[str] = Field(
        default_factory=list,
        description="Permissions such as 'orders:read', 'orders:*' or '*'",
    )


class RoleUpdateRequest(BaseModel):
    """Partial role update. Omitted fields are left unchanged."""

    name: str | None = None
    description: str | None = None
    permissions: list[str] | None = None


class PermissionRequest(BaseModel):
    """A single permission to grant to a role."""

    permission: str = Field(..., description="Permission in 'resource:action' form")


class APIKeyCreateRequest(BaseModel):
    """Request to issue an API key."""

    role_id: int = Field(..., description="Role the key is bound to")
    description: str = ""
    custom_data: str = Field("", description="Opaque metadata returned with the key")
    expires_in: int | None = Field(
        None,
        description="Lifetime in days. Omitted or non-positive means no expiration",
    )


class ExpirationRequest(BaseModel):
    """Request to change when a key expires."""

    expires_in: int | None = Field(
        None,
        description="Days from now; null removes the expiration, negative expires now",
    )


class RoleResponse(BaseModel):
    """A role and its permissions."""

    id: int
    name: str
    description: str
    permissions: list[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            permissions=list(role.permissions),
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class APIKeyResponse(BaseModel):
    """An API key with its role."""

    id: int
    key: str
    role_id: int
    role: RoleResponse | None = None
    description: str
    custom_data: str
    created_at: datetime
    last_used_at: datetime | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_api_key(cls, api_key: APIKey) -> "APIKeyResponse":
        return cls(
            id=api_key.id,
            key=api_key.key,
            role_id=api_key.role_id,
            role=RoleResponse.from_role(api_key.role) if api_key.role else None,
            description=api_key.description,
            custom_data=api_key.custom_data,
            created_at=api_key.created_at,
            last_used_at=api_key.last_used_at,
            expires_at=api_key.expires_at,
        )


class PermissionCheckResponse(BaseModel):
    """Result of checking a key against a permission."""

    has_permission: bool


class HealthResponse(BaseModel):
    """Service health."""

    status: str
    version: str
