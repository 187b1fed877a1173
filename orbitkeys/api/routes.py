"""API routes for OrbitKeys.

Route groups (all mounted under the configured base URL):
- ``/lookup`` and ``/validate``: root-key protected, for services checking
  keys presented to them
- ``/roles``: role management, base permission ``roles:read``
- ``/keys``: API key management, base permission ``keys:read``

Errors raised by the service are OrbitKeysError subclasses and are turned
into responses by the handler registered in ``create_app``.
"""

import asyncio
import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..auth.errors import CredentialExpiredError
from ..auth.gate import AuthenticationGate
from ..auth.keys import MAX_KEY_TTL
from ..auth.models import AuthContext
from ..auth.service import CredentialService
from .auth import api_key_auth, get_gate, get_service, require_permission, require_root
from .ratelimit import rate_limit_dependency
from .schemas import (
    APIKeyCreateRequest,
    APIKeyResponse,
    ExpirationRequest,
    PermissionCheckResponse,
    PermissionRequest,
    RoleCreateRequest,
    RoleResponse,
    RoleUpdateRequest,
)

logger = logging.getLogger("orbitkeys.api.routes")

AUTH_RATE_LIMITER = "auth_rate_limiter"

root_router = APIRouter(
    tags=["lookup"],
    dependencies=[Depends(require_root), Depends(rate_limit_dependency(AUTH_RATE_LIMITER))],
)
roles_router = APIRouter(
    prefix="/roles",
    tags=["roles"],
    dependencies=[Depends(api_key_auth("roles:read"))],
)
keys_router = APIRouter(
    prefix="/keys",
    tags=["keys"],
    dependencies=[Depends(api_key_auth("keys:read"))],
)


# --- Lookup and validation (root key) ---


async def _find_live_key(service: CredentialService, gate: AuthenticationGate, key: str):
    """Fetch a key by token, reject it if expired, and record the use."""
    api_key = await asyncio.to_thread(service.lookup_api_key, key)
    if api_key.is_expired():
        raise CredentialExpiredError()

    gate.schedule_touch(api_key)
    return api_key


@root_router.get("/lookup", response_model=APIKeyResponse)
async def lookup_api_key(
    key: str | None = None,
    service: CredentialService = Depends(get_service),
    gate: AuthenticationGate = Depends(get_gate),
):
    """Look up an API key and its role by token."""
    if not key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Key parameter is required")

    api_key = await _find_live_key(service, gate, key)
    return APIKeyResponse.from_api_key(api_key)


@root_router.get("/validate", response_model=PermissionCheckResponse)
async def validate_api_key_permission(
    key: str | None = None,
    permission: str | None = None,
    service: CredentialService = Depends(get_service),
    gate: AuthenticationGate = Depends(get_gate),
):
    """Check whether an API key grants a permission."""
    if not key or not permission:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Key and permission parameters are required",
        )

    api_key = await _find_live_key(service, gate, key)
    return PermissionCheckResponse(has_permission=api_key.role.has_permission(permission))


# --- Roles ---


@roles_router.get("", response_model=list[RoleResponse])
def list_roles(service: CredentialService = Depends(get_service)):
    """List all roles."""
    return [RoleResponse.from_role(role) for role in service.list_roles()]


@roles_router.get("/{role_id}", response_model=RoleResponse)
def get_role(role_id: int, service: CredentialService = Depends(get_service)):
    return RoleResponse.from_role(service.get_role(role_id))


@roles_router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
def create_role(
    request: RoleCreateRequest,
    context: AuthContext = Depends(require_permission("roles:create")),
    service: CredentialService = Depends(get_service),
):
    """Create a role."""
    role = service.create_role(request.name, request.description, request.permissions)
    logger.info(f"Role '{role.name}' created by key {context.key_id}")
    return RoleResponse.from_role(role)


@roles_router.put("/{role_id}", response_model=RoleResponse)
def update_role(
    role_id: int,
    request: RoleUpdateRequest,
    _: AuthContext = Depends(require_permission("roles:update")),
    service: CredentialService = Depends(get_service),
):
    """Update a role's name, description or permissions."""
    role = service.update_role(
        role_id,
        name=request.name,
        description=request.description,
        permissions=request.permissions,
    )
    return RoleResponse.from_role(role)


@roles_router.post("/{role_id}/permissions", response_model=RoleResponse)
def add_role_permission(
    role_id: int,
    request: PermissionRequest,
    _: AuthContext = Depends(require_permission("roles:update")),
    service: CredentialService = Depends(get_service),
):
    return RoleResponse.from_role(service.add_role_permission(role_id, request.permission))


@roles_router.delete("/{role_id}/permissions/{permission}", response_model=RoleResponse)
def remove_role_permission(
    role_id: int,
    permission: str,
    _: AuthContext = Depends(require_permission("roles:update")),
    service: CredentialService = Depends(get_service),
):
    return RoleResponse.from_role(service.remove_role_permission(role_id, permission))


@roles_router.delete("/{role_id}")
def delete_role(
    role_id: int,
    context: AuthContext = Depends(require_permission("roles:delete")),
    service: CredentialService = Depends(get_service),
):
    """Delete a role that no API key uses."""
    service.delete_role(role_id)
    logger.info(f"Role {role_id} deleted by key {context.key_id}")
    return {"message": "Role deleted successfully"}


# --- API keys ---


@keys_router.get("", response_model=list[APIKeyResponse])
def list_api_keys(service: CredentialService = Depends(get_service)):
    """List all API keys with their roles."""
    return [APIKeyResponse.from_api_key(api_key) for api_key in service.list_api_keys()]


@keys_router.get("/{key_id}", response_model=APIKeyResponse)
def get_api_key(key_id: int, service: CredentialService = Depends(get_service)):
    return APIKeyResponse.from_api_key(service.get_api_key(key_id))


@keys_router.post("", response_model=APIKeyResponse, status_code=status.HTTP_201_CREATED)
def create_api_key(
    request: APIKeyCreateRequest,
    context: AuthContext = Depends(require_permission("keys:create")),
    service: CredentialService = Depends(get_service),
):
    """Issue a new API key for a role."""
    expires_in = None
    if request.expires_in and request.expires_in > 0:
        # Anything past the cap is clamped by the service
        expires_in = timedelta(days=min(request.expires_in, MAX_KEY_TTL.days + 1))
    api_key = service.issue_api_key(
        request.role_id,
        description=request.description,
        custom_data=request.custom_data,
        expires_in=expires_in,
    )
    logger.info(f"API key {api_key.id} issued by key {context.key_id}")
    return APIKeyResponse.from_api_key(api_key)


@keys_router.put("/{key_id}/expiration", response_model=APIKeyResponse)
def update_api_key_expiration(
    key_id: int,
    request: ExpirationRequest,
    _: AuthContext = Depends(require_permission("keys:update")),
    service: CredentialService = Depends(get_service),
):
    """Set, extend or remove a key's expiration."""
    return APIKeyResponse.from_api_key(service.set_key_expiration(key_id, request.expires_in))


@keys_router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_api_key(
    key_id: int,
    context: AuthContext = Depends(require_permission("keys:delete")),
    service: CredentialService = Depends(get_service),
):
    service.delete_api_key(key_id)
    logger.info(f"API key {key_id} deleted by key {context.key_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


router = APIRouter()
router.include_router(root_router)
router.include_router(roles_router)
router.include_router(keys_router)
