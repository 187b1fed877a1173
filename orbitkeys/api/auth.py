"""API key authentication dependencies.

Two credentials are accepted:
1. X-API-Key: a stored API key, checked by the AuthenticationGate against a
   permission (role and key management routes)
2. X-Root-API-Key: the configured root key (lookup and validate routes)

Usage:
    # Authenticate every route of a router with a base permission
    router = APIRouter(dependencies=[Depends(api_key_auth("roles:read"))])

    # Require a stronger permission on one route
    @router.post("/")
    async def create_role(
        context: AuthContext = Depends(require_permission("roles:create")),
    ):
        print(f"Role created by key {context.key_id}")
"""

import logging

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from ..auth.errors import InsufficientPermissionError, OrbitKeysError, TooManyFailedAttemptsError
from ..auth.gate import AuthenticationGate
from ..auth.keys import is_root_api_key
from ..auth.models import AuthContext
from ..auth.service import CredentialService
from ..config.settings import Settings

logger = logging.getLogger("orbitkeys.api.auth")

API_KEY_HEADER = "X-API-Key"
ROOT_API_KEY_HEADER = "X-Root-API-Key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)
root_api_key_header = APIKeyHeader(name=ROOT_API_KEY_HEADER, auto_error=False)


def to_http_exception(error: OrbitKeysError) -> HTTPException:
    """Convert an OrbitKeys error to the HTTP response it maps to."""
    headers = None
    if isinstance(error, TooManyFailedAttemptsError) and error.retry_after:
        headers = {"Retry-After": str(error.retry_after)}
    return HTTPException(status_code=error.status_code, detail=error.message, headers=headers)


def get_gate(request: Request) -> AuthenticationGate:
    """Get the authentication gate built at startup."""
    return request.app.state.gate


def get_service(request: Request) -> CredentialService:
    """Get the credential service built at startup."""
    return request.app.state.service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_client_address(request: Request) -> str | None:
    return request.client.host if request.client else None


def api_key_auth(required_permission: str | None = None):
    """Create a dependency that authenticates the X-API-Key header.

    The resulting AuthContext is stored on ``request.state.auth_context``
    for require_permission() and the route handlers.

    Args:
        required_permission: Permission every request must carry, if any.

    Returns:
        A FastAPI dependency function.
    """

    async def authenticate(
        request: Request,
        api_key: str | None = Security(api_key_header),
        gate: AuthenticationGate = Depends(get_gate),
    ) -> AuthContext:
        try:
            context = await gate.authenticate(
                api_key,
                required_permission=required_permission,
                client_address=get_client_address(request),
            )
        except OrbitKeysError as e:
            raise to_http_exception(e) from e

        request.state.auth_context = context
        return context

    return authenticate


async def get_auth_context(request: Request) -> AuthContext:
    """Get the AuthContext set by api_key_auth().

    Raises:
        HTTPException: If the request was not authenticated.
    """
    context = getattr(request.state, "auth_context", None)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return context


def require_permission(permission: str):
    """Create a dependency that requires a permission of an authenticated key.

    Args:
        permission: The permission required to access the route.

    Returns:
        A FastAPI dependency function.
    """

    async def permission_dependency(
        context: AuthContext = Depends(get_auth_context),
    ) -> AuthContext:
        if not context.has_permission(permission):
            logger.warning(f"Key {context.key_id} denied: missing permission '{permission}'")
            raise to_http_exception(InsufficientPermissionError(permission))
        return context

    return permission_dependency


async def require_root(
    root_key: str | None = Security(root_api_key_header),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Require the configured root API key.

    Raises:
        HTTPException: If the root key is missing or wrong.
    """
    if not root_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Root API key is required",
        )

    if not is_root_api_key(root_key, settings.root_api_key):
        logger.warning("Rejected request with invalid root API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid root API key",
        )
