"""API module."""

from .routes import router
from .schemas import APIKeyResponse, PermissionCheckResponse, RoleResponse

__all__ = ["router", "APIKeyResponse", "PermissionCheckResponse", "RoleResponse"]
