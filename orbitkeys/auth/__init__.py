"""Authentication and authorization core.

API keys bound to roles, roles carrying permission sets, and the gate that
checks both on each request.
"""

from .errors import (
    APIKeyNotFoundError,
    AuthError,
    AuthenticationFailedError,
    AuthenticationTimeoutError,
    CredentialExpiredError,
    InsufficientPermissionError,
    InvalidPermissionError,
    InvalidRoleReferenceError,
    KeyGenerationError,
    MalformedCredentialError,
    MissingCredentialError,
    NotFoundError,
    OrbitKeysError,
    RoleInUseError,
    RoleNameConflictError,
    RoleNotFoundError,
    TooManyFailedAttemptsError,
    ValidationError,
)
from .gate import AuthenticationGate
from .keys import create_api_key, generate_api_key, is_root_api_key, validate_api_key
from .models import APIKey, AuthContext, Role
from .permissions import check_permission, parse_permissions, validate_permission_format
from .store import CredentialStore, SQLiteCredentialStore
from .throttle import FailedAttemptTracker

__all__ = [
    "APIKey",
    "APIKeyNotFoundError",
    "AuthContext",
    "AuthError",
    "AuthenticationFailedError",
    "AuthenticationGate",
    "AuthenticationTimeoutError",
    "CredentialExpiredError",
    "CredentialStore",
    "FailedAttemptTracker",
    "InsufficientPermissionError",
    "InvalidPermissionError",
    "InvalidRoleReferenceError",
    "KeyGenerationError",
    "MalformedCredentialError",
    "MissingCredentialError",
    "NotFoundError",
    "OrbitKeysError",
    "Role",
    "RoleInUseError",
    "RoleNameConflictError",
    "RoleNotFoundError",
    "SQLiteCredentialStore",
    "TooManyFailedAttemptsError",
    "ValidationError",
    "check_permission",
    "create_api_key",
    "generate_api_key",
    "is_root_api_key",
    "parse_permissions",
    "validate_api_key",
    "validate_permission_format",
]
