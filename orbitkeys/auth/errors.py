"""Exceptions raised by the OrbitKeys authentication core.

Every exception carries the HTTP status the routing layer should answer
with and a stable machine-readable code.
"""


class OrbitKeysError(Exception):
    """Base exception for all OrbitKeys errors."""

    status_code: int = 500
    code: str = "ORBITKEYS_ERROR"
    default_message: str = "Internal Server Error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthError(OrbitKeysError):
    """Base exception for authentication gate outcomes."""

    status_code = 401
    code = "AUTH_ERROR"
    default_message = "Authentication required"


class MissingCredentialError(AuthError):
    """Raised when no API key was presented."""

    code = "MISSING_CREDENTIAL"
    default_message = "API key is required"


class MalformedCredentialError(AuthError):
    """Raised when the API key fails shape validation."""

    code = "MALFORMED_CREDENTIAL"
    default_message = "Invalid API key format"


class AuthenticationFailedError(AuthError):
    """Raised when a well-formed key has no matching record.

    The message stays generic so callers cannot enumerate keys.
    """

    code = "AUTHENTICATION_FAILED"
    default_message = "Invalid API key"


class CredentialExpiredError(AuthError):
    """Raised when the key record exists but is past its expiry."""

    code = "CREDENTIAL_EXPIRED"
    default_message = "API key has expired"


class InsufficientPermissionError(AuthError):
    """Raised when the key's role lacks the required permission."""

    status_code = 403
    code = "INSUFFICIENT_PERMISSION"
    default_message = "Insufficient permissions"

    def __init__(self, required_permission: str | None = None, message: str | None = None):
        self.required_permission = required_permission
        super().__init__(message)


class AuthenticationTimeoutError(AuthError):
    """Raised when no decision was reached within the time budget."""

    status_code = 503
    code = "AUTHENTICATION_TIMEOUT"
    default_message = "Authentication timed out"

    def __init__(self, timeout_seconds: float, message: str | None = None):
        self.timeout_seconds = timeout_seconds
        super().__init__(message or f"Authentication timed out after {timeout_seconds}s")


class TooManyFailedAttemptsError(AuthError):
    """Raised when a client address has too many recent failures."""

    status_code = 429
    code = "TOO_MANY_FAILED_ATTEMPTS"
    default_message = "Too many failed authentication attempts. Please retry later."

    def __init__(self, retry_after: int | None = None, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(message)


class KeyGenerationError(OrbitKeysError):
    """Raised when the randomness source cannot supply the requested bytes."""

    code = "KEY_GENERATION_FAILED"
    default_message = "Failed to generate API key"


class ValidationError(OrbitKeysError):
    """Raised when a request fails input validation."""

    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class InvalidPermissionError(ValidationError):
    """Raised when a role is given a malformed permission string."""

    code = "INVALID_PERMISSION"

    def __init__(self, permission: str):
        self.permission = permission
        super().__init__(f"Invalid permission format: {permission}")


class InvalidRoleReferenceError(ValidationError):
    """Raised when a key is issued against a zero or nonexistent role id."""

    code = "INVALID_ROLE_REFERENCE"
    default_message = "Invalid role ID"


class RoleInUseError(ValidationError):
    """Raised when deleting a role that API keys still reference."""

    code = "ROLE_IN_USE"
    default_message = "Cannot delete role as it is assigned to API keys"

    def __init__(self, role_id: int, key_count: int | None = None):
        self.role_id = role_id
        self.key_count = key_count
        super().__init__()


class NotFoundError(OrbitKeysError):
    """Base exception for missing records."""

    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class RoleNotFoundError(NotFoundError):
    """Raised when a role id does not exist."""

    code = "ROLE_NOT_FOUND"
    default_message = "Role not found"


class APIKeyNotFoundError(NotFoundError):
    """Raised when an API key id or token does not exist."""

    code = "API_KEY_NOT_FOUND"
    default_message = "API key not found"


class RoleNameConflictError(OrbitKeysError):
    """Raised when a role name is already taken."""

    status_code = 409
    code = "ROLE_NAME_CONFLICT"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Role with name '{name}' already exists")
