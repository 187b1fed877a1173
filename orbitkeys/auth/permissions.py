"""Permission matching for role-based access control.

Permissions are flat "resource:action" strings with one level of
wildcarding. A role's permission list is checked against the permission
a protected operation requires.

Permission Format:
    - "resource:action" - Specific action (e.g., "users:read")
    - "resource:*" - All actions on a resource (e.g., "users:*")
    - "*" - Everything (admin-only)

Examples:
    - "roles:read" - List and view roles
    - "roles:create" - Create roles
    - "keys:*" - All key management operations
"""

import logging

logger = logging.getLogger("orbitkeys.auth.permissions")

WILDCARD_PERMISSION = "*"
PERMISSION_SEPARATOR = ":"


def parse_permissions(permissions: str) -> list[str]:
    """Split a comma-separated permission string into a list.

    Args:
        permissions: Comma-separated permissions (e.g., "users:read, users:write").

    Returns:
        List of trimmed permission strings, empty for empty input.
    """
    if not permissions:
        return []

    return [p.strip() for p in permissions.split(",")]


def join_permissions(permissions: list[str]) -> str:
    """Join a permission list into its comma-separated display form."""
    return ",".join(permissions)


def format_permission(resource: str, action: str) -> str:
    """Format a permission string as "resource:action".

    No validation is performed; use validate_permission_format() on the result
    if the parts come from untrusted input.
    """
    return f"{resource}{PERMISSION_SEPARATOR}{action}"


def validate_permission_format(permission: str) -> bool:
    """Check that a permission string is well formed.

    "*" is valid. Anything else must split into exactly two non-empty
    parts on ":" (the action may be "*").

    Args:
        permission: The permission string to validate.

    Returns:
        True if the permission can be attached to a role.
    """
    if permission == WILDCARD_PERMISSION:
        return True

    parts = permission.split(PERMISSION_SEPARATOR)
    if len(parts) != 2:
        return False

    resource, action = parts
    return resource != "" and action != ""


def invalid_permissions(permissions: list[str]) -> list[str]:
    """Return the entries of a permission list that fail format validation."""
    return [p for p in permissions if not validate_permission_format(p)]


def check_permission(required: str, granted: list[str]) -> bool:
    """Check if a granted permission list satisfies a required permission.

    Matching rules, in order:
        1. "*" in granted allows everything.
        2. An exact match of the required permission.
        3. "resource:*" in granted, when required is "resource:action".

    A required permission that does not split into exactly two parts only
    matches through rule 1 or 2.

    Args:
        required: The permission the operation requires.
        granted: The permissions held by the caller's role.

    Returns:
        True if access is granted.
    """
    if WILDCARD_PERMISSION in granted:
        return True

    if required in granted:
        return True

    parts = required.split(PERMISSION_SEPARATOR)
    if len(parts) == 2:
        resource_wildcard = format_permission(parts[0], WILDCARD_PERMISSION)
        return resource_wildcard in granted

    logger.debug(f"Required permission '{required}' is not 'resource:action' shaped")
    return False
