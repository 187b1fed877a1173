"""API key generation, shape validation and root key comparison.

Keys look like ``orbitkey_<url-safe base64>``. The prefix lets malformed or
foreign tokens be rejected before any store lookup.
"""

import base64
import hashlib
import hmac
import logging
import re
import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from .errors import InvalidRoleReferenceError, KeyGenerationError
from .models import APIKey

logger = logging.getLogger("orbitkeys.auth.keys")

# 32 bytes = 256 bits of entropy
DEFAULT_KEY_LENGTH = 32

# Requests below this byte count fall back to DEFAULT_KEY_LENGTH
MIN_KEY_LENGTH = 16

KEY_PREFIX = "orbitkey_"

# Minimum characters after the prefix. Lower than the encoded default
# length; it only rejects deliberately short tokens.
MIN_TRIMMED_KEY_LENGTH = 22

# Hard ceiling on key lifetime (10 years)
MAX_KEY_TTL = timedelta(days=3650)

_KEY_BODY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def generate_api_key(
    length: int = DEFAULT_KEY_LENGTH,
    *,
    randbytes: Callable[[int], bytes] = secrets.token_bytes,
) -> str:
    """Generate a new cryptographically secure API key.

    Args:
        length: Number of random bytes. Values below MIN_KEY_LENGTH use
            DEFAULT_KEY_LENGTH instead.
        randbytes: Secure randomness source returning the requested byte count.

    Returns:
        The prefixed key string.

    Raises:
        KeyGenerationError: If the source fails or returns fewer bytes than requested.
    """
    if length < MIN_KEY_LENGTH:
        length = DEFAULT_KEY_LENGTH

    try:
        raw = randbytes(length)
    except Exception as e:
        raise KeyGenerationError(f"Failed to generate secure random bytes: {e}") from e

    if len(raw) != length:
        raise KeyGenerationError(
            f"Invalid key length: requested {length} bytes but got {len(raw)}"
        )

    body = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    return f"{KEY_PREFIX}{body}"


def validate_api_key(key: str | None) -> bool:
    """Check that a string has the shape of an API key.

    Does not check that the key exists; this is the pre-filter applied before
    any lookup.

    Args:
        key: Candidate key string.

    Returns:
        True if the key carries the prefix and a long enough url-safe body.
    """
    if not key:
        return False

    if not key.startswith(KEY_PREFIX):
        return False

    body = key[len(KEY_PREFIX) :]
    if len(body) < MIN_TRIMMED_KEY_LENGTH:
        return False

    return bool(_KEY_BODY_PATTERN.match(body))


def is_root_api_key(key: str | None, root_key: str | None) -> bool:
    """Compare a presented key with the configured root key in constant time.

    Both values are hashed first so the comparison runs over equal-length
    digests whatever the candidate's length.

    Returns:
        True if both keys are non-empty and equal.
    """
    if not key or not root_key:
        return False

    presented = hashlib.sha256(key.encode("utf-8")).digest()
    expected = hashlib.sha256(root_key.encode("utf-8")).digest()
    return hmac.compare_digest(presented, expected)


def create_api_key(
    role_id: int | None,
    description: str = "",
    custom_data: str = "",
    expires_in: timedelta | None = None,
    *,
    now: datetime | None = None,
) -> APIKey:
    """Build a new, unsaved API key record bound to a role.

    Args:
        role_id: ID of the role to bind. Zero or None is rejected.
        description: Human-readable purpose of the key.
        custom_data: Opaque metadata carried with the key.
        expires_in: Optional lifetime. Non-positive means no expiration;
            anything over MAX_KEY_TTL is capped.
        now: Creation time (defaults to the current UTC time).

    Returns:
        The APIKey, not yet persisted.

    Raises:
        InvalidRoleReferenceError: If role_id is zero or missing.
        KeyGenerationError: If key generation fails.
    """
    if not role_id:
        raise InvalidRoleReferenceError("Role ID is required")

    key = generate_api_key(DEFAULT_KEY_LENGTH)
    created_at = now or datetime.now(UTC)

    api_key = APIKey(
        key=key,
        role_id=role_id,
        description=description,
        custom_data=custom_data,
        created_at=created_at,
    )

    if expires_in is not None and expires_in > timedelta(0):
        if expires_in > MAX_KEY_TTL:
            logger.warning(f"Requested key lifetime {expires_in} capped at {MAX_KEY_TTL}")
            expires_in = MAX_KEY_TTL
        api_key.expires_at = created_at + expires_in

    return api_key


def key_fingerprint(key: str) -> str:
    """Short, non-reversible identifier for a key, safe to log."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
