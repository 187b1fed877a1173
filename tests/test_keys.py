"""Tests for API key generation, validation and issuance."""

import math
from datetime import UTC, datetime, timedelta

import pytest

from orbitkeys.auth.errors import InvalidRoleReferenceError, KeyGenerationError
from orbitkeys.auth.keys import (
    DEFAULT_KEY_LENGTH,
    KEY_PREFIX,
    MAX_KEY_TTL,
    create_api_key,
    generate_api_key,
    is_root_api_key,
    key_fingerprint,
    validate_api_key,
)


def _encoded_length(length_bytes: int) -> int:
    """Length of unpadded base64 for a byte count."""
    return math.ceil(length_bytes * 4 / 3)


class TestGenerateAPIKey:
    """Tests for generate_api_key."""

    @pytest.mark.parametrize("length", [16, 24, 32, 64])
    def test_generated_key_format(self, length):
        """Test that keys carry the prefix, the full encoded body and no padding."""
        key = generate_api_key(length)
        assert key.startswith(KEY_PREFIX)
        assert not key.endswith("=")
        assert len(key) == len(KEY_PREFIX) + _encoded_length(length)

    @pytest.mark.parametrize("length", [15, 1, 0, -5])
    def test_short_length_uses_default(self, length):
        """Test that lengths below the minimum fall back to the default."""
        key = generate_api_key(length)
        assert len(key) == len(KEY_PREFIX) + _encoded_length(DEFAULT_KEY_LENGTH)

    def test_short_length_requests_default_bytes(self):
        """Test that the randomness source is asked for the default length."""
        requested = []

        def randbytes(n):
            requested.append(n)
            return b"\x00" * n

        generate_api_key(8, randbytes=randbytes)
        assert requested == [DEFAULT_KEY_LENGTH]

    def test_generated_keys_unique(self):
        """Test that generated keys are unique."""
        keys = [generate_api_key() for _ in range(200)]
        assert len(set(keys)) == 200

    @pytest.mark.parametrize("length", [16, 17, 32, 100])
    def test_generated_keys_validate(self, length):
        """Test that every generated key passes validation."""
        assert validate_api_key(generate_api_key(length))

    @pytest.mark.parametrize("error", [OSError, RuntimeError, ValueError])
    def test_source_error_raises(self, error):
        """Test that any failure of the randomness source aborts generation."""

        def broken(n):
            raise error("entropy pool unavailable")

        with pytest.raises(KeyGenerationError) as exc_info:
            generate_api_key(randbytes=broken)

        assert "entropy pool unavailable" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, error)

    def test_short_read_raises(self):
        """Test that a short read is never padded or truncated."""
        with pytest.raises(KeyGenerationError):
            generate_api_key(32, randbytes=lambda n: b"\x01" * (n - 1))


class TestValidateAPIKey:
    """Tests for validate_api_key."""

    @pytest.mark.parametrize("key", ["", None])
    def test_empty_rejected(self, key):
        """Test that empty keys are rejected."""
        assert not validate_api_key(key)

    def test_wrong_prefix_rejected(self):
        """Test that a foreign prefix is rejected."""
        assert not validate_api_key("mk_" + "a" * 43)

    def test_short_body_rejected(self):
        """Test that a remainder below the minimum is rejected."""
        assert not validate_api_key(KEY_PREFIX + "a" * 21)

    def test_minimum_body_accepted(self):
        """Test that a remainder of exactly the minimum is accepted."""
        assert validate_api_key(KEY_PREFIX + "a" * 22)

    @pytest.mark.parametrize("bad", [" ", ";", "|", "$", "`", "&", "(", "<", "+", "/", "="])
    def test_disallowed_characters_rejected(self, bad):
        """Test that spaces, shell metacharacters and non-url-safe characters are rejected."""
        assert not validate_api_key(KEY_PREFIX + "a" * 20 + bad + "a" * 5)


class TestIsRootAPIKey:
    """Tests for the root key comparison."""

    def test_same_key_matches(self):
        """Test that identical keys match."""
        assert is_root_api_key("root-secret", "root-secret")

    def test_different_key_does_not_match(self):
        """Test that different keys do not match."""
        assert not is_root_api_key("root-secret", "root-secreT")

    def test_different_length_does_not_match(self):
        """Test that a prefix of the root key does not match."""
        assert not is_root_api_key("root", "root-secret")

    @pytest.mark.parametrize("key,root", [("", "x"), ("x", ""), (None, "x"), ("x", None), ("", "")])
    def test_empty_never_matches(self, key, root):
        """Test that an empty side never matches."""
        assert not is_root_api_key(key, root)


class TestCreateAPIKey:
    """Tests for create_api_key."""

    @pytest.mark.parametrize("role_id", [0, None])
    def test_missing_role_rejected(self, role_id):
        """Test that a zero role id is rejected."""
        with pytest.raises(InvalidRoleReferenceError):
            create_api_key(role_id)

    def test_no_expiration_by_default(self):
        """Test that keys never expire unless asked to."""
        api_key = create_api_key(5, description="billing")
        assert api_key.expires_at is None
        assert api_key.id is None
        assert api_key.role_id == 5
        assert api_key.description == "billing"
        assert validate_api_key(api_key.key)

    def test_expiration_set(self):
        """Test that a lifetime sets the expiration from the creation time."""
        now = datetime(2030, 1, 1, tzinfo=UTC)
        api_key = create_api_key(5, expires_in=timedelta(days=30), now=now)
        assert api_key.created_at == now
        assert api_key.expires_at == now + timedelta(days=30)

    def test_expiration_capped_at_ten_years(self):
        """Test that an eleven year lifetime is capped at ten years."""
        now = datetime(2030, 1, 1, tzinfo=UTC)
        api_key = create_api_key(5, expires_in=timedelta(days=365 * 11), now=now)
        assert api_key.expires_at == now + MAX_KEY_TTL
        assert MAX_KEY_TTL == timedelta(days=3650)

    @pytest.mark.parametrize("expires_in", [timedelta(0), timedelta(days=-1)])
    def test_non_positive_lifetime_means_no_expiration(self, expires_in):
        """Test that zero or negative lifetimes leave the key without expiry."""
        assert create_api_key(5, expires_in=expires_in).expires_at is None


class TestKeyFingerprint:
    """Tests for key_fingerprint."""

    def test_fingerprint_is_stable_and_short(self):
        """Test that fingerprints are deterministic and do not contain the key."""
        key = generate_api_key()
        assert key_fingerprint(key) == key_fingerprint(key)
        assert len(key_fingerprint(key)) == 12
        assert key_fingerprint(key) not in key
