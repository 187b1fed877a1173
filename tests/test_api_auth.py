"""Tests for the API authentication dependencies."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException

from orbitkeys.api.auth import (
    api_key_auth,
    get_auth_context,
    require_permission,
    require_root,
    to_http_exception,
)
from orbitkeys.auth.errors import (
    AuthenticationTimeoutError,
    InsufficientPermissionError,
    MalformedCredentialError,
    RoleNotFoundError,
    TooManyFailedAttemptsError,
)
from orbitkeys.auth.models import APIKey, AuthContext, Role


def _context(permissions: list[str]) -> AuthContext:
    role = Role(name="test", id=1, permissions=permissions)
    return AuthContext(api_key=APIKey(key="orbitkey_x", role_id=1, id=5, role=role), role=role)


def _request(host: str = "10.0.0.7"):
    request = MagicMock()
    request.client.host = host
    request.state = SimpleNamespace()
    return request


class TestToHTTPException:
    """Tests for error to HTTP response conversion."""

    def test_status_and_message(self):
        """Test that the error's status and message are used."""
        exc = to_http_exception(MalformedCredentialError())
        assert exc.status_code == 401
        assert exc.detail == "Invalid API key format"

    def test_not_found(self):
        assert to_http_exception(RoleNotFoundError()).status_code == 404

    def test_timeout_is_service_unavailable(self):
        assert to_http_exception(AuthenticationTimeoutError(0.5)).status_code == 503

    def test_throttled_sets_retry_after(self):
        """Test that throttling responses carry Retry-After."""
        exc = to_http_exception(TooManyFailedAttemptsError(retry_after=30))
        assert exc.status_code == 429
        assert exc.headers == {"Retry-After": "30"}


class TestAPIKeyAuth:
    """Tests for the api_key_auth dependency."""

    @pytest.mark.asyncio
    async def test_success_sets_context(self):
        """Test that a successful authentication is stored on the request."""
        context = _context(["roles:read"])
        gate = MagicMock()
        gate.authenticate = AsyncMock(return_value=context)
        request = _request()

        result = await api_key_auth("roles:read")(request, api_key="orbitkey_key", gate=gate)

        assert result is context
        assert request.state.auth_context is context
        gate.authenticate.assert_awaited_once_with(
            "orbitkey_key", required_permission="roles:read", client_address="10.0.0.7"
        )

    @pytest.mark.asyncio
    async def test_failure_raises_http_exception(self):
        """Test that gate errors become HTTP errors."""
        gate = MagicMock()
        gate.authenticate = AsyncMock(side_effect=InsufficientPermissionError("roles:read"))
        request = _request()

        with pytest.raises(HTTPException) as exc_info:
            await api_key_auth("roles:read")(request, api_key="orbitkey_key", gate=gate)

        assert exc_info.value.status_code == 403
        assert not hasattr(request.state, "auth_context")


class TestRequirePermission:
    """Tests for get_auth_context and require_permission."""

    @pytest.mark.asyncio
    async def test_unauthenticated_request(self):
        """Test that a request without context is rejected."""
        with pytest.raises(HTTPException) as exc_info:
            await get_auth_context(_request())
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_permission_granted(self):
        context = _context(["roles:*"])
        assert await require_permission("roles:create")(context=context) is context

    @pytest.mark.asyncio
    async def test_permission_denied(self):
        """Test that a missing permission is forbidden."""
        with pytest.raises(HTTPException) as exc_info:
            await require_permission("roles:delete")(context=_context(["roles:read"]))
        assert exc_info.value.status_code == 403


class TestRequireRoot:
    """Tests for the root key dependency."""

    @pytest.mark.asyncio
    async def test_missing_root_key(self):
        settings = SimpleNamespace(root_api_key="root-secret")
        with pytest.raises(HTTPException) as exc_info:
            await require_root(root_key=None, settings=settings)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Root API key is required"

    @pytest.mark.asyncio
    async def test_wrong_root_key(self):
        settings = SimpleNamespace(root_api_key="root-secret")
        with pytest.raises(HTTPException) as exc_info:
            await require_root(root_key="guess", settings=settings)

        assert exc_info.value.detail == "Invalid root API key"

    @pytest.mark.asyncio
    async def test_unconfigured_root_key_rejects_everything(self):
        """Test that no configured root key means no access."""
        settings = SimpleNamespace(root_api_key=None)
        with pytest.raises(HTTPException):
            await require_root(root_key="", settings=settings)

    @pytest.mark.asyncio
    async def test_correct_root_key(self):
        settings = SimpleNamespace(root_api_key="root-secret")
        assert await require_root(root_key="root-secret", settings=settings) is None
