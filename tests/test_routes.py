"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from orbitkeys.auth.keys import generate_api_key
from orbitkeys.config.settings import Settings
from orbitkeys.main import create_app

ROOT_KEY = "orbitkey_root_for_tests_0123456789"


def _settings(tmp_path, **overrides) -> Settings:
    values = {
        "root_api_key": ROOT_KEY,
        "db_path": tmp_path / "orbitkeys.db",
        "audit_log_path": tmp_path / "audit.jsonl",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def app(tmp_path):
    return create_app(_settings(tmp_path))


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def service(app, client):
    return app.state.service


@pytest.fixture
def admin_headers(service):
    """Headers for a key bound to the default admin role."""
    admin = service.store.get_role_by_name("admin")
    return {"X-API-Key": service.issue_api_key(admin.id).key}


def _headers_for(service, *permissions: str) -> dict[str, str]:
    role = service.create_role(f"role-{generate_api_key()[-8:]}", permissions=list(permissions))
    return {"X-API-Key": service.issue_api_key(role.id).key}


class TestHealth:
    def test_health(self, client):
        """Test the unauthenticated health check."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestAuthentication:
    """Tests for API key handling on the management routes."""

    def test_missing_key(self, client):
        response = client.get("/api/roles")
        assert response.status_code == 401
        assert response.json()["detail"] == "API key is required"

    def test_malformed_key(self, client):
        response = client.get("/api/roles", headers={"X-API-Key": "not-a-key"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key format"

    def test_unknown_key(self, client):
        """Test that an unknown key gets the generic message."""
        response = client.get("/api/roles", headers={"X-API-Key": generate_api_key()})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"

    def test_router_permission_required(self, client, service):
        """Test that a key without the router's base permission is forbidden."""
        headers = _headers_for(service, "roles:create")
        response = client.post("/api/roles", json={"name": "x"}, headers=headers)
        assert response.status_code == 403

    def test_route_permission_required(self, client, service):
        """Test that a key with only read access cannot create."""
        headers = _headers_for(service, "roles:read")
        assert client.get("/api/roles", headers=headers).status_code == 200

        response = client.post("/api/roles", json={"name": "x"}, headers=headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "Insufficient permissions"

    def test_resource_wildcard(self, client, service):
        headers = _headers_for(service, "roles:*")
        response = client.post("/api/roles", json={"name": "writers"}, headers=headers)
        assert response.status_code == 201

    def test_expired_key(self, client, service, admin_headers):
        """Test that a key expired through the API stops working."""
        other = _headers_for(service, "keys:read")
        key_id = service.lookup_api_key(other["X-API-Key"]).id

        response = client.put(f"/api/keys/{key_id}/expiration", json={"expires_in": -1}, headers=admin_headers)
        assert response.status_code == 200

        response = client.get("/api/keys", headers=other)
        assert response.status_code == 401
        assert response.json()["detail"] == "API key has expired"

    def test_repeated_failures_throttled(self, tmp_path):
        """Test that a client is blocked after too many failures."""
        app = create_app(_settings(tmp_path, max_failed_attempts=2))
        with TestClient(app) as client:
            for _ in range(2):
                assert client.get("/api/roles", headers={"X-API-Key": "bad"}).status_code == 401

            response = client.get("/api/roles", headers={"X-API-Key": "bad"})
            assert response.status_code == 429
            assert int(response.headers["Retry-After"]) > 0


class TestRoleRoutes:
    """Tests for role management."""

    def test_list_includes_admin(self, client, admin_headers):
        response = client.get("/api/roles", headers=admin_headers)
        assert response.status_code == 200
        admin = [r for r in response.json() if r["name"] == "admin"]
        assert admin[0]["permissions"] == ["*"]

    def test_create_and_get(self, client, admin_headers):
        """Test creating a role and reading it back."""
        response = client.post(
            "/api/roles",
            json={"name": "orders-reader", "description": "Reads orders", "permissions": ["orders:read"]},
            headers=admin_headers,
        )
        assert response.status_code == 201
        role = response.json()

        response = client.get(f"/api/roles/{role['id']}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["permissions"] == ["orders:read"]

    def test_create_duplicate(self, client, admin_headers):
        response = client.post("/api/roles", json={"name": "admin"}, headers=admin_headers)
        assert response.status_code == 409

    def test_create_invalid_permission(self, client, admin_headers):
        """Test that malformed permissions are rejected."""
        response = client.post(
            "/api/roles", json={"name": "bad", "permissions": ["orders"]}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid permission format: orders"

    def test_get_unknown(self, client, admin_headers):
        assert client.get("/api/roles/999", headers=admin_headers).status_code == 404

    def test_update_and_permissions(self, client, service, admin_headers):
        """Test updating a role and granting and revoking permissions."""
        role = service.create_role("orders", permissions=["orders:read"])

        response = client.put(f"/api/roles/{role.id}", json={"description": "Orders team"}, headers=admin_headers)
        assert response.json()["description"] == "Orders team"
        assert response.json()["permissions"] == ["orders:read"]

        response = client.post(
            f"/api/roles/{role.id}/permissions", json={"permission": "orders:write"}, headers=admin_headers
        )
        assert response.json()["permissions"] == ["orders:read", "orders:write"]

        response = client.delete(f"/api/roles/{role.id}/permissions/orders:read", headers=admin_headers)
        assert response.json()["permissions"] == ["orders:write"]

    def test_delete(self, client, service, admin_headers):
        role = service.create_role("temporary")
        response = client.delete(f"/api/roles/{role.id}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"message": "Role deleted successfully"}

    def test_delete_in_use(self, client, service, admin_headers):
        """Test that a role with keys cannot be deleted."""
        role = service.create_role("busy")
        service.issue_api_key(role.id)

        response = client.delete(f"/api/roles/{role.id}", headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot delete role as it is assigned to API keys"


class TestKeyRoutes:
    """Tests for API key management."""

    def test_create_key(self, client, service, admin_headers):
        """Test issuing a key with an expiration."""
        role = service.create_role("orders-reader", permissions=["orders:read"])
        response = client.post(
            "/api/keys",
            json={"role_id": role.id, "description": "billing", "expires_in": 30},
            headers=admin_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["key"].startswith("orbitkey_")
        assert body["role"]["name"] == "orders-reader"
        assert body["expires_at"] is not None

    def test_create_key_without_expiration(self, client, service, admin_headers):
        role = service.create_role("forever")
        response = client.post("/api/keys", json={"role_id": role.id, "expires_in": 0}, headers=admin_headers)
        assert response.json()["expires_at"] is None

    @pytest.mark.parametrize("role_id,detail", [(0, "Role ID is required"), (999, "Invalid role ID")])
    def test_create_key_invalid_role(self, client, admin_headers, role_id, detail):
        response = client.post("/api/keys", json={"role_id": role_id}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == detail

    def test_list_and_get(self, client, admin_headers):
        response = client.get("/api/keys", headers=admin_headers)
        assert response.status_code == 200
        key_id = response.json()[0]["id"]

        response = client.get(f"/api/keys/{key_id}", headers=admin_headers)
        assert response.json()["key"] == admin_headers["X-API-Key"]

    def test_clear_expiration(self, client, service, admin_headers):
        """Test that a null expiration removes it."""
        role = service.create_role("temp")
        api_key = service.issue_api_key(role.id)

        client.put(f"/api/keys/{api_key.id}/expiration", json={"expires_in": 5}, headers=admin_headers)
        response = client.put(f"/api/keys/{api_key.id}/expiration", json={"expires_in": None}, headers=admin_headers)
        assert response.json()["expires_at"] is None

    def test_delete_key(self, client, service, admin_headers):
        """Test that a deleted key can no longer authenticate."""
        headers = _headers_for(service, "keys:read")
        key_id = service.lookup_api_key(headers["X-API-Key"]).id

        response = client.delete(f"/api/keys/{key_id}", headers=admin_headers)
        assert response.status_code == 204
        assert client.get("/api/keys", headers=headers).status_code == 401

    def test_delete_unknown_key(self, client, admin_headers):
        assert client.delete("/api/keys/999", headers=admin_headers).status_code == 404


class TestLookupRoutes:
    """Tests for the root-key lookup and validate endpoints."""

    @pytest.fixture
    def api_key(self, service):
        role = service.create_role("orders-reader", permissions=["orders:read"])
        return service.issue_api_key(role.id)

    @pytest.fixture
    def root_headers(self):
        return {"X-Root-API-Key": ROOT_KEY}

    def test_root_key_required(self, client, api_key):
        response = client.get("/api/lookup", params={"key": api_key.key})
        assert response.status_code == 401
        assert response.json()["detail"] == "Root API key is required"

    def test_wrong_root_key(self, client, api_key):
        """Test that a stored API key is not accepted as the root key."""
        response = client.get(
            "/api/lookup", params={"key": api_key.key}, headers={"X-Root-API-Key": api_key.key}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid root API key"

    def test_lookup(self, client, api_key, root_headers):
        response = client.get("/api/lookup", params={"key": api_key.key}, headers=root_headers)
        assert response.status_code == 200
        assert response.json()["id"] == api_key.id
        assert response.json()["role"]["permissions"] == ["orders:read"]

    def test_lookup_missing_param(self, client, root_headers):
        response = client.get("/api/lookup", headers=root_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Key parameter is required"

    def test_lookup_unknown(self, client, root_headers):
        response = client.get("/api/lookup", params={"key": generate_api_key()}, headers=root_headers)
        assert response.status_code == 404

    def test_lookup_expired(self, client, service, api_key, root_headers):
        service.set_key_expiration(api_key.id, -1)
        response = client.get("/api/lookup", params={"key": api_key.key}, headers=root_headers)
        assert response.status_code == 401
        assert response.json()["detail"] == "API key has expired"

    def test_validate(self, client, api_key, root_headers):
        """Test permission checks for a presented key."""
        response = client.get(
            "/api/validate", params={"key": api_key.key, "permission": "orders:read"}, headers=root_headers
        )
        assert response.json() == {"has_permission": True}

        response = client.get(
            "/api/validate", params={"key": api_key.key, "permission": "orders:write"}, headers=root_headers
        )
        assert response.json() == {"has_permission": False}

    def test_validate_missing_params(self, client, api_key, root_headers):
        response = client.get("/api/validate", params={"key": api_key.key}, headers=root_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Key and permission parameters are required"

    def test_lookup_records_last_used(self, app, client, api_key, root_headers):
        """Test that lookups update last_used_at in the background."""
        client.get("/api/lookup", params={"key": api_key.key}, headers=root_headers)
        client.portal.call(app.state.gate.drain)

        assert app.state.store.get_key(api_key.id).last_used_at is not None


class TestBaseURL:
    def test_custom_base_url(self, tmp_path):
        """Test that routes are mounted under the configured base URL."""
        app = create_app(_settings(tmp_path, base_url="/v1/auth"))
        with TestClient(app) as client:
            assert client.get("/v1/auth/roles").status_code == 401
            assert client.get("/api/roles").status_code == 404
