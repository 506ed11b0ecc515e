"""
Tests for the REST API.

Tests endpoints, API key authentication and response schemas.
"""

from __future__ import annotations

from typing import Generator

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from geoprofile.api import configure_services, create_app, deps
from geoprofile.api.auth import APIKeyGuard
from geoprofile.config import GeoProfileConfig
from geoprofile.core.processor import create_processor
from geoprofile.store.database import PolicyStore

from conftest import FakeDeviceAPI


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def store(test_store: PolicyStore, policies) -> PolicyStore:
    test_store.replace_policies(policies)
    return test_store


@pytest.fixture
def fake_api() -> FakeDeviceAPI:
    return FakeDeviceAPI()


@pytest.fixture
def test_app(store: PolicyStore, fake_api: FakeDeviceAPI) -> Generator:
    """Create test FastAPI application with services wired."""
    app = create_app(debug=True)
    processor = create_processor(GeoProfileConfig(), fake_api, store)
    configure_services(app, store=store, processor=processor, api_key="test-key")
    yield app
    configure_services(app)


@pytest.fixture
def client(test_app) -> TestClient:
    """Create authenticated test client."""
    return TestClient(test_app, headers={"X-API-Key": "test-key"})


# ============================================================================
# Authentication
# ============================================================================


class TestAuthentication:
    """Tests for API key checks."""

    def test_missing_key(self, test_app) -> None:
        """Test requests without a key are rejected."""
        response = TestClient(test_app).get("/api/policies")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "API key required"

    def test_wrong_key(self, test_app) -> None:
        """Test requests with a wrong key are rejected."""
        response = TestClient(test_app, headers={"X-API-Key": "nope"}).get("/api/policies")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_health_is_public(self, test_app) -> None:
        """Test the health endpoint needs no key."""
        response = TestClient(test_app).get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["store_connected"] is True
        assert data["processor_ready"] is True

    def test_open_when_unconfigured(self, store) -> None:
        """Test the API is open when no key is configured."""
        app = create_app()
        configure_services(app, store=store, api_key=None)
        response = TestClient(app).get("/api/policies")
        assert response.status_code == 200

    def test_guard(self) -> None:
        """Test key comparison."""
        guard = APIKeyGuard()
        assert guard.check(None)
        guard.configure("abc")
        assert guard.enabled
        assert guard.check("abc")
        assert not guard.check("abd")
        assert not guard.check(None)


# ============================================================================
# Policy Endpoints
# ============================================================================


class TestPolicyEndpoints:
    """Tests for policy endpoints."""

    def test_list_policies(self, client: TestClient) -> None:
        """Test policies are listed in stored order."""
        response = client.get("/api/policies")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert [p["id"] for p in data["items"]] == ["home", "office", "default"]
        assert data["default_policy_id"] == "default"
        assert data["items"][0]["ip_ranges"][0]["address_specifier"] == "192.168.1.0/24"

    def test_get_policy(self, client: TestClient) -> None:
        """Test a single policy."""
        response = client.get("/api/policies/office")

        assert response.status_code == 200
        assert [p["id"] for p in response.json()["profiles"]] == ["p-office", "p-shared"]

    def test_get_legacy_default(self, client: TestClient) -> None:
        """Test the legacy default id."""
        response = client.get("/api/policies/default-policy")
        assert response.json()["id"] == "default"

    def test_get_missing_policy(self, client: TestClient) -> None:
        """Test 404 for unknown policies."""
        response = client.get("/api/policies/missing")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_validate(self, client: TestClient) -> None:
        """Test validation of the stored set."""
        response = client.get("/api/policies/validate")

        assert response.status_code == 200
        assert response.json() == {"valid": True, "warnings": []}

    def test_apply_policy(self, client: TestClient, fake_api: FakeDeviceAPI) -> None:
        """Test manual application."""
        response = client.post("/api/policies/home/apply", json={"device_id": "d1"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "profiles_pushed": 1,
            "policy_name": "Home",
        }
        assert fake_api.installed["d1"] == {"p-home"}

    def test_apply_unknown_policy(self, client: TestClient, fake_api: FakeDeviceAPI) -> None:
        """Test 404 and no side effects for unknown policies."""
        response = client.post("/api/policies/missing/apply", json={"device_id": "d1"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert fake_api.pushed == []

    def test_apply_requires_device(self, client: TestClient) -> None:
        """Test request validation."""
        response = client.post("/api/policies/home/apply", json={"device_id": ""})
        assert response.status_code == 422


# ============================================================================
# Device Endpoints
# ============================================================================


class TestDeviceEndpoints:
    """Tests for device endpoints."""

    def test_preview_policy(self, client: TestClient, fake_api: FakeDeviceAPI) -> None:
        """Test selection preview has no side effects."""
        response = client.get("/api/devices/d1/policy", params={"ip": "10.0.9.9"})

        assert response.status_code == 200
        data = response.json()
        assert data["policy_id"] == "office"
        assert data["reason"] == "ip"
        assert data["matched_range"] == "10.0.*.*"
        assert fake_api.pushed == []

    def test_preview_without_ip(self, client: TestClient) -> None:
        """Test preview falls back to the default."""
        data = client.get("/api/devices/d1/policy").json()
        assert data["policy_id"] == "default"
        assert data["ip_address"] is None

    def test_connection(self, client: TestClient, fake_api: FakeDeviceAPI) -> None:
        """Test reporting a device connection reconciles it."""
        response = client.post("/api/devices/d1/connection", json={"ip_address": "192.168.1.3"})

        assert response.status_code == 200
        data = response.json()
        assert data["policy_applied"] is True
        assert data["policy_name"] == "Home"
        assert data["profiles_pushed"] == 1
        assert data["match_reason"] == "ip"

    def test_connection_twice(self, client: TestClient) -> None:
        """Test a repeated report is skipped."""
        client.post("/api/devices/d1/connection", json={"ip_address": "192.168.1.3"})
        data = client.post(
            "/api/devices/d1/connection", json={"ip_address": "192.168.1.3"}
        ).json()

        assert data["skipped"] is True
        assert data["profiles_pushed"] == 0

    def test_connection_blank_ip(self, client: TestClient) -> None:
        """Test a blank address is treated as unknown."""
        data = client.post("/api/devices/d1/connection", json={"ip_address": "  "}).json()
        assert data["policy_name"] == "Default"


# ============================================================================
# History Endpoints
# ============================================================================


class TestHistoryEndpoints:
    """Tests for history endpoints."""

    def test_history(self, client: TestClient) -> None:
        """Test history is returned newest first."""
        client.post("/api/devices/d1/connection", json={"ip_address": "192.168.1.3"})
        client.post("/api/devices/d2/connection", json={"ip_address": "10.0.0.3"})

        data = client.get("/api/history").json()

        assert data["total"] == 2
        assert [e["device_id"] for e in data["items"]] == ["d2", "d1"]
        assert data["items"][0]["profile_ids"] == ["p-office", "p-shared"]

    def test_history_for_device(self, client: TestClient) -> None:
        """Test filtering by device."""
        client.post("/api/devices/d1/connection", json={"ip_address": "192.168.1.3"})
        client.post("/api/devices/d2/connection", json={"ip_address": "10.0.0.3"})

        data = client.get("/api/history", params={"device_id": "d1", "limit": 5}).json()

        assert data["total"] == 1
        assert data["items"][0]["policy_id"] == "home"

    def test_history_limit_validation(self, client: TestClient) -> None:
        """Test limit bounds."""
        response = client.get("/api/history", params={"limit": 0})
        assert response.status_code == 422


# ============================================================================
# Service Availability
# ============================================================================


class TestServiceAvailability:
    """Tests for unconfigured services."""

    def test_store_not_initialized(self) -> None:
        """Test 503 when services are not wired."""
        app = create_app()
        configure_services(app)
        assert deps.store is None

        response = TestClient(app).get("/api/policies")
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
