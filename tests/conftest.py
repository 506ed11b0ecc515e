"""
Pytest configuration and shared fixtures for GeoProfile tests.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator, Sequence

import pytest
import yaml

from geoprofile.mdm.client import DeviceAPIError, MDMDevice, RemovalResult
from geoprofile.policy.models import HistoryEntry, IpRange, Policy, ProfileRef
from geoprofile.store.database import PolicyStore


class FakeDeviceAPI:
    """
    In-memory Device API.

    Tracks installed profiles per device and records every call.
    Failures are injected per profile id.
    """

    def __init__(self, devices: list[MDMDevice] | None = None) -> None:
        self.devices = devices or []
        self.installed: dict[str, set[str]] = {}
        self.pushed: list[tuple[str, str]] = []
        self.removed: list[tuple[str, str]] = []
        self.checks = 0

        self.fail_push: set[str] = set()
        self.fail_remove: set[str] = set()
        self.conflict_remove: set[str] = set()  # raise DeviceAPIError(409)
        self.fail_checks = False
        self.fail_list = False
        self.closed = False

    def install(self, device_id: str, *profile_ids: str) -> None:
        self.installed.setdefault(device_id, set()).update(profile_ids)

    async def list_devices(self) -> list[MDMDevice]:
        if self.fail_list:
            raise DeviceAPIError("list failed", status_code=500)
        return list(self.devices)

    async def push_profile(self, profile_id: str, device_id: str) -> None:
        self.pushed.append((profile_id, device_id))
        if profile_id in self.fail_push:
            raise DeviceAPIError("push failed", status_code=500)
        self.install(device_id, profile_id)

    async def remove_profile(self, profile_id: str, device_id: str) -> RemovalResult:
        self.removed.append((profile_id, device_id))
        if profile_id in self.conflict_remove:
            raise DeviceAPIError("conflict", status_code=409)
        if profile_id in self.fail_remove:
            raise DeviceAPIError("remove failed", status_code=500)
        self.installed.get(device_id, set()).discard(profile_id)
        return RemovalResult(success=True)

    async def is_profile_installed(self, profile_id: str, device_id: str) -> bool:
        self.checks += 1
        if self.fail_checks:
            raise DeviceAPIError("lookup failed", status_code=503)
        return profile_id in self.installed.get(device_id, set())

    async def get_installed_profiles(self, device_id: str) -> list[ProfileRef]:
        return [ProfileRef(id=p) for p in sorted(self.installed.get(device_id, set()))]

    async def close(self) -> None:
        self.closed = True


class InMemoryBackend:
    """Blocking store backend without native append support."""

    def __init__(
        self,
        policies: list[Policy] | None = None,
        history: list[HistoryEntry] | None = None,
    ) -> None:
        self.policies = policies or []
        self.history = history or []
        self.fail = False
        self.saves = 0

    def load_policies(self) -> list[Policy]:
        if self.fail:
            raise RuntimeError("store unavailable")
        return list(self.policies)

    def load_history(self) -> list[HistoryEntry]:
        if self.fail:
            raise RuntimeError("store unavailable")
        return list(self.history)

    def save_history(self, entries: Sequence[HistoryEntry]) -> None:
        if self.fail:
            raise RuntimeError("store unavailable")
        self.saves += 1
        self.history = list(entries)


def make_policy(
    policy_id: str,
    profiles: Sequence[str] = (),
    ranges: Sequence[str] = (),
    devices: Sequence[str] = (),
    is_default: bool = False,
) -> Policy:
    """Build a policy with profile names derived from their ids."""
    return Policy(
        id=policy_id,
        name=policy_id.replace("-", " ").title(),
        is_default=is_default,
        ip_ranges=[IpRange(address_specifier=r) for r in ranges],
        devices=list(devices),
        profiles=[ProfileRef(id=p, name=f"Profile {p}") for p in profiles],
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir: Path) -> Path:
    """Create a sample configuration file."""
    config_path = temp_dir / "geoprofile.yaml"
    config_data = {
        "daemon": {
            "log_level": "debug",
            "poll_interval": 5,
        },
        "store": {
            "path": str(temp_dir / "test.db"),
            "wal_mode": False,
            "history_limit": 50,
        },
        "device_api": {
            "api_key": "test-key",
            "timeout": 2.5,
        },
        "reconcile": {
            "freshness_window": 600,
        },
        "api": {
            "enabled": True,
            "port": 8080,
        },
    }
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def sample_policies(temp_dir: Path) -> Path:
    """Create a sample policy file."""
    policy_path = temp_dir / "policies.yaml"
    policy_data = {
        "policies": [
            {
                "id": "home",
                "name": "Home",
                "ip_ranges": [
                    {"display_name": "Home LAN", "address_specifier": "192.168.1.0/24"},
                ],
                "profiles": [{"id": "101", "name": "Home WiFi"}],
            },
            {
                "id": "office",
                "name": "Office",
                "ipRanges": [{"ipAddress": "10.0.*.*"}],
                "devices": ["42"],
                "profiles": [{"id": "201", "name": "Office VPN"}, "202"],
            },
            {
                "id": "default",
                "name": "Default",
                "isDefault": True,
                "profiles": [{"id": "900", "name": "Restrictions"}],
            },
        ]
    }
    with open(policy_path, "w") as f:
        yaml.dump(policy_data, f)
    return policy_path


@pytest.fixture
def policies() -> list[Policy]:
    """Home/office/default policy set."""
    return [
        make_policy("home", profiles=["p-home"], ranges=["192.168.1.0/24"]),
        make_policy("office", profiles=["p-office", "p-shared"], ranges=["10.0.*.*"]),
        make_policy("default", profiles=["p-default"], is_default=True),
    ]


@pytest.fixture
def device_api() -> FakeDeviceAPI:
    """Empty fake Device API."""
    return FakeDeviceAPI()


@pytest.fixture
def test_store(temp_dir: Path) -> Generator[PolicyStore, None, None]:
    """Temporary SQLite policy store."""
    store = PolicyStore(temp_dir / "store.db", wal_mode=False, history_limit=100)
    yield store
    store.close()
