"""
Tests for the polling daemon.
"""

from __future__ import annotations

import asyncio
import signal

import pytest

from geoprofile.config import GeoProfileConfig
from geoprofile.daemon import GeoProfileDaemon, main
from geoprofile.mdm.client import MDMDevice
from geoprofile.store.database import PolicyStore

from conftest import FakeDeviceAPI


@pytest.fixture
def store(test_store: PolicyStore, policies) -> PolicyStore:
    test_store.replace_policies(policies)
    return test_store


@pytest.fixture
def fleet() -> FakeDeviceAPI:
    return FakeDeviceAPI(devices=[
        MDMDevice(id="1", name="iPad", last_seen_ip="192.168.1.20"),
        MDMDevice(id="2", name="Mac", last_seen_ip="10.0.3.3"),
        MDMDevice(id="3", name="iPhone"),
    ])


@pytest.fixture
def daemon(store: PolicyStore, fleet: FakeDeviceAPI) -> GeoProfileDaemon:
    config = GeoProfileConfig()
    config.daemon.poll_interval = 0.05
    return GeoProfileDaemon(config, device_api=fleet, store=store)


class TestPolling:
    """Tests for a single poll."""

    @pytest.mark.asyncio
    async def test_poll_reconciles_every_device(self, daemon, fleet) -> None:
        """Test each device gets the policy for its network."""
        results = await daemon.poll_once()

        assert [r.policy_name for r in results] == ["Home", "Office", "Default"]
        assert fleet.installed == {
            "1": {"p-home"},
            "2": {"p-office", "p-shared"},
            "3": {"p-default"},
        }
        assert daemon.get_statistics()["devices_processed"] == 3

    @pytest.mark.asyncio
    async def test_second_poll_pushes_nothing(self, daemon, fleet) -> None:
        """Test unchanged devices are skipped on the next poll."""
        await daemon.poll_once()
        pushed = len(fleet.pushed)

        results = await daemon.poll_once()

        assert all(r.skipped for r in results)
        assert len(fleet.pushed) == pushed

    @pytest.mark.asyncio
    async def test_device_moves_between_polls(self, daemon, fleet) -> None:
        """Test a device that changed network gets its profiles swapped."""
        await daemon.poll_once()
        fleet.devices[0] = MDMDevice(id="1", name="iPad", last_seen_ip="10.0.0.8")

        results = await daemon.poll_once()

        assert results[0].policy_name == "Office"
        assert results[0].profiles_removed == 1
        assert fleet.installed["1"] == {"p-office", "p-shared"}

    @pytest.mark.asyncio
    async def test_list_failure(self, daemon, fleet) -> None:
        """Test a failed device listing is counted and survived."""
        fleet.fail_list = True

        assert await daemon.poll_once() == []
        stats = daemon.get_statistics()
        assert stats["polls"] == 1
        assert stats["poll_errors"] == 1

    @pytest.mark.asyncio
    async def test_same_device_serialized(self, daemon, fleet) -> None:
        """Test overlapping reconciliations of one device do not double-push."""
        first, second = await asyncio.gather(
            daemon.handle_device("9", "192.168.1.5"),
            daemon.handle_device("9", "192.168.1.5"),
        )

        assert first.profiles_pushed == 1
        assert second.skipped
        assert fleet.pushed == [("p-home", "9")]


class TestLifecycle:
    """Tests for start, run and stop."""

    @pytest.mark.asyncio
    async def test_run_until_signal(self, daemon, fleet) -> None:
        """Test the loop polls until a termination signal arrives."""
        task = asyncio.create_task(daemon.run())
        await asyncio.sleep(0.12)
        daemon.handle_signal(signal.SIGTERM)
        await asyncio.wait_for(task, timeout=2)

        stats = daemon.get_statistics()
        assert stats["polls"] >= 1
        assert stats["running"] is False
        assert fleet.closed

    @pytest.mark.asyncio
    async def test_start_seeds_default_policy(self, test_store, fleet) -> None:
        """Test an empty store gets a default policy on start."""
        daemon = GeoProfileDaemon(GeoProfileConfig(), device_api=fleet, store=test_store)
        await daemon.start()

        assert any(p.is_default for p in test_store.load_policies())
        await daemon.stop()

    def test_notifier_hook_registered(self, store, fleet) -> None:
        """Test enabling notifications adds a post-process hook."""
        config = GeoProfileConfig()
        config.notify.enabled = True
        daemon = GeoProfileDaemon(config, device_api=fleet, store=store)

        assert len(daemon.processor._async_post_hooks) == 1
        assert daemon._notifier is not None


class TestMain:
    """Tests for the daemon entry point."""

    def test_missing_config_file(self, temp_dir) -> None:
        """Test a missing config file is reported."""
        assert main(["-c", str(temp_dir / "missing.yaml")]) == 1

    def test_missing_api_key(self, temp_dir, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the daemon refuses to start without a SimpleMDM key."""
        monkeypatch.delenv("SIMPLEMDM_API_KEY", raising=False)
        config_path = temp_dir / "c.yaml"
        config_path.write_text("daemon:\n  log_level: info\n")

        assert main(["-c", str(config_path)]) == 1
