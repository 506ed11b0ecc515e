"""
Tests for ntfy notifications.
"""

from __future__ import annotations

import json

import httpx
import pytest

from geoprofile.config import NotifyConfig
from geoprofile.core.reconciler import ReconciliationResult
from geoprofile.notify import NtfyNotifier


def make_notifier(handler) -> NtfyNotifier:
    return NtfyNotifier(
        server="https://ntfy.test/",
        topic="devices",
        priority=4,
        transport=httpx.MockTransport(handler),
    )


class TestNtfyNotifier:
    """Tests for NtfyNotifier."""

    @pytest.mark.asyncio
    async def test_send(self) -> None:
        """Test the JSON publish body."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        notifier = make_notifier(handler)
        assert await notifier.send("Title", "Body", tags=["phone"])
        await notifier.close()

        assert str(seen[0].url) == "https://ntfy.test"
        assert json.loads(seen[0].content) == {
            "topic": "devices",
            "title": "Title",
            "message": "Body",
            "priority": 4,
            "tags": ["phone"],
        }

    @pytest.mark.asyncio
    async def test_send_error_status(self) -> None:
        """Test rejected messages return False."""
        notifier = make_notifier(lambda request: httpx.Response(500))
        assert await notifier.send("Title", "Body") is False
        await notifier.close()

    @pytest.mark.asyncio
    async def test_send_transport_error(self) -> None:
        """Test connection failures are swallowed."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        notifier = make_notifier(handler)
        assert await notifier.send("Title", "Body") is False
        await notifier.close()

    @pytest.mark.asyncio
    async def test_notify_result_only_on_change(self) -> None:
        """Test unchanged results are not announced."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        notifier = make_notifier(handler)
        await notifier.notify_result(ReconciliationResult(device_id="d1", skipped=True))
        await notifier.notify_result(ReconciliationResult(
            device_id="d1",
            policy_applied=True,
            policy_name="Office",
            profiles_removed=1,
            profiles_already_absent=1,
        ))
        assert seen == []

        await notifier.notify_result(ReconciliationResult(
            device_id="d1",
            policy_applied=True,
            policy_name="Office",
            profiles_pushed=2,
        ))
        await notifier.close()

        body = json.loads(seen[0].content)
        assert body["title"] == "Policy Applied: Office"
        assert body["tags"] == ["phone", "check"]
        assert "2 profile(s) pushed" in body["message"]

    def test_from_config(self) -> None:
        """Test configuration is applied."""
        notifier = NtfyNotifier.from_config(NotifyConfig(server="https://n.test", topic="t"))
        assert notifier.server == "https://n.test"
        assert notifier.topic == "t"
        assert notifier.priority == 3
