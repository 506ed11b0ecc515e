"""
MDM Device API client.

Async httpx client for the SimpleMDM REST API: device listing and
per-device profile push, removal and installation lookups.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from geoprofile.policy.models import ProfileRef

if TYPE_CHECKING:
    from geoprofile.config import DeviceAPIConfig


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://a.simplemdm.com/api/v1"


class DeviceAPIError(Exception):
    """A Device API call failed or timed out."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class RemovalResult:
    """Outcome of a profile removal call."""

    success: bool
    already_removed: bool = False


@dataclass
class MDMDevice:
    """Device record as reported by the MDM service."""

    id: str
    name: str = ""
    last_seen_ip: str | None = None
    status: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> MDMDevice:
        """Create from a SimpleMDM device resource."""
        attributes = data.get("attributes") or {}
        return cls(
            id=str(data["id"]),
            name=attributes.get("name") or attributes.get("device_name") or "",
            last_seen_ip=attributes.get("last_seen_ip"),
            status=attributes.get("status"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "last_seen_ip": self.last_seen_ip,
            "status": self.status,
        }


class DeviceAPI(Protocol):
    """Device directory and command dispatcher used by the engine."""

    async def list_devices(self) -> list[MDMDevice]: ...

    async def push_profile(self, profile_id: str, device_id: str) -> None: ...

    async def remove_profile(self, profile_id: str, device_id: str) -> RemovalResult: ...

    async def is_profile_installed(self, profile_id: str, device_id: str) -> bool: ...

    async def get_installed_profiles(self, device_id: str) -> list[ProfileRef]: ...


class SimpleMDMClient:
    """
    SimpleMDM API client.

    Authenticates with HTTP Basic auth using the API key as the username.
    Every request carries a timeout; timeouts and transport errors raise
    DeviceAPIError like any non-2xx response.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        page_size: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            api_key: SimpleMDM API key
            base_url: API base URL
            timeout: Per-request timeout in seconds
            page_size: Page size for list endpoints (max 100)
            transport: Optional httpx transport (used in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth(api_key, ""),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: DeviceAPIConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> SimpleMDMClient:
        """Create a client from configuration."""
        if not config.api_key:
            raise ValueError("SimpleMDM API key is missing")
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            page_size=config.page_size,
            transport=transport,
        )

    async def __aenter__(self) -> SimpleMDMClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Execute a request, raising DeviceAPIError on failure."""
        start_time = time.monotonic()
        try:
            response = await self._client.request(method, path, params=params)
            latency_ms = int((time.monotonic() - start_time) * 1000)
            response.raise_for_status()
            logger.debug("MDM %s %s -> %s in %dms", method, path, response.status_code, latency_ms)
            return response

        except httpx.HTTPStatusError as e:
            latency_ms = int((time.monotonic() - start_time) * 1000)
            status_code = e.response.status_code
            logger.debug("MDM %s %s -> %s in %dms", method, path, status_code, latency_ms)
            raise DeviceAPIError(
                f"MDM API error: {method} {path} -> {status_code}",
                status_code=status_code,
            ) from e

        except httpx.TimeoutException as e:
            raise DeviceAPIError(f"MDM API timeout: {method} {path}") from e

        except httpx.RequestError as e:
            raise DeviceAPIError(
                f"MDM API request failed: {method} {path}: {e.__class__.__name__}"
            ) from e

    async def _get_paginated(self, path: str) -> list[dict[str, Any]]:
        """Fetch every page of a list endpoint."""
        items: list[dict[str, Any]] = []
        params: dict[str, Any] = {"limit": self.page_size}

        while True:
            payload = (await self._request("GET", path, params=params)).json()
            page = payload.get("data") or []
            items.extend(page)
            if not payload.get("has_more") or not page:
                return items
            params = {"limit": self.page_size, "starting_after": page[-1]["id"]}

    async def list_devices(self) -> list[MDMDevice]:
        """List all enrolled devices."""
        return [MDMDevice.from_api(d) for d in await self._get_paginated("/devices")]

    async def get_device(self, device_id: str) -> MDMDevice:
        """Fetch a single device."""
        payload = (await self._request("GET", f"/devices/{device_id}")).json()
        return MDMDevice.from_api(payload["data"])

    async def push_profile(self, profile_id: str, device_id: str) -> None:
        """Assign a profile to a device, which installs it."""
        await self._request("POST", f"/profiles/{profile_id}/devices/{device_id}")
        logger.info("Pushed profile %s to device %s", profile_id, device_id)

    async def remove_profile(self, profile_id: str, device_id: str) -> RemovalResult:
        """
        Unassign a profile from a device.

        A 409 conflict means the profile is already absent.
        """
        try:
            await self._request("DELETE", f"/profiles/{profile_id}/devices/{device_id}")
        except DeviceAPIError as e:
            if e.status_code == 409:
                logger.info(
                    "Profile %s already absent from device %s", profile_id, device_id
                )
                return RemovalResult(success=True, already_removed=True)
            raise

        logger.info("Removed profile %s from device %s", profile_id, device_id)
        return RemovalResult(success=True)

    async def get_installed_profiles(self, device_id: str) -> list[ProfileRef]:
        """List profiles currently installed on a device."""
        resources = await self._get_paginated(f"/devices/{device_id}/profiles")
        return [
            ProfileRef(
                id=str(r["id"]),
                name=(r.get("attributes") or {}).get("name") or "",
            )
            for r in resources
        ]

    async def is_profile_installed(self, profile_id: str, device_id: str) -> bool:
        """Check whether a profile is installed on a device."""
        installed = await self.get_installed_profiles(device_id)
        return any(p.id == str(profile_id) for p in installed)
