"""
MDM integration.

Client for the device-management service that owns device inventory and
the real installed state of configuration profiles.
"""

from geoprofile.mdm.client import (
    DeviceAPI,
    DeviceAPIError,
    MDMDevice,
    RemovalResult,
    SimpleMDMClient,
)

__all__ = [
    "DeviceAPI",
    "DeviceAPIError",
    "MDMDevice",
    "RemovalResult",
    "SimpleMDMClient",
]
