"""
Policy data models.

Defines policies, their network ranges and profiles, and the
reconciliation history entries recorded for each device.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# Identifier used by older policy stores for the built-in default policy
LEGACY_DEFAULT_POLICY_ID = "default-policy"


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _as_id(value: Any) -> str | None:
    """Normalize an identifier (int, str or {"id": ...}) to a string."""
    if isinstance(value, dict):
        value = value.get("id")
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _first_key(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the value of the first key present in data."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


class MatchReason(Enum):
    """Why a policy was selected for a device."""

    DIRECT = "direct"  # Device explicitly assigned
    IP = "ip"  # Observed IP matched a range
    DEFAULT = "default"  # Fallback policy
    MANUAL = "manual"  # Operator override

    def __str__(self) -> str:
        return self.value


@dataclass
class IpRange:
    """
    A named network range.

    The specifier is an exact address, a CIDR block or an IPv4
    wildcard pattern such as ``10.0.*.*``.
    """

    address_specifier: str
    display_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "display_name": self.display_name,
            "address_specifier": self.address_specifier,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> IpRange:
        """Create from dictionary or bare specifier string."""
        if isinstance(data, str):
            return cls(address_specifier=data.strip())

        specifier = _first_key(
            data,
            "address_specifier",
            "addressSpecifier",
            "ip_address",
            "ipAddress",
            "address",
            default="",
        )
        return cls(
            address_specifier=str(specifier).strip(),
            display_name=_first_key(data, "display_name", "displayName", default=""),
        )


@dataclass
class ProfileRef:
    """Reference to a configuration profile held by the MDM service."""

    id: str
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str | int) -> ProfileRef:
        """Create from dictionary or bare profile id."""
        profile_id = _as_id(data)
        if profile_id is None:
            raise ValueError(f"Profile reference without id: {data!r}")
        name = data.get("name", "") if isinstance(data, dict) else ""
        return cls(id=profile_id, name=name or "")

    @property
    def label(self) -> str:
        """Human readable name, falling back to the id."""
        return self.name or self.id


@dataclass
class Policy:
    """
    A profile policy.

    Declares which profiles should be installed on devices that are
    directly assigned to it or whose IP address falls into one of its
    ranges. Exactly one policy in a set should be the default.
    """

    id: str
    name: str
    description: str = ""
    is_default: bool = False
    ip_ranges: list[IpRange] = field(default_factory=list)
    devices: list[str] = field(default_factory=list)
    profiles: list[ProfileRef] = field(default_factory=list)

    @property
    def profile_ids(self) -> frozenset[str]:
        """Set of declared profile ids."""
        return frozenset(profile.id for profile in self.profiles)

    def has_device(self, device_id: str) -> bool:
        """Check if a device is directly assigned to this policy."""
        return str(device_id) in self.devices

    def profile(self, profile_id: str) -> ProfileRef | None:
        """Look up a declared profile by id."""
        for profile in self.profiles:
            if profile.id == profile_id:
                return profile
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_default": self.is_default,
            "ip_ranges": [r.to_dict() for r in self.ip_ranges],
            "devices": list(self.devices),
            "profiles": [p.to_dict() for p in self.profiles],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Policy:
        """
        Create from dictionary.

        Accepts both the current snake_case shape and the older camelCase
        shape, with devices given as ids or ``{id, name}`` objects.
        """
        devices = []
        for device in _first_key(data, "devices", default=[]):
            device_id = _as_id(device)
            if device_id is not None and device_id not in devices:
                devices.append(device_id)

        return cls(
            id=_as_id(data.get("id")) or str(uuid.uuid4()),
            name=data.get("name") or "Unnamed Policy",
            description=data.get("description") or "",
            is_default=bool(_first_key(data, "is_default", "isDefault", default=False)),
            ip_ranges=[
                IpRange.from_dict(r)
                for r in _first_key(data, "ip_ranges", "ipRanges", default=[])
            ],
            devices=devices,
            profiles=[
                ProfileRef.from_dict(p)
                for p in _first_key(data, "profiles", default=[])
            ],
        )


@dataclass(frozen=True)
class HistoryEntry:
    """
    One reconciliation history record.

    Records which profiles a policy was considered to have applied to a
    device at a point in time. Entries are never mutated.
    """

    device_id: str
    policy_id: str
    profile_ids: frozenset[str] = frozenset()
    ip_address: str | None = None
    applied_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "device_id": self.device_id,
            "policy_id": self.policy_id,
            "profile_ids": sorted(self.profile_ids),
            "ip_address": self.ip_address,
            "applied_at": self.applied_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        """Create from dictionary."""
        applied_at = _first_key(data, "applied_at", "timestamp", default=None)
        if isinstance(applied_at, str):
            applied_at = datetime.fromisoformat(applied_at.replace("Z", "+00:00"))
        if applied_at is None:
            applied_at = _utc_now()
        elif applied_at.tzinfo is None:
            applied_at = applied_at.replace(tzinfo=timezone.utc)

        return cls(
            device_id=_as_id(_first_key(data, "device_id", "deviceId")) or "",
            policy_id=_as_id(_first_key(data, "policy_id", "policyId")) or "",
            profile_ids=frozenset(
                str(p) for p in _first_key(data, "profile_ids", "profileIds", default=[])
            ),
            ip_address=_first_key(data, "ip_address", "ipAddress"),
            applied_at=applied_at,
        )


def find_default_policy(policies: list[Policy]) -> Policy | None:
    """Return the first policy flagged as default."""
    for policy in policies:
        if policy.is_default:
            return policy
    return None


def find_policy(policies: list[Policy], policy_id: str) -> Policy | None:
    """
    Look up a policy by id.

    The legacy ``default-policy`` id resolves to the current default.
    """
    for policy in policies:
        if policy.id == policy_id:
            return policy
    if policy_id == LEGACY_DEFAULT_POLICY_ID:
        return find_default_policy(policies)
    return None
