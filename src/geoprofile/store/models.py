"""
Store database models.

SQLAlchemy ORM models for policies and reconciliation history.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase

from geoprofile.policy.models import HistoryEntry, Policy


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class PolicyRecord(Base):
    """
    Persisted policy.

    Ranges, devices and profiles are stored as JSON documents. ``position``
    preserves load order, which decides ties during selection.
    """

    __tablename__ = "policies"

    id = Column(String(64), primary_key=True)
    position = Column(Integer, nullable=False, default=0, index=True)
    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    ip_ranges = Column(JSON, nullable=True)
    devices = Column(JSON, nullable=True)
    profiles = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utc_now, nullable=False)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    def to_policy(self) -> Policy:
        """Convert to a normalized Policy."""
        return Policy.from_dict({
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_default": self.is_default,
            "ip_ranges": self.ip_ranges or [],
            "devices": self.devices or [],
            "profiles": self.profiles or [],
        })

    def update_from(self, policy: Policy) -> None:
        """Copy fields from a Policy."""
        data = policy.to_dict()
        self.name = data["name"]
        self.description = data["description"]
        self.is_default = data["is_default"]
        self.ip_ranges = data["ip_ranges"]
        self.devices = data["devices"]
        self.profiles = data["profiles"]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = self.to_policy().to_dict()
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data


class HistoryRecord(Base):
    """
    Reconciliation history entry.

    Append-only: rows are inserted and pruned, never updated.
    """

    __tablename__ = "reconciliation_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(64), nullable=False, index=True)
    policy_id = Column(String(64), nullable=False)
    ip_address = Column(String(64), nullable=True)
    profile_ids = Column(JSON, nullable=False, default=list)
    applied_at = Column(DateTime, default=_utc_now, nullable=False, index=True)

    @classmethod
    def from_entry(cls, entry: HistoryEntry) -> HistoryRecord:
        """Create a row from a HistoryEntry."""
        return cls(
            device_id=entry.device_id,
            policy_id=entry.policy_id,
            ip_address=entry.ip_address,
            profile_ids=sorted(entry.profile_ids),
            applied_at=entry.applied_at.astimezone(timezone.utc).replace(tzinfo=None),
        )

    def to_entry(self) -> HistoryEntry:
        """Convert to a HistoryEntry."""
        return HistoryEntry(
            device_id=self.device_id,
            policy_id=self.policy_id,
            ip_address=self.ip_address,
            profile_ids=frozenset(str(p) for p in (self.profile_ids or [])),
            applied_at=_as_utc(self.applied_at),
        )
