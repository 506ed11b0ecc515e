"""
Pydantic schemas for API request/response validation.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Policy Schemas
# ============================================================================


class IpRangeSchema(BaseModel):
    """IP range of a policy."""

    display_name: str = ""
    address_specifier: str


class ProfileSchema(BaseModel):
    """Profile reference of a policy."""

    id: str
    name: str = ""


class PolicyResponse(BaseModel):
    """Policy response model."""

    id: str
    name: str
    description: str = ""
    is_default: bool = False
    ip_ranges: list[IpRangeSchema] = []
    devices: list[str] = []
    profiles: list[ProfileSchema] = []


class PolicyListResponse(BaseModel):
    """Policy list in stored order."""

    items: list[PolicyResponse]
    total: int
    default_policy_id: str | None = None


class PolicyValidationResult(BaseModel):
    """Result of validating the stored policy set."""

    valid: bool
    warnings: list[str] = []


# ============================================================================
# Device Schemas
# ============================================================================


class SelectionResponse(BaseModel):
    """Policy that would apply to a device right now."""

    device_id: str
    ip_address: str | None = None
    policy_id: str | None = None
    policy_name: str | None = None
    reason: str | None = None
    matched_range: str | None = None


class ConnectionRequest(BaseModel):
    """Device observation reported by a caller."""

    ip_address: str | None = Field(None, max_length=64)

    @field_validator("ip_address")
    @classmethod
    def strip_address(cls, v: str | None) -> str | None:
        """Treat blank addresses as unknown."""
        if v is None:
            return v
        return v.strip() or None


class ReconciliationResponse(BaseModel):
    """Outcome of reconciling one device."""

    device_id: str
    policy_applied: bool
    policy_name: str = ""
    policy_id: str | None = None
    profiles_pushed: int = 0
    profiles_removed: int = 0
    profiles_already_absent: int = 0
    removed_profile_names: list[str] = []
    match_reason: str | None = None
    skipped: bool = False
    timestamp: datetime


class ForceApplyRequest(BaseModel):
    """Request to push a policy to a device."""

    device_id: str = Field(..., min_length=1, max_length=128)
    ip_address: str | None = Field(None, max_length=64)


class ForceApplyResponse(BaseModel):
    """Outcome of a manual policy application."""

    success: bool
    profiles_pushed: int = 0
    policy_name: str = ""


# ============================================================================
# History Schemas
# ============================================================================


class HistoryEntryResponse(BaseModel):
    """Reconciliation history entry."""

    device_id: str
    policy_id: str
    profile_ids: list[str] = []
    ip_address: str | None = None
    applied_at: datetime


class HistoryListResponse(BaseModel):
    """History entries, newest first."""

    items: list[HistoryEntryResponse]
    total: int


# ============================================================================
# Health Check Schemas
# ============================================================================


class HealthCheck(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    uptime_seconds: float
    store_connected: bool
    processor_ready: bool


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
