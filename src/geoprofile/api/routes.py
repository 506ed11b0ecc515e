"""
REST API routes for GeoProfile.

Exposes policy selection, device reconciliation and manual policy
application, plus read-only views of policies and history.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Query, status

from geoprofile import __version__
from geoprofile.api.auth import require_api_key
from geoprofile.api.schemas import (
    ConnectionRequest,
    ErrorResponse,
    ForceApplyRequest,
    ForceApplyResponse,
    HealthCheck,
    HistoryEntryResponse,
    HistoryListResponse,
    PolicyListResponse,
    PolicyResponse,
    PolicyValidationResult,
    ReconciliationResponse,
    SelectionResponse,
)
from geoprofile.policy.models import HistoryEntry, find_default_policy
from geoprofile.policy.parser import validate_policies

logger = logging.getLogger(__name__)

# API Router with prefix
router = APIRouter(prefix="/api")


# ============================================================================
# Dependencies
# ============================================================================


class ServiceDependencies:
    """
    Container for service dependencies.

    Set these after app initialization to inject the store and processor.
    """

    store = None  # PolicyStore instance
    processor = None  # ConnectionProcessor instance
    start_time: float = time.time()


deps = ServiceDependencies()


def get_store():
    """Get policy store instance."""
    if deps.store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Policy store not initialized",
        )
    return deps.store


def get_processor():
    """Get connection processor instance."""
    if deps.processor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Connection processor not initialized",
        )
    return deps.processor


def _history_response(entry: HistoryEntry) -> HistoryEntryResponse:
    return HistoryEntryResponse(
        device_id=entry.device_id,
        policy_id=entry.policy_id,
        profile_ids=sorted(entry.profile_ids),
        ip_address=entry.ip_address,
        applied_at=entry.applied_at,
    )


# ============================================================================
# Health Check Endpoints
# ============================================================================


@router.get("/health", response_model=HealthCheck, tags=["Health"])
async def health_check() -> HealthCheck:
    """
    Check system health status.
    """
    return HealthCheck(
        status="healthy",
        version=__version__,
        uptime_seconds=time.time() - deps.start_time,
        store_connected=deps.store is not None,
        processor_ready=deps.processor is not None,
    )


# ============================================================================
# Policy Endpoints
# ============================================================================


@router.get(
    "/policies",
    response_model=PolicyListResponse,
    tags=["Policies"],
    dependencies=[Depends(require_api_key)],
)
async def list_policies() -> PolicyListResponse:
    """
    List all policies in evaluation order.
    """
    store = get_store()
    policies = store.load_policies()
    default = find_default_policy(policies)

    return PolicyListResponse(
        items=[PolicyResponse.model_validate(p.to_dict()) for p in policies],
        total=len(policies),
        default_policy_id=default.id if default else None,
    )


@router.get(
    "/policies/validate",
    response_model=PolicyValidationResult,
    tags=["Policies"],
    dependencies=[Depends(require_api_key)],
)
async def validate_stored_policies() -> PolicyValidationResult:
    """
    Check the stored policy set for configuration problems.
    """
    store = get_store()
    warnings = validate_policies(store.load_policies())
    return PolicyValidationResult(valid=not warnings, warnings=warnings)


@router.get(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    tags=["Policies"],
    responses={404: {"model": ErrorResponse}},
    dependencies=[Depends(require_api_key)],
)
async def get_policy(policy_id: str) -> PolicyResponse:
    """
    Get policy details by ID.
    """
    store = get_store()
    policy = store.get_policy(policy_id)
    if policy is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Policy not found: {policy_id}",
        )
    return PolicyResponse.model_validate(policy.to_dict())


@router.post(
    "/policies/{policy_id}/apply",
    response_model=ForceApplyResponse,
    tags=["Policies"],
    responses={404: {"model": ErrorResponse}},
    dependencies=[Depends(require_api_key)],
)
async def apply_policy(policy_id: str, body: ForceApplyRequest) -> ForceApplyResponse:
    """
    Push every profile of a policy to a device, bypassing selection.
    """
    store = get_store()
    processor = get_processor()

    if store.get_policy(policy_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Policy not found: {policy_id}",
        )

    result = await processor.force_apply_policy(
        policy_id, body.device_id, observed_ip=body.ip_address
    )
    logger.info(
        "Manual apply of %s to %s: %d pushed (success=%s)",
        policy_id, body.device_id, result.profiles_pushed, result.success,
    )
    return ForceApplyResponse(**result.to_dict())


# ============================================================================
# Device Endpoints
# ============================================================================


@router.get(
    "/devices/{device_id}/policy",
    response_model=SelectionResponse,
    tags=["Devices"],
    dependencies=[Depends(require_api_key)],
)
async def preview_policy(
    device_id: str,
    ip: str | None = Query(None, description="Observed IP address"),
) -> SelectionResponse:
    """
    Show which policy would apply to a device, without applying it.
    """
    processor = get_processor()
    selection = await processor.select_policy(device_id, ip)

    response = SelectionResponse(device_id=device_id, ip_address=ip)
    if selection is not None:
        response.policy_id = selection.policy.id
        response.policy_name = selection.policy.name
        response.reason = selection.reason.value
        response.matched_range = selection.matched_range
    return response


@router.post(
    "/devices/{device_id}/connection",
    response_model=ReconciliationResponse,
    tags=["Devices"],
    dependencies=[Depends(require_api_key)],
)
async def device_connection(
    device_id: str,
    body: ConnectionRequest,
) -> ReconciliationResponse:
    """
    Report a device observation and reconcile its profiles.
    """
    processor = get_processor()
    result = await processor.process_device_connection(device_id, body.ip_address)
    return ReconciliationResponse(**result.to_dict())


# ============================================================================
# History Endpoints
# ============================================================================


@router.get(
    "/history",
    response_model=HistoryListResponse,
    tags=["History"],
    dependencies=[Depends(require_api_key)],
)
async def list_history(
    device_id: str | None = Query(None, description="Filter by device"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum entries"),
) -> HistoryListResponse:
    """
    List reconciliation history, newest first.
    """
    store = get_store()

    if device_id:
        entries = store.device_history(device_id, limit=limit)
    else:
        entries = list(reversed(store.load_history()))[:limit]

    return HistoryListResponse(
        items=[_history_response(e) for e in entries],
        total=len(entries),
    )
