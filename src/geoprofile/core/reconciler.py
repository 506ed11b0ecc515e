"""
Reconciliation Engine.

Brings a device's installed profiles in line with its active policy:
removes profiles left behind by the previously applied policy, skips
redundant pushes, pushes what is missing, and records the outcome in the
reconciliation history.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Sequence, TypeVar

from geoprofile.mdm.client import DeviceAPI, RemovalResult
from geoprofile.policy.models import (
    HistoryEntry,
    MatchReason,
    Policy,
    ProfileRef,
    find_policy,
)
from geoprofile.store.database import PolicyStoreError
from geoprofile.store.history import latest_entry, recently_applied

if TYPE_CHECKING:
    from geoprofile.store.accessor import PolicyStoreAccessor


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FRESHNESS_WINDOW = timedelta(hours=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconciliationResult:
    """
    Outcome of reconciling one device.

    Partial failures show up only as counts lower than the number of
    profiles the policy declares.
    """

    device_id: str
    policy_applied: bool = False
    policy_name: str = ""
    policy_id: str | None = None
    profiles_pushed: int = 0
    profiles_removed: int = 0
    profiles_already_absent: int = 0  # Counted in profiles_removed, no call made
    removed_profile_names: list[str] = field(default_factory=list)
    match_reason: MatchReason | None = None
    skipped: bool = False  # Same profile set applied recently
    timestamp: datetime = field(default_factory=_utc_now)

    @classmethod
    def noop(cls, device_id: str) -> ReconciliationResult:
        """Result for an invocation that took no action."""
        return cls(device_id=str(device_id))

    @property
    def changed(self) -> bool:
        """Check if any profile was actually pushed or removed."""
        return self.profiles_pushed > 0 or self.profiles_removed > self.profiles_already_absent

    def summary(self) -> str:
        """One-line human readable summary."""
        if not self.policy_name:
            return f"No policy applied to device {self.device_id}"
        if self.skipped:
            return f"Policy '{self.policy_name}' already applied to device {self.device_id}"

        text = (
            f"Policy '{self.policy_name}' applied to device {self.device_id}: "
            f"{self.profiles_pushed} profile(s) pushed"
        )
        removed_now = self.profiles_removed - self.profiles_already_absent
        if removed_now:
            text += f", {removed_now} removed ({', '.join(self.removed_profile_names)})"
        if self.profiles_already_absent:
            text += f", {self.profiles_already_absent} already absent"
        return text

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/API."""
        return {
            "device_id": self.device_id,
            "policy_applied": self.policy_applied,
            "policy_name": self.policy_name,
            "policy_id": self.policy_id,
            "profiles_pushed": self.profiles_pushed,
            "profiles_removed": self.profiles_removed,
            "profiles_already_absent": self.profiles_already_absent,
            "removed_profile_names": list(self.removed_profile_names),
            "match_reason": self.match_reason.value if self.match_reason else None,
            "skipped": self.skipped,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ForceApplyResult:
    """Outcome of a manual policy application."""

    success: bool
    profiles_pushed: int = 0
    policy_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "profiles_pushed": self.profiles_pushed,
            "policy_name": self.policy_name,
        }


class ReconciliationEngine:
    """
    Drives Device API calls to converge a device on its active policy.

    Installation checks are a best-effort short-circuit: when a check
    fails the push or removal is issued anyway. Individual push/remove
    failures are logged and never stop the remaining operations.
    """

    def __init__(
        self,
        device_api: DeviceAPI,
        store: PolicyStoreAccessor | None = None,
        freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
        check_installed: bool = True,
        operation_timeout: float | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            device_api: Device API collaborator
            store: Store accessor used to persist history (optional)
            freshness_window: How long an identical application
                suppresses re-pushing
            check_installed: Query installation state before push/remove
            operation_timeout: Timeout in seconds for each Device API call
        """
        self.device_api = device_api
        self.store = store
        self.freshness_window = freshness_window
        self.check_installed = check_installed
        self.operation_timeout = operation_timeout

    async def reconcile(
        self,
        device_id: str,
        observed_ip: str | None,
        active_policy: Policy,
        history: Sequence[HistoryEntry],
        policies: Sequence[Policy] = (),
        now: datetime | None = None,
        match_reason: MatchReason | None = None,
    ) -> ReconciliationResult:
        """
        Reconcile a device against its active policy.

        Never raises; failures are reflected in the returned counts.

        Args:
            device_id: Device identifier
            observed_ip: Device's observed IP address
            active_policy: Policy selected for the device
            history: History snapshot, oldest first
            policies: Loaded policy set, used to resolve the previous policy
            now: Reference time (defaults to current UTC time)
            match_reason: Why the policy was selected

        Returns:
            ReconciliationResult summarizing pushes and removals
        """
        device_id = str(device_id)
        result = ReconciliationResult(
            device_id=device_id,
            policy_name=active_policy.name,
            policy_id=active_policy.id,
            match_reason=match_reason,
        )

        try:
            await self._reconcile(
                result, observed_ip, active_policy, history, policies, now or _utc_now()
            )
        except Exception as e:
            logger.exception("Reconciliation failed for device %s: %s", device_id, e)

        return result

    async def _reconcile(
        self,
        result: ReconciliationResult,
        observed_ip: str | None,
        active_policy: Policy,
        history: Sequence[HistoryEntry],
        policies: Sequence[Policy],
        now: datetime,
    ) -> None:
        device_id = result.device_id
        previous = latest_entry(history, device_id)
        transition = previous is not None and previous.policy_id != active_policy.id

        # Step 1: remove what the previous policy left behind
        if transition:
            logger.info(
                "Device %s moving from policy %s to %s",
                device_id, previous.policy_id, active_policy.name,
            )
            for profile in self._stale_profiles(previous, active_policy, policies):
                removal = await self._remove(profile, device_id)
                if removal is None:
                    continue
                result.profiles_removed += 1
                if removal.already_removed:
                    result.profiles_already_absent += 1
                else:
                    result.removed_profile_names.append(profile.label)

        # Step 2: skip when nothing was removed and the same set was applied recently
        desired = active_policy.profile_ids
        if result.profiles_removed == 0 and recently_applied(
            history, device_id, active_policy.id, desired, now, self.freshness_window
        ):
            logger.info(
                "Policy %s recently applied to device %s, skipping push",
                active_policy.name, device_id,
            )
            result.skipped = True
            return

        # Step 3: push missing profiles
        applied: set[str] = set()
        for profile in active_policy.profiles:
            installed = await self._is_installed(profile.id, device_id)
            if installed:
                logger.debug("Profile %s already on device %s", profile.id, device_id)
                applied.add(profile.id)
                continue
            if await self._push(profile, device_id):
                result.profiles_pushed += 1
                applied.add(profile.id)

        result.policy_applied = True

        # Step 4: record what is now considered applied
        entry = HistoryEntry(
            device_id=device_id,
            policy_id=active_policy.id,
            profile_ids=frozenset(applied),
            ip_address=observed_ip,
            applied_at=now,
        )
        await self._record(entry, history)

        logger.info(
            "Policy %s applied to device %s: %d pushed, %d already installed, "
            "%d failed, %d removed",
            active_policy.name, device_id, result.profiles_pushed,
            len(applied) - result.profiles_pushed,
            len(active_policy.profiles) - len(applied),
            result.profiles_removed,
        )

    async def force_apply(
        self,
        policy: Policy,
        device_id: str,
        observed_ip: str | None = None,
        history: Sequence[HistoryEntry] | None = None,
        now: datetime | None = None,
    ) -> ForceApplyResult:
        """
        Push every profile of a policy unconditionally.

        Skips installation checks and duplicate-push avoidance, but still
        records a history entry.

        Returns:
            ForceApplyResult; success is True when every push succeeded
        """
        device_id = str(device_id)
        pushed: set[str] = set()

        for profile in policy.profiles:
            if await self._push(profile, device_id):
                pushed.add(profile.id)

        entry = HistoryEntry(
            device_id=device_id,
            policy_id=policy.id,
            profile_ids=frozenset(pushed),
            ip_address=observed_ip,
            applied_at=now or _utc_now(),
        )
        await self._record(entry, history)

        logger.info(
            "Policy %s force-applied to device %s: %d/%d profiles pushed",
            policy.name, device_id, len(pushed), len(policy.profiles),
        )
        return ForceApplyResult(
            success=len(pushed) == len(policy.profiles),
            profiles_pushed=len(pushed),
            policy_name=policy.name,
        )

    def _stale_profiles(
        self,
        previous: HistoryEntry,
        active_policy: Policy,
        policies: Sequence[Policy],
    ) -> list[ProfileRef]:
        """Profiles of the previous policy that the active one does not declare."""
        previous_policy = find_policy(list(policies), previous.policy_id)
        if previous_policy is not None:
            candidates = previous_policy.profiles
        else:
            # Policy deleted since; fall back to what was recorded
            candidates = [ProfileRef(id=pid) for pid in sorted(previous.profile_ids)]

        keep = active_policy.profile_ids
        return [profile for profile in candidates if profile.id not in keep]

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a Device API call under the per-operation timeout."""
        if self.operation_timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self.operation_timeout)

    async def _is_installed(self, profile_id: str, device_id: str) -> bool | None:
        """Installation state, or None when unknown."""
        if not self.check_installed:
            return None
        try:
            return await self._call(
                self.device_api.is_profile_installed(profile_id, device_id)
            )
        except Exception as e:
            logger.warning(
                "Could not check profile %s on device %s: %s",
                profile_id, device_id, e,
            )
            return None

    async def _push(self, profile: ProfileRef, device_id: str) -> bool:
        try:
            await self._call(self.device_api.push_profile(profile.id, device_id))
            return True
        except Exception as e:
            logger.warning(
                "Failed to push profile %s to device %s: %s",
                profile.label, device_id, str(e) or e.__class__.__name__,
            )
            return False

    async def _remove(self, profile: ProfileRef, device_id: str) -> RemovalResult | None:
        """Remove one profile; None when the removal failed."""
        if await self._is_installed(profile.id, device_id) is False:
            logger.info("Profile %s not on device %s, nothing to remove", profile.label, device_id)
            return RemovalResult(success=True, already_removed=True)

        try:
            removal = await self._call(self.device_api.remove_profile(profile.id, device_id))
            if not removal.success:
                logger.warning(
                    "Device API refused removal of profile %s from device %s",
                    profile.label, device_id,
                )
                return None
        except Exception as e:
            if getattr(e, "status_code", None) == 409:
                logger.info("Profile %s already absent from device %s", profile.label, device_id)
                return RemovalResult(success=True, already_removed=True)
            logger.warning(
                "Failed to remove profile %s from device %s: %s",
                profile.label, device_id, str(e) or e.__class__.__name__,
            )
            return None

        if removal.already_removed:
            logger.info("Profile %s already absent from device %s", profile.label, device_id)
        return removal

    async def _record(
        self,
        entry: HistoryEntry,
        history: Sequence[HistoryEntry] | None,
    ) -> None:
        if self.store is None:
            return
        try:
            await self.store.append_history(entry, history)
        except PolicyStoreError as e:
            logger.error("Failed to record history for device %s: %s", entry.device_id, e)
