"""
Connection Processor - Integrated Reconciliation Pipeline.

Ties together the policy store, policy selector and reconciliation engine
to handle each device observation (device id + observed IP).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from geoprofile.core.reconciler import (
    ForceApplyResult,
    ReconciliationEngine,
    ReconciliationResult,
)
from geoprofile.policy.models import HistoryEntry, MatchReason, Policy, find_policy
from geoprofile.policy.selector import PolicySelection, resolve_policy
from geoprofile.store.accessor import PolicyStoreAccessor
from geoprofile.store.database import PolicyStore, PolicyStoreError

if TYPE_CHECKING:
    from geoprofile.config import GeoProfileConfig
    from geoprofile.mdm.client import DeviceAPI


logger = logging.getLogger(__name__)


@dataclass
class ReconciliationContext:
    """
    State for a single invocation.

    Holds the policy and history snapshots read at the start of the
    invocation, so concurrent invocations never share mutable state.
    """

    device_id: str
    observed_ip: str | None
    policies: list[Policy]
    history: list[HistoryEntry] = field(default_factory=list)
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    selection: PolicySelection | None = None


# Type for hooks
AsyncHook = Callable[[ReconciliationResult], Coroutine[Any, Any, None]]
SyncHook = Callable[[ReconciliationResult], None]


class ConnectionProcessor:
    """
    Entry point for device observations.

    Loads policies, selects the active one and delegates to the
    reconciliation engine. No exception crosses this boundary: store
    failures and missing policies resolve to a no-op result.
    """

    def __init__(
        self,
        store: PolicyStoreAccessor,
        engine: ReconciliationEngine,
    ) -> None:
        """
        Initialize the processor.

        Args:
            store: Async policy store accessor
            engine: Reconciliation engine driving the Device API
        """
        self.store = store
        self.engine = engine

        # Hooks for extensibility
        self._post_process_hooks: list[SyncHook] = []
        self._async_post_hooks: list[AsyncHook] = []

        # Statistics
        self._processed = 0
        self._applied = 0
        self._skipped = 0
        self._noop = 0
        self._profiles_pushed = 0
        self._profiles_removed = 0

    async def process_device_connection(
        self,
        device_id: str,
        observed_ip: str | None,
    ) -> ReconciliationResult:
        """
        Process a device observation.

        Args:
            device_id: Device identifier
            observed_ip: Device's observed IP address

        Returns:
            ReconciliationResult (no-op when nothing applies)
        """
        device_id = str(device_id)
        logger.info("Processing connection for device %s with IP %s", device_id, observed_ip)

        context = await self._load_context(device_id, observed_ip)
        if context is None or context.selection is None:
            result = ReconciliationResult.noop(device_id)
        else:
            selection = context.selection
            logger.info(
                "Selected policy '%s' for device %s based on %s",
                selection.policy.name, device_id, selection.reason.value,
            )
            result = await self.engine.reconcile(
                device_id,
                observed_ip,
                selection.policy,
                context.history,
                context.policies,
                now=context.now,
                match_reason=selection.reason,
            )

        self._update_stats(result)
        await self._run_post_hooks(result)
        return result

    async def force_apply_policy(
        self,
        policy_id: str,
        device_id: str,
        observed_ip: str | None = None,
    ) -> ForceApplyResult:
        """
        Push every profile of a policy to a device, bypassing selection.

        Args:
            policy_id: Policy to apply
            device_id: Target device
            observed_ip: Recorded with the history entry if known

        Returns:
            ForceApplyResult (success=False for unknown policies)
        """
        device_id = str(device_id)
        try:
            policies = await self.store.load_policies()
        except PolicyStoreError as e:
            logger.error("Failed to load policies: %s", e)
            return ForceApplyResult(success=False)

        policy = find_policy(policies, str(policy_id))
        if policy is None:
            logger.warning("Cannot force-apply unknown policy %s", policy_id)
            return ForceApplyResult(success=False)

        logger.info("Force-applying policy '%s' to device %s", policy.name, device_id)
        result = await self.engine.force_apply(policy, device_id, observed_ip=observed_ip)

        self._processed += 1
        self._profiles_pushed += result.profiles_pushed
        if result.profiles_pushed:
            summary = ReconciliationResult(
                device_id=device_id,
                policy_applied=True,
                policy_name=policy.name,
                policy_id=policy.id,
                profiles_pushed=result.profiles_pushed,
                match_reason=MatchReason.MANUAL,
            )
            await self._run_post_hooks(summary)
        return result

    async def select_policy(
        self,
        device_id: str,
        observed_ip: str | None,
    ) -> PolicySelection | None:
        """
        Resolve the policy that currently applies, without enacting it.

        Returns:
            PolicySelection, or None when nothing applies or the store
            is unavailable
        """
        try:
            policies = await self.store.load_policies()
        except PolicyStoreError as e:
            logger.error("Failed to load policies: %s", e)
            return None
        return resolve_policy(str(device_id), observed_ip, policies)

    async def _load_context(
        self,
        device_id: str,
        observed_ip: str | None,
    ) -> ReconciliationContext | None:
        """Read snapshots and select the policy; None on store failure."""
        try:
            policies = await self.store.load_policies()
        except PolicyStoreError as e:
            logger.error("Failed to load policies: %s", e)
            return None

        if not policies:
            logger.info("No policies set, skipping profile application")
            return None

        context = ReconciliationContext(
            device_id=device_id,
            observed_ip=observed_ip,
            policies=policies,
        )
        context.selection = resolve_policy(device_id, observed_ip, policies)
        if context.selection is None:
            logger.info("No applicable policy found for device %s", device_id)
            return context

        try:
            context.history = await self.store.load_history()
        except PolicyStoreError as e:
            logger.error("Failed to load reconciliation history: %s", e)
            return None

        return context

    async def _run_post_hooks(self, result: ReconciliationResult) -> None:
        for hook in self._post_process_hooks:
            try:
                hook(result)
            except Exception as e:
                logger.error("Post-process hook error: %s", e)

        for async_hook in self._async_post_hooks:
            try:
                await async_hook(result)
            except Exception as e:
                logger.error("Async post-process hook error: %s", e)

    def _update_stats(self, result: ReconciliationResult) -> None:
        """Update processing statistics."""
        self._processed += 1
        if result.policy_applied:
            self._applied += 1
        elif result.skipped:
            self._skipped += 1
        else:
            self._noop += 1
        self._profiles_pushed += result.profiles_pushed
        self._profiles_removed += result.profiles_removed

    def add_post_process_hook(self, hook: SyncHook) -> None:
        """Add a post-processing hook."""
        self._post_process_hooks.append(hook)

    def add_async_post_hook(self, hook: AsyncHook) -> None:
        """Add an async post-processing hook."""
        self._async_post_hooks.append(hook)

    def get_statistics(self) -> dict[str, Any]:
        """Get processing statistics."""
        return {
            "total_processed": self._processed,
            "applied": self._applied,
            "skipped": self._skipped,
            "noop": self._noop,
            "profiles_pushed": self._profiles_pushed,
            "profiles_removed": self._profiles_removed,
        }

    def reset_statistics(self) -> None:
        """Reset processing statistics."""
        self._processed = 0
        self._applied = 0
        self._skipped = 0
        self._noop = 0
        self._profiles_pushed = 0
        self._profiles_removed = 0


def create_processor(
    config: GeoProfileConfig,
    device_api: DeviceAPI,
    store: PolicyStore | None = None,
) -> ConnectionProcessor:
    """
    Create a fully configured connection processor.

    Args:
        config: Loaded configuration
        device_api: Device API client
        store: Policy store (opened from config if None)

    Returns:
        Configured ConnectionProcessor
    """
    if store is None:
        store = PolicyStore(
            config.store.path,
            wal_mode=config.store.wal_mode,
            history_limit=config.store.history_limit,
        )

    accessor = PolicyStoreAccessor(store, history_limit=config.store.history_limit)
    engine = ReconciliationEngine(
        device_api=device_api,
        store=accessor,
        freshness_window=timedelta(seconds=config.reconcile.freshness_window),
        check_installed=config.reconcile.check_installed,
        operation_timeout=config.device_api.timeout,
    )
    return ConnectionProcessor(store=accessor, engine=engine)
