"""
Reconciliation history helpers.

Pure operations over an in-memory history snapshot, ordered oldest first.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

from geoprofile.policy.models import HistoryEntry


DEFAULT_HISTORY_LIMIT = 100


def latest_entry(
    history: Sequence[HistoryEntry],
    device_id: str,
    policy_id: str | None = None,
) -> HistoryEntry | None:
    """
    Find the most recent entry for a device.

    Args:
        history: History snapshot, oldest first
        device_id: Device to look up
        policy_id: Restrict to entries recorded for this policy

    Returns:
        Latest matching entry or None
    """
    for entry in reversed(history):
        if entry.device_id != device_id:
            continue
        if policy_id is not None and entry.policy_id != policy_id:
            continue
        return entry
    return None


def recently_applied(
    history: Sequence[HistoryEntry],
    device_id: str,
    policy_id: str,
    profile_ids: frozenset[str],
    now: datetime,
    window: timedelta,
) -> bool:
    """
    Check if the same profile set was applied by a policy within a window.

    Only the latest entry for the (device, policy) pair is considered.
    """
    entry = latest_entry(history, device_id, policy_id)
    if entry is None:
        return False
    if now - entry.applied_at > window:
        return False
    return entry.profile_ids == profile_ids


def prune(
    history: Sequence[HistoryEntry],
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[HistoryEntry]:
    """Keep only the most recent ``limit`` entries."""
    if limit <= 0:
        return []
    return list(history[-limit:])


def append(
    history: Sequence[HistoryEntry],
    entry: HistoryEntry,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[HistoryEntry]:
    """Append an entry and prune to the retention bound."""
    return prune([*history, entry], limit)
