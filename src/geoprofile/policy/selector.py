"""
Policy Selector.

Picks the single policy that governs a device, using a fixed priority:
direct assignment, then IP range match, then the default policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from geoprofile.policy.matcher import matches_any
from geoprofile.policy.models import MatchReason, Policy, find_default_policy


logger = logging.getLogger(__name__)


@dataclass
class PolicySelection:
    """Selected policy together with the reason it was chosen."""

    policy: Policy
    reason: MatchReason
    matched_range: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "policy_id": self.policy.id,
            "policy_name": self.policy.name,
            "reason": self.reason.value,
            "matched_range": self.matched_range,
        }


def resolve_policy(
    device_id: str,
    observed_ip: str | None,
    policies: Sequence[Policy],
) -> PolicySelection | None:
    """
    Resolve the active policy for a device.

    Ties within a priority level go to the first policy in input order.

    Args:
        device_id: Device identifier
        observed_ip: Device's last observed IP address (may be None)
        policies: Loaded policy set

    Returns:
        PolicySelection, or None if nothing matched and no default exists
    """
    device_id = str(device_id)

    # Direct device assignment wins
    for policy in policies:
        if not policy.is_default and policy.has_device(device_id):
            logger.debug("Device %s directly assigned to %s", device_id, policy.name)
            return PolicySelection(policy=policy, reason=MatchReason.DIRECT)

    # Then IP-based matching
    if observed_ip:
        for policy in policies:
            if policy.is_default:
                continue
            for ip_range in policy.ip_ranges:
                if matches_any(observed_ip, [ip_range.address_specifier]):
                    logger.debug(
                        "Device %s IP %s matched %s (%s)",
                        device_id, observed_ip, policy.name, ip_range.address_specifier,
                    )
                    return PolicySelection(
                        policy=policy,
                        reason=MatchReason.IP,
                        matched_range=ip_range.address_specifier,
                    )

    # Fallback to default policy
    default = find_default_policy(list(policies))
    if default is not None:
        return PolicySelection(policy=default, reason=MatchReason.DEFAULT)

    logger.debug("No applicable policy for device %s", device_id)
    return None


def select_policy(
    device_id: str,
    observed_ip: str | None,
    policies: Sequence[Policy],
) -> Policy | None:
    """
    Select the single active policy for a device.

    Args:
        device_id: Device identifier
        observed_ip: Device's last observed IP address (may be None)
        policies: Loaded policy set

    Returns:
        Active Policy, or None when no policy applies
    """
    selection = resolve_policy(device_id, observed_ip, policies)
    return selection.policy if selection else None
