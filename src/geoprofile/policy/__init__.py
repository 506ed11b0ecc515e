"""
Policy layer.

Policy models, address matching, policy file parsing, and the
priority-based selection of the policy that governs a device.
"""

from geoprofile.policy.matcher import is_valid_specifier, matches, matches_any
from geoprofile.policy.models import (
    LEGACY_DEFAULT_POLICY_ID,
    HistoryEntry,
    IpRange,
    MatchReason,
    Policy,
    ProfileRef,
    find_default_policy,
    find_policy,
)
from geoprofile.policy.parser import (
    PolicyParseError,
    dump_policies,
    load_policies,
    parse_policies,
    parse_policy,
    validate_policies,
)
from geoprofile.policy.selector import PolicySelection, resolve_policy, select_policy

__all__ = [
    # Matching
    "is_valid_specifier",
    "matches",
    "matches_any",
    # Models
    "LEGACY_DEFAULT_POLICY_ID",
    "HistoryEntry",
    "IpRange",
    "MatchReason",
    "Policy",
    "ProfileRef",
    "find_default_policy",
    "find_policy",
    # Parser
    "PolicyParseError",
    "dump_policies",
    "load_policies",
    "parse_policies",
    "parse_policy",
    "validate_policies",
    # Selection
    "PolicySelection",
    "resolve_policy",
    "select_policy",
]
