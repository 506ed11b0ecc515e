"""
Policy file parser.

Parses YAML policy files into Policy objects.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from geoprofile.policy.matcher import is_valid_specifier
from geoprofile.policy.models import Policy


class PolicyParseError(Exception):
    """Error parsing policy file."""

    pass


def load_policies(path: str | Path) -> list[Policy]:
    """
    Load policies from YAML file.

    Args:
        path: Path to policy YAML file

    Returns:
        List of parsed policies, in file order

    Raises:
        FileNotFoundError: If file doesn't exist
        PolicyParseError: If file contains invalid policies
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f)

    if data is None:
        return []

    return parse_policies(data)


def parse_policies(data: dict[str, Any] | list[Any]) -> list[Policy]:
    """
    Parse policies from a dictionary (``{"policies": [...]}``) or a list.

    Args:
        data: Parsed YAML/JSON data

    Returns:
        List of Policy objects
    """
    if isinstance(data, dict):
        data = data.get("policies", [])

    if not isinstance(data, list):
        raise PolicyParseError("'policies' must be a list")

    policies = []
    for i, policy_data in enumerate(data):
        try:
            policies.append(parse_policy(policy_data))
        except Exception as e:
            raise PolicyParseError(f"Error parsing policy {i}: {e}") from e

    return policies


def parse_policy(data: dict[str, Any]) -> Policy:
    """
    Parse a single policy from dictionary.

    Args:
        data: Dictionary with policy data

    Returns:
        Policy object
    """
    if not isinstance(data, dict):
        raise PolicyParseError("Policy must be a dictionary")

    if not data.get("name"):
        raise PolicyParseError("Policy must have 'name' field")

    for key in ("ip_ranges", "ipRanges", "devices", "profiles"):
        if key in data and data[key] is not None and not isinstance(data[key], list):
            raise PolicyParseError(f"'{key}' must be a list")

    try:
        return Policy.from_dict(data)
    except ValueError as e:
        raise PolicyParseError(str(e)) from e


def dump_policies(policies: list[Policy]) -> str:
    """Serialize policies to YAML."""
    return yaml.safe_dump(
        {"policies": [policy.to_dict() for policy in policies]},
        sort_keys=False,
    )


def validate_policies(policies: list[Policy]) -> list[str]:
    """
    Validate a policy set and return list of errors/warnings.

    Args:
        policies: Policy set to validate

    Returns:
        List of validation messages. Empty if valid.
    """
    errors: list[str] = []

    defaults = [p for p in policies if p.is_default]
    if not defaults:
        errors.append("No default policy: unmatched devices will be left alone")
    elif len(defaults) > 1:
        names = ", ".join(p.name for p in defaults)
        errors.append(f"Multiple default policies ({names}): the first one is used")

    seen_ids: set[str] = set()
    device_owner: dict[str, str] = {}

    for policy in policies:
        if policy.id in seen_ids:
            errors.append(f"Duplicate policy id: {policy.id}")
        seen_ids.add(policy.id)

        for ip_range in policy.ip_ranges:
            if not is_valid_specifier(ip_range.address_specifier):
                errors.append(
                    f"Policy '{policy.name}': invalid address specifier "
                    f"'{ip_range.address_specifier}'"
                )

        if policy.is_default:
            if policy.ip_ranges or policy.devices:
                errors.append(
                    f"Policy '{policy.name}': ranges and devices are ignored "
                    "on the default policy"
                )
            continue

        if not policy.ip_ranges and not policy.devices:
            errors.append(
                f"Policy '{policy.name}': no ranges or devices, "
                "only reachable by manual application"
            )

        for device_id in policy.devices:
            owner = device_owner.get(device_id)
            if owner is not None:
                errors.append(
                    f"Device {device_id} assigned to both '{owner}' and "
                    f"'{policy.name}': '{owner}' takes precedence"
                )
            else:
                device_owner[device_id] = policy.name

    return errors
