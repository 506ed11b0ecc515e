"""
Address matching.

Decides whether an observed IP address satisfies a range specifier:
an exact address, a CIDR block, or an IPv4 wildcard pattern.
Matching never raises; malformed input is logged and does not match.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable


logger = logging.getLogger(__name__)

WILDCARD = "*"


def matches(address: str, specifier: str) -> bool:
    """
    Check if an address satisfies a range specifier.

    Args:
        address: Observed IP address
        specifier: Exact IP, CIDR block (``base/prefix``) or wildcard
            pattern (``10.0.*.*``)

    Returns:
        True if the address is covered by the specifier
    """
    try:
        address = address.strip()
        specifier = specifier.strip()
        if not address or not specifier:
            return False

        # Exact match first (most common case)
        if address == specifier:
            logger.debug("IP exact match: %s", address)
            return True

        if "/" in specifier:
            return _matches_cidr(address, specifier)

        if WILDCARD in specifier:
            return _matches_wildcard(address, specifier)

        return False

    except Exception as e:
        logger.warning("Error matching %r against %r: %s", address, specifier, e)
        return False


def matches_any(address: str | None, specifiers: Iterable[str]) -> bool:
    """Check if an address satisfies at least one specifier."""
    if not address:
        return False
    return any(matches(address, specifier) for specifier in specifiers)


def _matches_cidr(address: str, specifier: str) -> bool:
    """Match an address against a CIDR block of the same family."""
    try:
        network = ipaddress.ip_network(specifier, strict=False)
    except ValueError as e:
        logger.warning("Malformed CIDR specifier %r: %s", specifier, e)
        return False

    try:
        addr = ipaddress.ip_address(address)
    except ValueError:
        logger.debug("Not an IP address: %r", address)
        return False

    if addr.version != network.version:
        return False

    if addr in network:
        logger.debug("IP subnet match: %s is within %s", address, specifier)
        return True
    return False


def _matches_wildcard(address: str, specifier: str) -> bool:
    """Match an IPv4 address against an ``a.b.*.d`` style pattern."""
    pattern_parts = specifier.split(".")
    address_parts = address.split(".")

    if len(pattern_parts) != 4 or len(address_parts) != 4:
        return False

    for pattern, part in zip(pattern_parts, address_parts):
        if pattern != WILDCARD and pattern != part:
            return False

    logger.debug("IP wildcard match: %s matches %s", address, specifier)
    return True


def is_valid_specifier(specifier: str) -> bool:
    """
    Check if a specifier is well formed.

    Used to warn about ranges that can only ever match by exact string
    comparison.
    """
    specifier = specifier.strip()
    if not specifier:
        return False

    if "/" in specifier:
        try:
            ipaddress.ip_network(specifier, strict=False)
            return True
        except ValueError:
            return False

    if WILDCARD in specifier:
        parts = specifier.split(".")
        if len(parts) != 4:
            return False
        return all(
            part == WILDCARD or (part.isdigit() and 0 <= int(part) <= 255)
            for part in parts
        )

    try:
        ipaddress.ip_address(specifier)
        return True
    except ValueError:
        return False
