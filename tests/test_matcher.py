"""
Tests for IP address matching.
"""

from __future__ import annotations

import pytest

from geoprofile.policy.matcher import is_valid_specifier, matches, matches_any


class TestExactMatch:
    """Tests for exact address specifiers."""

    def test_identical_addresses(self) -> None:
        """Test exact IPv4 match."""
        assert matches("192.168.1.10", "192.168.1.10")

    def test_whitespace_is_trimmed(self) -> None:
        """Test surrounding whitespace is ignored."""
        assert matches(" 192.168.1.10 ", "192.168.1.10\n")

    def test_no_prefix_match(self) -> None:
        """Test a string prefix never counts as a match."""
        assert not matches("192.168.1.1", "192.168.1.10")
        assert not matches("192.168.1.10", "192.168.1.1")

    def test_empty_inputs(self) -> None:
        """Test empty address or specifier never match."""
        assert not matches("", "192.168.1.1")
        assert not matches("192.168.1.1", "")
        assert not matches("", "")


class TestCidrMatch:
    """Tests for CIDR specifiers."""

    @pytest.mark.parametrize(
        "address,specifier,expected",
        [
            ("192.168.1.5", "192.168.1.0/24", True),
            ("192.168.2.5", "192.168.1.0/24", False),
            ("10.1.2.3", "10.0.0.0/8", True),
            ("11.0.0.1", "10.0.0.0/8", False),
            ("172.16.5.4", "172.16.0.0/12", True),
            ("172.32.0.1", "172.16.0.0/12", False),
            ("8.8.8.8", "0.0.0.0/0", True),
            ("192.168.1.7", "192.168.1.7/32", True),
            ("192.168.1.8", "192.168.1.7/32", False),
        ],
    )
    def test_ipv4(self, address: str, specifier: str, expected: bool) -> None:
        """Test IPv4 network membership."""
        assert matches(address, specifier) is expected

    def test_host_bits_in_base(self) -> None:
        """Test a base address with host bits set still defines the network."""
        assert matches("192.168.1.200", "192.168.1.77/24")

    def test_ipv6(self) -> None:
        """Test IPv6 network membership."""
        assert matches("2001:db8::1", "2001:db8::/32")
        assert matches("2001:0db8:0000:0000:0000:0000:0000:0001", "2001:db8::/64")
        assert not matches("2001:db9::1", "2001:db8::/32")

    def test_mixed_families_never_match(self) -> None:
        """Test IPv4 address against IPv6 block and vice versa."""
        assert not matches("192.168.1.1", "::/0")
        assert not matches("::1", "0.0.0.0/0")

    @pytest.mark.parametrize(
        "specifier",
        ["192.168.1.0/33", "192.168.1.0/abc", "not-an-ip/24", "192.168.1.0/"],
    )
    def test_malformed_cidr(self, specifier: str) -> None:
        """Test malformed CIDR specifiers are a non-match, not an error."""
        assert matches("192.168.1.1", specifier) is False

    def test_non_ip_address(self) -> None:
        """Test a garbage address never matches a CIDR block."""
        assert not matches("hello", "192.168.1.0/24")


class TestWildcardMatch:
    """Tests for IPv4 wildcard specifiers."""

    def test_trailing_wildcards(self) -> None:
        """Test wildcards in the last segments."""
        assert matches("10.0.5.7", "10.0.*.*")
        assert not matches("10.1.5.7", "10.0.*.*")

    def test_inner_wildcard(self) -> None:
        """Test a wildcard in the middle of the pattern."""
        assert matches("192.168.42.1", "192.168.*.1")
        assert not matches("192.168.42.2", "192.168.*.1")

    def test_segment_count_must_match(self) -> None:
        """Test patterns or addresses without four segments never match."""
        assert not matches("10.0.5.7", "10.0.*")
        assert not matches("10.0.5", "10.0.*.*")

    def test_ipv6_never_wildcard_matches(self) -> None:
        """Test wildcard matching is IPv4 only."""
        assert not matches("2001:db8::1", "2001:*:*:*")


class TestMatchesAny:
    """Tests for matches_any helper."""

    def test_any_specifier(self) -> None:
        """Test match against a list."""
        assert matches_any("10.0.0.1", ["192.168.1.0/24", "10.0.*.*"])
        assert not matches_any("172.16.0.1", ["192.168.1.0/24", "10.0.*.*"])

    def test_missing_address(self) -> None:
        """Test None address never matches."""
        assert not matches_any(None, ["0.0.0.0/0"])


class TestSpecifierValidation:
    """Tests for is_valid_specifier."""

    @pytest.mark.parametrize(
        "specifier",
        ["192.168.1.1", "192.168.1.0/24", "2001:db8::/32", "10.0.*.*", "*.*.*.*"],
    )
    def test_valid(self, specifier: str) -> None:
        """Test well-formed specifiers."""
        assert is_valid_specifier(specifier)

    @pytest.mark.parametrize(
        "specifier",
        ["", "office", "10.0.*", "10.0.*.300", "192.168.1.0/40", "10.0.0.0.1"],
    )
    def test_invalid(self, specifier: str) -> None:
        """Test specifiers that can never match an address."""
        assert not is_valid_specifier(specifier)
