"""
Tests for local network address discovery.
"""
import socket
from collections import namedtuple

import pytest
from hypothesis import given
from hypothesis import strategies as st

from relay.exceptions import AddressError, ErrorCodes
from relay.utils import net
from relay.utils.net import (
    find_local_ip,
    get_local_ip,
    interface_priority,
    is_private_ipv4,
)

Addr = namedtuple("Addr", ["family", "address", "netmask", "broadcast", "ptp"])


def ipv4(address: str) -> Addr:
    return Addr(socket.AF_INET, address, "255.255.255.0", None, None)


def ipv6(address: str) -> Addr:
    return Addr(socket.AF_INET6, address, None, None, None)


@pytest.fixture
def interfaces(monkeypatch):
    """Replace psutil interface enumeration with a dict the test fills in."""
    table = {}
    monkeypatch.setattr(net.psutil, "net_if_addrs", lambda: table)
    return table


class TestIsPrivateIpv4:
    """Tests for private range detection."""

    @pytest.mark.parametrize(
        "address", ["10.0.0.1", "172.16.5.4", "172.31.255.255", "192.168.1.10"]
    )
    def test_private(self, address):
        assert is_private_ipv4(address)

    @pytest.mark.parametrize(
        "address", ["8.8.8.8", "172.32.0.1", "127.0.0.1", "169.254.1.1", "fe80::1", "bogus"]
    )
    def test_not_private(self, address):
        assert not is_private_ipv4(address)


class TestInterfacePriority:
    """Tests for interface name scoring."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("en0", 100),
            ("wlan0", 100),
            ("wlp3s0", 100),
            ("en1", 90),
            ("eth0", 90),
            ("enp0s31f6", 90),
            ("Wi-Fi", 100),
            ("Wireless Network Connection", 100),
            ("Local Area Connection", 95),
            ("Realtek PCIe GbE", 95),
            ("something", 10),
        ],
    )
    def test_scores(self, name, expected):
        assert interface_priority(name) == expected

    @pytest.mark.parametrize(
        "name",
        ["utun3", "tun0", "tap1", "ipsec0", "ppp0", "gpd0", "wg0",
         "vmnet8", "veth12ab", "docker0", "br-1234", "virbr0", "vboxnet0",
         "lo", "lo0"],
    )
    def test_skipped(self, name):
        assert interface_priority(name) < 0

    @given(suffix=st.text(max_size=8))
    def test_tunnels_always_skipped(self, suffix):
        assert interface_priority("utun" + suffix) < 0


class TestFindLocalIp:
    """Tests for interface selection."""

    def test_prefers_wifi_over_ethernet(self, interfaces):
        interfaces["eth0"] = [ipv4("10.0.0.5")]
        interfaces["wlan0"] = [ipv4("192.168.1.20")]
        assert find_local_ip() == "192.168.1.20"

    def test_skips_vpn_and_virtual(self, interfaces):
        interfaces["utun2"] = [ipv4("10.8.0.2")]
        interfaces["docker0"] = [ipv4("172.17.0.1")]
        interfaces["en1"] = [ipv4("192.168.0.7")]
        assert find_local_ip() == "192.168.0.7"

    def test_skips_public_loopback_link_local_and_ipv6(self, interfaces):
        interfaces["en0"] = [
            ipv6("fe80::1"),
            ipv4("169.254.3.3"),
            ipv4("8.8.8.8"),
            ipv4("127.0.0.1"),
            ipv4("192.168.5.5"),
        ]
        assert find_local_ip() == "192.168.5.5"

    def test_equal_scores_keep_enumeration_order(self, interfaces):
        interfaces["eth0"] = [ipv4("10.0.0.1")]
        interfaces["eth1"] = [ipv4("10.0.0.2")]
        assert find_local_ip() == "10.0.0.1"

    def test_none_when_no_candidate(self, interfaces):
        interfaces["lo"] = [ipv4("127.0.0.1")]
        assert find_local_ip() is None

    def test_get_local_ip_raises_without_candidate(self, interfaces):
        with pytest.raises(AddressError) as exc_info:
            get_local_ip()
        assert exc_info.value.error_code == ErrorCodes.ADDRESS_UNAVAILABLE
        assert "failed to get local ip" in exc_info.value.message
