"""
Local network address discovery.

Picks the LAN address a companion device on the same network can reach.
Physical interfaces (Wi-Fi, Ethernet) win over VPN tunnels and virtual
adapters, which are skipped entirely.
"""
from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Dict, List, Optional, Tuple

import psutil

from relay.exceptions import AddressError, ErrorCodes


logger = logging.getLogger(__name__)

PRIVATE_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)

LINK_LOCAL_NETWORK = ipaddress.IPv4Network("169.254.0.0/16")

# VPN and tunnel interfaces
_TUNNEL_PREFIXES = ("utun", "tun", "tap", "ipsec", "ppp", "gpd", "wg")

# Virtual adapters and loopback
_VIRTUAL_PREFIXES = ("vmnet", "veth", "docker", "br-", "virbr", "vbox")
_LOOPBACK_NAMES = ("lo", "lo0")


def is_private_ipv4(address: str) -> bool:
    """Check if an IPv4 address lies in one of the RFC 1918 private ranges."""
    try:
        ip = ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return any(ip in network for network in PRIVATE_NETWORKS)


def interface_priority(name: str) -> int:
    """
    Score an interface name by priority (higher is better).

    Returns a negative score for interfaces that should be skipped.
    """
    lower = name.lower()

    if lower.startswith(_TUNNEL_PREFIXES):
        return -1
    if lower.startswith(_VIRTUAL_PREFIXES) or lower in _LOOPBACK_NAMES:
        return -1

    # Wi-Fi (macOS en0, Linux wlan*/wlp*)
    if lower == "en0" or lower.startswith(("wlan", "wlp")):
        return 100

    # Ethernet (macOS en1..enN, Linux eth*/enp*)
    if lower.startswith(("en", "eth")):
        return 90

    # Windows adapter names
    if any(token in lower for token in ("wi-fi", "wifi", "wireless", "wlan")):
        return 100
    if any(
        token in lower
        for token in ("ethernet", "local area connection", "realtek", "intel")
    ):
        return 95

    return 10


def _candidates(
    interfaces: Dict[str, List[object]],
) -> List[Tuple[int, str]]:
    candidates: List[Tuple[int, str]] = []
    for name, addrs in interfaces.items():
        score = interface_priority(name)
        if score < 0:
            continue
        for addr in addrs:
            if getattr(addr, "family", None) != socket.AF_INET:
                continue
            address = getattr(addr, "address", "")
            try:
                ip = ipaddress.IPv4Address(address)
            except ValueError:
                continue
            if ip.is_loopback or ip in LINK_LOCAL_NETWORK:
                continue
            if not is_private_ipv4(address):
                continue
            candidates.append((score, address))
    return candidates


def find_local_ip() -> Optional[str]:
    """Return the best private IPv4 address, or None if there is none."""
    candidates = _candidates(psutil.net_if_addrs())
    if not candidates:
        return None
    # Stable sort keeps interface enumeration order among equal scores
    candidates.sort(key=lambda item: item[0], reverse=True)
    return candidates[0][1]


def get_local_ip() -> str:
    """
    Resolve the local LAN address used to build the advertised endpoint.

    Raises:
        AddressError: If no suitable interface address exists.
    """
    address = find_local_ip()
    if address is None:
        raise AddressError(
            message="failed to get local ip: no private IPv4 address on a physical interface",
            error_code=ErrorCodes.ADDRESS_UNAVAILABLE,
        )
    logger.debug(f"Resolved local address {address}")
    return address


__all__ = [
    "PRIVATE_NETWORKS",
    "is_private_ipv4",
    "interface_priority",
    "find_local_ip",
    "get_local_ip",
]
