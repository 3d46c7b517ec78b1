"""Outbound address guard: keep crawls and image proxying off private networks.

The guard is wired into aiohttp as a resolver, so the address that passes
validation is the same address the connector opens a socket to. There is no
second lookup between the check and the connect for a rebinding DNS server to
exploit.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from typing import Any, Dict, List, Tuple

from aiohttp.abc import AbstractResolver

from .fetcher_utils import idna_normalize

_BLOCKED_V4 = tuple(
    ipaddress.ip_network(net)
    for net in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.0.0.0/24",
        "192.0.2.0/24",
        "192.168.0.0/16",
        "198.18.0.0/15",
        "198.51.100.0/24",
        "203.0.113.0/24",
        # Multicast and everything above it.
        "224.0.0.0/3",
    )
)

_BLOCKED_V6 = tuple(
    ipaddress.ip_network(net)
    for net in (
        "::/128",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
        "ff00::/8",
        "2001:db8::/32",
    )
)

_NUMERIC_FLAGS = socket.AI_NUMERICHOST | socket.AI_NUMERICSERV


class BlockedAddress(Exception):
    """Destination resolved to a private or reserved network."""

    def __init__(self, host: str, address: str) -> None:
        super().__init__(f"DNS resolution denied: {host} resolved to private IP {address}")
        self.host = host
        self.address = address


def is_safe_public_address(ip: str) -> bool:
    """Return True when ``ip`` is a routable public unicast address."""

    try:
        addr = ipaddress.ip_address((ip or "").split("%", 1)[0].strip())
    except ValueError:
        return False
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    blocked = _BLOCKED_V4 if isinstance(addr, ipaddress.IPv4Address) else _BLOCKED_V6
    return not any(addr in net for net in blocked)


def reject_private_literal(host: str) -> None:
    """Raise BlockedAddress if ``host`` is an IP literal outside public space.

    aiohttp never consults the resolver for IP-literal hosts, so those have to
    be checked before the request is made.
    """

    literal = (host or "").strip("[]")
    try:
        ipaddress.ip_address(literal.split("%", 1)[0])
    except ValueError:
        return
    if not is_safe_public_address(literal):
        raise BlockedAddress(host, literal)


async def resolve_and_validate(
    hostname: str,
    port: int = 0,
    family: int = socket.AF_UNSPEC,
) -> Tuple[str, int]:
    """Resolve ``hostname`` once and return ``(ip, family)`` if it is public.

    Callers must connect to the returned address rather than resolving again.
    Raises BlockedAddress for private/reserved results; resolver failures
    propagate as OSError.
    """

    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, port, family=family, type=socket.SOCK_STREAM)
    if not infos:
        raise OSError(f"No addresses found for {hostname}")
    addr_family, _, _, _, sockaddr = infos[0]
    address = str(sockaddr[0]).split("%", 1)[0]
    if not is_safe_public_address(address):
        raise BlockedAddress(hostname, address)
    return address, int(addr_family)


def _resolve_result(host: str, address: str, port: int, family: int) -> Dict[str, Any]:
    return {
        "hostname": host,
        "host": address,
        "port": port,
        "family": family,
        "proto": 0,
        "flags": _NUMERIC_FLAGS,
    }


class GuardedResolver(AbstractResolver):
    """aiohttp resolver that validates every lookup before the connector uses it."""

    async def resolve(self, host: str, port: int = 0, family: int = socket.AF_INET) -> List[Dict[str, Any]]:  # type: ignore[override]
        address, addr_family = await resolve_and_validate(host, port, family)
        return [_resolve_result(host, address, port, addr_family)]

    async def close(self) -> None:
        return None


class PinnedResolver(AbstractResolver):
    """aiohttp resolver that answers one hostname with a previously validated IP."""

    def __init__(self, host: str, address: str, family: int) -> None:
        self._host = idna_normalize(host)
        self._address = address
        self._family = family

    async def resolve(self, host: str, port: int = 0, family: int = socket.AF_INET) -> List[Dict[str, Any]]:  # type: ignore[override]
        if idna_normalize(host) != self._host:
            raise BlockedAddress(host, "<unpinned>")
        return [_resolve_result(host, self._address, port, self._family)]

    async def close(self) -> None:
        return None


def find_blocked_cause(exc: BaseException) -> "BlockedAddress | None":
    """Walk an exception chain looking for a BlockedAddress raised by a resolver."""

    seen = set()
    current: "BaseException | None" = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, BlockedAddress):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


__all__ = [
    "BlockedAddress",
    "GuardedResolver",
    "PinnedResolver",
    "find_blocked_cause",
    "is_safe_public_address",
    "reject_private_literal",
    "resolve_and_validate",
]
