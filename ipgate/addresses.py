"""Address validation and public/reserved classification."""
from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_ZONE_INDEX = re.compile(r"%.+$", re.DOTALL)

# RFC 6598 carrier-grade NAT range; not covered by ``is_private``
_SHARED_ADDRESS_SPACE = ipaddress.ip_network("100.64.0.0/10")


def strip_zone_index(value: str) -> str:
    """Drop an interface scope suffix such as ``%eth0`` from a literal."""
    return _ZONE_INDEX.sub("", value)


def _parse(value: str) -> Optional[IPAddress]:
    if not value:
        return None
    try:
        return ipaddress.ip_address(strip_zone_index(value))
    except ValueError:
        return None


def is_valid_address(value: str) -> bool:
    return _parse(value) is not None


def address_family(value: str) -> Optional[int]:
    parsed = _parse(value)
    return parsed.version if parsed is not None else None


def _is_non_public(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address):
        # judged by the embedded IPv4 address, not as part of the reserved ::ffff:0:0/96 block
        if ip.ipv4_mapped is not None:
            return _is_non_public(ip.ipv4_mapped)
        if ip.is_site_local:
            return True
    elif ip in _SHARED_ADDRESS_SPACE:
        return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def is_public_address(value: str) -> bool:
    """Return True for a valid literal outside every private or reserved range."""
    parsed = _parse(value)
    if parsed is None:
        return False
    return not _is_non_public(parsed)


@dataclass(frozen=True, slots=True)
class Address:
    """A validated literal with its family; zone index and port never survive."""

    value: str
    family: int

    @classmethod
    def parse(cls, value: str) -> Optional["Address"]:
        value = strip_zone_index(value.strip()) if value else ""
        parsed = _parse(value)
        if parsed is None:
            return None
        return cls(value=value, family=parsed.version)

    @property
    def packed(self) -> bytes:
        return ipaddress.ip_address(self.value).packed

    @property
    def max_prefix(self) -> int:
        return 32 if self.family == 4 else 128

    def __str__(self) -> str:
        return self.value


__all__ = [
    "Address",
    "address_family",
    "is_public_address",
    "is_valid_address",
    "strip_zone_index",
]
