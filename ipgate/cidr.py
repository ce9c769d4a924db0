"""Parsing of single-IP or CIDR allow entries and prefix matching.

An entry is reduced once to a :class:`CidrSpec`: the packed network bytes
(4 for IPv4, 16 for IPv6) with every bit past the prefix cleared, the prefix
length and the family. Matching compares whole bytes up to ``prefix // 8``
and then the leading ``prefix % 8`` bits of the next byte. Nothing in here
raises on bad input; an unusable entry or address simply never matches.
"""
from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from .addresses import Address
from .diagnostics import Diagnostics

_DIGITS = re.compile(r"^[0-9]+$")


def _partial_mask(bits: int) -> int:
    return (0xFF << (8 - bits)) & 0xFF


def mask_bytes(packed: bytes, prefix: int) -> bytes:
    """Clear every bit of ``packed`` at position ``prefix`` or later."""
    full_bytes, remain_bits = divmod(prefix, 8)
    if full_bytes >= len(packed):
        return bytes(packed)
    masked = bytearray(packed[:full_bytes])
    if remain_bits:
        masked.append(packed[full_bytes] & _partial_mask(remain_bits))
    masked.extend(b"\x00" * (len(packed) - len(masked)))
    return bytes(masked)


def prefix_equal(left: bytes, right: bytes, prefix: int) -> bool:
    """True when the first ``prefix`` bits of both byte strings agree."""
    full_bytes, remain_bits = divmod(prefix, 8)
    if left[:full_bytes] != right[:full_bytes]:
        return False
    if remain_bits == 0 or full_bytes >= len(left):
        return True
    mask = _partial_mask(remain_bits)
    return (left[full_bytes] & mask) == (right[full_bytes] & mask)


@dataclass(frozen=True, slots=True)
class CidrSpec:
    network: bytes
    prefix: int
    family: int

    @property
    def max_prefix(self) -> int:
        return 32 if self.family == 4 else 128

    @property
    def network_address(self) -> str:
        return str(ipaddress.ip_address(self.network))

    def contains(self, address: Address) -> bool:
        if address.family != self.family:
            return False
        return prefix_equal(address.packed, self.network, self.prefix)

    def __str__(self) -> str:
        return f"{self.network_address}/{self.prefix}"


def parse_spec(raw: str, diagnostics: Optional[Diagnostics] = None) -> Optional[CidrSpec]:
    """Parse ``203.0.113.10``, ``203.0.113.0/24`` or ``2001:db8::/64``.

    A bare address gets the full prefix of its family. Returns ``None`` for
    anything that does not parse.
    """

    def _reject(reason: str) -> None:
        if diagnostics is not None:
            diagnostics.skip("spec", raw, reason)

    value = (raw or "").strip()
    if not value:
        _reject("empty")
        return None

    prefix: Optional[int] = None
    address_part = value
    if "/" in value:
        address_part, prefix_part = value.split("/", 1)
        address_part = address_part.strip()
        prefix_part = prefix_part.strip()
        if not _DIGITS.match(prefix_part):
            _reject("prefix is not a number")
            return None
        prefix = int(prefix_part)

    address = Address.parse(address_part)
    if address is None:
        _reject("invalid address")
        return None

    if prefix is None:
        prefix = address.max_prefix
    if prefix > address.max_prefix:
        _reject(f"prefix out of range for IPv{address.family}")
        return None

    return CidrSpec(
        network=mask_bytes(address.packed, prefix),
        prefix=prefix,
        family=address.family,
    )


def matches(address: str, spec: Union[str, CidrSpec]) -> bool:
    """Return True if ``address`` lies inside ``spec``; False for any failure."""
    parsed_address = Address.parse(address) if address else None
    if parsed_address is None:
        return False
    parsed_spec = spec if isinstance(spec, CidrSpec) else parse_spec(spec)
    if parsed_spec is None:
        return False
    return parsed_spec.contains(parsed_address)


def compile_specs(raw_specs: Iterable[str], diagnostics: Optional[Diagnostics] = None) -> List[CidrSpec]:
    compiled: List[CidrSpec] = []
    for raw in raw_specs:
        spec = parse_spec(raw, diagnostics)
        if spec is not None:
            compiled.append(spec)
    return compiled


__all__ = ["CidrSpec", "compile_specs", "mask_bytes", "matches", "parse_spec", "prefix_equal"]
