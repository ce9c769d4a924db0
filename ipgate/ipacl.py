"""CIDR-based allowlist checks."""
from __future__ import annotations

from typing import Iterable, List, Optional, Union

from .cidr import CidrSpec, matches
from .collector import CandidateSet

AllowEntry = Union[str, CidrSpec]


def _clean(allowlist: Iterable[AllowEntry]) -> List[AllowEntry]:
    cleaned: List[AllowEntry] = []
    for entry in allowlist:
        if isinstance(entry, CidrSpec):
            cleaned.append(entry)
            continue
        value = str(entry).strip()
        if value:
            cleaned.append(value)
    return cleaned


def first_match(candidates: CandidateSet, allowlist: Iterable[AllowEntry]) -> Optional[AllowEntry]:
    """Return the first allow entry that any candidate falls into."""
    for allowed in _clean(allowlist):
        for address in candidates.all:
            if matches(address, allowed):
                return allowed
    return None


def is_allowed(candidates: CandidateSet, allowlist: Iterable[AllowEntry]) -> bool:
    """Return True if any candidate matches any entry; an empty list allows nobody."""
    return first_match(candidates, allowlist) is not None


def address_allowed(remote_ip: str, allowlist: Iterable[AllowEntry]) -> bool:
    """Single-address variant used for the admin endpoints."""
    return is_allowed(CandidateSet.from_addresses([remote_ip]), allowlist)


__all__ = ["AllowEntry", "address_allowed", "first_match", "is_allowed"]
