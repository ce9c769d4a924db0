"""Extraction of address literals from proxy header style values."""
from __future__ import annotations

import re
from typing import List, Optional

from .addresses import is_valid_address, strip_zone_index
from .diagnostics import Diagnostics

_SEPARATORS = re.compile(r"[\s,]+")
_IPV4_WITH_PORT = re.compile(r"^([0-9]{1,3}(?:\.[0-9]{1,3}){3}):[0-9]+$")
_BRACKETED_WITH_PORT = re.compile(r"^\[(.+)\]:([0-9]+)$")


def normalize_token(token: str) -> str:
    """Strip port and zone index from a single header token."""
    token = token.strip()
    match = _IPV4_WITH_PORT.match(token)
    if match:
        token = match.group(1)
    match = _BRACKETED_WITH_PORT.match(token)
    if match:
        token = match.group(1)
    return strip_zone_index(token)


def extract_addresses(raw_value: Optional[str], diagnostics: Optional[Diagnostics] = None) -> List[str]:
    """Return the valid literals found in ``raw_value`` in first-seen order.

    Handles the ``client, proxy1, proxy2`` lists written by forwarding proxies
    as well as ``IPv4:port`` and ``[IPv6]:port`` tokens. Public-ness is not
    checked here.
    """
    if not raw_value:
        return []

    seen: List[str] = []
    for token in _SEPARATORS.split(raw_value):
        if not token.strip():
            continue
        candidate = normalize_token(token)
        if not is_valid_address(candidate):
            if diagnostics is not None:
                diagnostics.skip("header", token, "not an IP address")
            continue
        if candidate not in seen:
            seen.append(candidate)
    return seen


__all__ = ["extract_addresses", "normalize_token"]
