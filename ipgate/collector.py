"""Merging of client address candidates from several request sources."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .addresses import is_public_address
from .diagnostics import Diagnostics
from .headers import extract_addresses

Source = Tuple[str, Optional[str]]


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(values))


@dataclass(frozen=True, slots=True)
class CandidateSet:
    """Public client addresses split by family.

    ``all`` keeps first-seen order across both families; the matching step
    iterates it in that order.
    """

    ipv4: Tuple[str, ...] = ()
    ipv6: Tuple[str, ...] = ()
    all: Tuple[str, ...] = ()

    @classmethod
    def empty(cls) -> "CandidateSet":
        return cls()

    @classmethod
    def from_addresses(cls, addresses: Iterable[str]) -> "CandidateSet":
        ordered = _unique(addresses)
        return cls(
            ipv4=tuple(ip for ip in ordered if ":" not in ip),
            ipv6=tuple(ip for ip in ordered if ":" in ip),
            all=ordered,
        )

    def to_dict(self) -> dict:
        return {"ipv4": list(self.ipv4), "ipv6": list(self.ipv6), "all": list(self.all)}

    def __bool__(self) -> bool:
        return bool(self.all)

    def __len__(self) -> int:
        return len(self.all)


PriorCandidates = Union[CandidateSet, Iterable[str], None]


def collect(
    sources: Sequence[Source],
    prior: PriorCandidates = None,
    diagnostics: Optional[Diagnostics] = None,
) -> CandidateSet:
    """Build a candidate set from ``prior`` followed by ``sources`` in order.

    ``sources`` is an ordered sequence of ``(name, raw_value)`` pairs, highest
    priority first. Empty values are skipped. Only public addresses survive.
    """
    if isinstance(prior, CandidateSet):
        working: List[str] = list(prior.all)
    else:
        working = list(prior or [])

    for name, raw_value in sources:
        if not raw_value:
            continue
        extracted = extract_addresses(raw_value, diagnostics)
        if not extracted and diagnostics is not None:
            diagnostics.skip("source", name, "no address found")
        working.extend(extracted)

    public: List[str] = []
    for candidate in _unique(value.strip() for value in working):
        if is_public_address(candidate):
            public.append(candidate)
        elif diagnostics is not None:
            diagnostics.skip("candidate", candidate, "not a public address")

    return CandidateSet.from_addresses(public)


class CandidateCollector:
    """Applies the remember-prior-candidates policy around :func:`collect`."""

    def __init__(self, include_prior: bool = True):
        self.include_prior = include_prior

    def collect(
        self,
        sources: Sequence[Source],
        prior: PriorCandidates = None,
        diagnostics: Optional[Diagnostics] = None,
    ) -> CandidateSet:
        return collect(sources, prior if self.include_prior else None, diagnostics)


__all__ = ["CandidateCollector", "CandidateSet", "PriorCandidates", "Source", "collect"]
