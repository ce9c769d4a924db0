"""Optional channel for reporting input dropped by the core."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterator, List


@dataclass(frozen=True, slots=True)
class Skip:
    stage: str
    value: str
    reason: str


@dataclass(slots=True)
class Diagnostics:
    """Collects skipped entries without changing the drop-and-continue contract.

    Every core function accepts an optional instance. Passing none keeps the
    drop silent; passing one records why each unit of input was discarded so
    callers can log or display it.
    """

    skipped: List[Skip] = field(default_factory=list)

    def skip(self, stage: str, value: str, reason: str) -> None:
        self.skipped.append(Skip(stage=stage, value=value, reason=reason))

    def by_stage(self) -> Dict[str, int]:
        return dict(Counter(entry.stage for entry in self.skipped))

    def log_to(self, logger: logging.Logger, level: int = logging.DEBUG) -> None:
        for entry in self.skipped:
            logger.log(level, "Skipped %s %r: %s", entry.stage, entry.value, entry.reason)

    def to_list(self) -> List[Dict[str, str]]:
        return [
            {"stage": entry.stage, "value": entry.value, "reason": entry.reason}
            for entry in self.skipped
        ]

    def __iter__(self) -> Iterator[Skip]:
        return iter(self.skipped)

    def __len__(self) -> int:
        return len(self.skipped)


__all__ = ["Diagnostics", "Skip"]
