"""Decision audit logging."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .collector import CandidateSet
from .config import AuditConfig

log = logging.getLogger(__name__)


@dataclass(slots=True)
class AuditRecord:
    """Holds one access decision for the JSONL audit file."""

    resource: str
    restricted: bool
    allowed: bool
    candidates: CandidateSet
    matched: Optional[str] = None
    session: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditLog:
    """Appends decision events to a JSONL file when one is configured."""

    def __init__(self, config: AuditConfig):
        self._path = Path(config.file).expanduser() if config.file else None
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._path is not None

    async def process(self, record: AuditRecord) -> None:
        if self._path is None:
            return
        event: Dict[str, Any] = {
            "timestamp": record.created_at.timestamp(),
            "resource": record.resource,
            "restricted": record.restricted,
            "allowed": record.allowed,
            "candidates": list(record.candidates.all),
        }
        if record.matched is not None:
            event["matched"] = record.matched
        if record.session is not None:
            event["session"] = record.session[:8]
        await self._write_event(self._path, event)

    async def _write_event(self, path: Path, event: Dict[str, Any]) -> None:
        loop = asyncio.get_running_loop()
        data = json.dumps(event, ensure_ascii=False, default=self._json_default)

        async with self._lock:
            await loop.run_in_executor(None, self._append_line, path, data)

    @staticmethod
    def _append_line(path: Path, data: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(data)
            handle.write("\n")

    @staticmethod
    def _json_default(value: Any) -> Any:
        return repr(value)


__all__ = ["AuditLog", "AuditRecord"]
