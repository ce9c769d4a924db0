"""Runtime wiring for the service."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .allowmap import AllowMap, lookup_specs
from .audit import AuditLog
from .collector import CandidateCollector, CandidateSet, Source
from .config import ConfigBundle, ConfigError, ConfigManager
from .diagnostics import Diagnostics
from .ipacl import first_match
from .log import mask_address
from .store import CandidateStore, MemoryCandidateStore

log = logging.getLogger(__name__)


@dataclass(slots=True)
class AccessDecision:
    resource: str
    restricted: bool
    allowed: bool
    matched: Optional[str] = None


class IPGateRuntime:
    def __init__(self, config_dir: Path, store: Optional[CandidateStore] = None):
        self._config_dir = config_dir
        self._config_manager = ConfigManager(config_dir)
        self._bundle: Optional[ConfigBundle] = None
        self._store = store
        self._collector = CandidateCollector()
        self._audit_log: Optional[AuditLog] = None
        self._lock = asyncio.Lock()

    @property
    def config_bundle(self) -> ConfigBundle:
        if self._bundle is None:
            raise ConfigError("Configuration not loaded")
        return self._bundle

    @property
    def ready(self) -> bool:
        return self._bundle is not None

    @property
    def allow_map(self) -> AllowMap:
        return self.config_bundle.allow_map

    @property
    def store(self) -> CandidateStore:
        if self._store is None:
            raise RuntimeError("Candidate store not initialized")
        return self._store

    async def initialize(self) -> None:
        async with self._lock:
            bundle = self._config_manager.load()
            self._apply_bundle(bundle)

    async def reload(self) -> None:
        async with self._lock:
            bundle = self._config_manager.load()
            log.info("Configuration reload requested")
            self._apply_bundle(bundle)

    async def shutdown(self) -> None:
        async with self._lock:
            self._audit_log = None
            self._bundle = None

    def _apply_bundle(self, bundle: ConfigBundle) -> None:
        daemon = bundle.daemon
        session = daemon.session
        if self._store is None:
            self._store = MemoryCandidateStore(ttl_s=session.ttl_s, max_entries=session.max_entries)
        elif isinstance(self._store, MemoryCandidateStore):
            self._store.configure(session.ttl_s, session.max_entries)
        self._collector = CandidateCollector(include_prior=daemon.collector.remember)
        self._audit_log = AuditLog(daemon.audit)
        self._bundle = bundle
        log.info("Runtime initialized with %d allowlist slugs", len(bundle.allow_map))

    def audit_log(self) -> Optional[AuditLog]:
        return self._audit_log

    def resolve(
        self,
        session_key: Optional[str],
        sources: Sequence[Source],
        diagnostics: Optional[Diagnostics] = None,
    ) -> CandidateSet:
        """Collect candidates for a request and remember them for the session."""
        prior = self.store.get(session_key) if session_key else None
        candidates = self._collector.collect(sources, prior, diagnostics)
        if session_key:
            self.store.put(session_key, candidates)
        return candidates

    def decide(self, resource: str, candidates: CandidateSet) -> AccessDecision:
        """Unlisted resources are unrestricted; listed ones need a matching candidate."""
        specs = lookup_specs(self.allow_map, resource)
        if specs is None:
            return AccessDecision(resource=resource, restricted=False, allowed=True)

        matched = first_match(candidates, specs)
        if matched is None:
            log.info(
                "Denied '%s' for %s",
                resource,
                ", ".join(mask_address(ip) for ip in candidates.all) or "<no public address>",
            )
            return AccessDecision(resource=resource, restricted=True, allowed=False)
        return AccessDecision(resource=resource, restricted=True, allowed=True, matched=str(matched))


__all__ = ["AccessDecision", "IPGateRuntime"]
