"""Configuration loading and validation for mini-ipgate."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, List, Mapping, MutableMapping, Optional

from .allowmap import AllowMap, load_allow_map
from .cidr import compile_specs
from .diagnostics import Diagnostics
from .store import DEFAULT_MAX_ENTRIES

log = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/var/ipgate/ipgate.sock"

DEFAULT_HEADERS = [
    "CF-Connecting-IP",
    "X-Real-IP",
    "X-Forwarded-For",
    "Client-IP",
]

DEFAULT_FORM_FIELDS = [
    "probe_client_ip",
    "client_ip",
    "client_ipv4",
    "client_ipv6",
    "ip",
    "ipv4",
    "ipv6",
]


class ConfigError(RuntimeError):
    """Configuration error exception

    This exception is raised whenever the configuration
    files are invalid or missing
    """


@dataclass(slots=True)
class ListenConfig:
    """Listener configuration for the check endpoint.

    When neither ``host_v4`` nor ``host_v6`` are provided the service listens on
    a Unix domain socket, which is the usual setup behind a reverse proxy that
    forwards ``auth_request`` subrequests."""

    host_v4: Optional[str] = None
    host_v6: Optional[str] = None
    port: Optional[int] = None
    unix_socket: Optional[str] = None


@dataclass(slots=True)
class AdminConfig:
    """Networks besides loopback that may use the admin endpoints"""

    networks: List[str] = field(default_factory=list)


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    access_log: bool = True
    file: Optional[str] = None


@dataclass(slots=True)
class ReloadConfig:
    """SIGHUP handler

    If enabled the SIGHUP handler re-reads daemon.json and the allowlist"""

    enable_sighup: bool = True


@dataclass(slots=True)
class CollectorConfig:
    """Where client addresses are looked up, highest priority first.

    Headers are consulted before the peer address, form fields last. With
    ``remember`` enabled, addresses seen on earlier requests of the same
    session stay candidates."""

    headers: List[str] = field(default_factory=lambda: list(DEFAULT_HEADERS))
    include_peer: bool = True
    form_fields: List[str] = field(default_factory=lambda: list(DEFAULT_FORM_FIELDS))
    remember: bool = True


@dataclass(slots=True)
class SessionConfig:
    """Session cookie and candidate memory.

    ``ttl_s`` and ``max_entries`` are applied to the running store on reload."""

    cookie: str = "ipgate_session"
    ttl_s: float = 86400.0
    secure: bool = False
    max_entries: int = DEFAULT_MAX_ENTRIES


@dataclass(slots=True)
class AllowlistConfig:
    file: str = "allowlist.txt"

    def resolve(self, config_dir: Path) -> Path:
        path = Path(self.file).expanduser()
        if not path.is_absolute():
            path = config_dir / path
        return path


@dataclass(slots=True)
class AuditConfig:
    file: Optional[str] = None


@dataclass(slots=True)
class DaemonConfig:
    listen: ListenConfig = field(default_factory=ListenConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    reload: ReloadConfig = field(default_factory=ReloadConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    allowlist: AllowlistConfig = field(default_factory=AllowlistConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)


@dataclass(slots=True)
class ConfigBundle:
    daemon: DaemonConfig
    allow_map: AllowMap
    diagnostics: Diagnostics = field(default_factory=Diagnostics)


def _expect(obj: MutableMapping[str, Any], key: str, ctx: str) -> Any:
    if key not in obj:
        raise ConfigError(f"Missing field '{key}' in {ctx}")
    return obj[key]


def _load_list(value: Any, ctx: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"Expected list for {ctx}")
    return value


def _load_mapping(value: Any, ctx: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected mapping for {ctx}")
    return value


def _load_str_list(raw: Mapping[str, Any], key: str, ctx: str, default: List[str]) -> List[str]:
    if key not in raw:
        return list(default)
    return [str(item).strip() for item in _load_list(raw.get(key), ctx) if str(item).strip()]


def _load_listen(raw: Mapping[str, Any]) -> ListenConfig:
    host_v4_value = raw.get("host_v4")
    host_v6_value = raw.get("host_v6")
    unix_socket_value = raw.get("unix_socket")
    port_value = raw.get("port")

    host_v4 = str(host_v4_value) if host_v4_value is not None else None
    host_v6 = str(host_v6_value) if host_v6_value is not None else None

    port: Optional[int]
    if port_value is not None:
        try:
            port = int(port_value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid listen.port: {port_value!r}") from exc
    elif host_v4 or host_v6:
        port = 8080
    else:
        port = None

    unix_socket = str(unix_socket_value) if unix_socket_value is not None else None
    if unix_socket is None and not host_v4 and not host_v6:
        unix_socket = DEFAULT_SOCKET_PATH

    return ListenConfig(host_v4=host_v4, host_v6=host_v6, port=port, unix_socket=unix_socket)


def _load_admin(raw: Mapping[str, Any]) -> AdminConfig:
    return AdminConfig(networks=_load_str_list(raw, "networks", "admin.networks", []))


def _load_logging(raw: Mapping[str, Any]) -> LoggingConfig:
    return LoggingConfig(
        level=str(raw.get("level", "INFO")),
        access_log=bool(raw.get("access_log", True)),
        file=str(raw["file"]) if raw.get("file") is not None else None,
    )


def _load_collector(raw: Mapping[str, Any]) -> CollectorConfig:
    return CollectorConfig(
        headers=_load_str_list(raw, "headers", "collector.headers", DEFAULT_HEADERS),
        include_peer=bool(raw.get("include_peer", True)),
        form_fields=_load_str_list(raw, "form_fields", "collector.form_fields", DEFAULT_FORM_FIELDS),
        remember=bool(raw.get("remember", True)),
    )


def _load_session(raw: Mapping[str, Any]) -> SessionConfig:
    cookie = str(raw.get("cookie", "ipgate_session")).strip()
    if not cookie:
        raise ConfigError("session.cookie must not be empty")
    try:
        ttl_s = float(raw.get("ttl_s", 86400.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid session.ttl_s: {raw.get('ttl_s')!r}") from exc
    if ttl_s < 0:
        raise ConfigError("session.ttl_s must be zero or positive")
    try:
        max_entries = int(raw.get("max_entries", DEFAULT_MAX_ENTRIES))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid session.max_entries: {raw.get('max_entries')!r}") from exc
    if max_entries < 1:
        raise ConfigError("session.max_entries must be positive")
    return SessionConfig(
        cookie=cookie,
        ttl_s=ttl_s,
        secure=bool(raw.get("secure", False)),
        max_entries=max_entries,
    )


def load_daemon_config(path: Path) -> DaemonConfig:
    data = _load_json(path)
    if not isinstance(data, Mapping):
        raise ConfigError("daemon.json must contain an object")

    listen_raw = _load_mapping(_expect(dict(data), "listen", "daemon"), "listen")
    allowlist_raw = _load_mapping(data.get("allowlist"), "allowlist")
    audit_raw = _load_mapping(data.get("audit"), "audit")
    reload_raw = _load_mapping(data.get("reload"), "reload")

    return DaemonConfig(
        listen=_load_listen(listen_raw),
        admin=_load_admin(_load_mapping(data.get("admin"), "admin")),
        logging=_load_logging(_load_mapping(data.get("logging"), "logging")),
        reload=ReloadConfig(enable_sighup=bool(reload_raw.get("enable_sighup", True))),
        collector=_load_collector(_load_mapping(data.get("collector"), "collector")),
        session=_load_session(_load_mapping(data.get("session"), "session")),
        allowlist=AllowlistConfig(file=str(allowlist_raw.get("file", "allowlist.txt"))),
        audit=AuditConfig(file=str(audit_raw["file"]) if audit_raw.get("file") is not None else None),
    )


def _load_json(path: Path) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file missing: {path}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc


def load_allowlist(path: Path, diagnostics: Optional[Diagnostics] = None) -> AllowMap:
    try:
        return load_allow_map(path, diagnostics)
    except FileNotFoundError as exc:
        raise ConfigError(f"Allowlist file missing: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"Unable to read allowlist {path}: {exc}") from exc


class ConfigManager:
    """Serializes loading of daemon.json and the allowlist."""

    def __init__(self, config_dir: Path):
        self._config_dir = config_dir
        self._daemon_path = config_dir / "daemon.json"
        self._lock = RLock()

    def load(self) -> ConfigBundle:
        """Load daemon.json and the allowlist into a fresh bundle."""
        with self._lock:
            log.debug("Loading configuration from %s", self._config_dir)
            daemon = load_daemon_config(self._daemon_path)
            diagnostics = Diagnostics()
            allow_map = load_allowlist(daemon.allowlist.resolve(self._config_dir), diagnostics)
            entries = dict.fromkeys(entry for values in allow_map.values() for entry in values)
            compile_specs(entries, diagnostics)
            if diagnostics:
                log.warning("Allowlist: skipped %d unusable lines or entries", len(diagnostics))
                diagnostics.log_to(log)
            return ConfigBundle(daemon=daemon, allow_map=allow_map, diagnostics=diagnostics)


__all__ = [
    "AdminConfig",
    "AllowlistConfig",
    "AuditConfig",
    "CollectorConfig",
    "ConfigBundle",
    "ConfigError",
    "ConfigManager",
    "DaemonConfig",
    "ListenConfig",
    "LoggingConfig",
    "ReloadConfig",
    "SessionConfig",
    "load_allowlist",
    "load_daemon_config",
]
