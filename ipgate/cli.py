"""Console entry point for mini-ipgate."""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Optional, Sequence, Tuple

import httpx
import uvicorn
from daemonize import Daemonize

from .allowmap import lookup_specs, parse_allow_map
from .app import create_app, resolve_config_dir
from .collector import CandidateSet
from .config import DEFAULT_SOCKET_PATH, ConfigError, DaemonConfig, load_daemon_config
from .diagnostics import Diagnostics
from .headers import extract_addresses
from .ipacl import first_match

DEFAULT_HOST_FALLBACK = "127.0.0.1"
WILDCARD_HOSTS = {"0.0.0.0", "::"}


def _fail(message: str, code: int = 1) -> None:
    print(f"[error] {message}", file=sys.stderr)
    sys.exit(code)


def _load_daemon(args: argparse.Namespace) -> Tuple[Path, DaemonConfig]:
    cfg_dir = resolve_config_dir(getattr(args, "config_dir", None))
    try:
        return cfg_dir, load_daemon_config(cfg_dir / "daemon.json")
    except ConfigError as exc:
        _fail(str(exc))
        raise  # pragma: no cover - _fail exits


def _remove_stale_socket(path: str) -> None:
    socket_path = Path(path)
    try:
        if socket_path.exists():
            socket_path.unlink()
    except OSError:
        pass


def _serve_uvicorn(
    config_dir: Path,
    host: Optional[str],
    port: Optional[int],
    uds: Optional[str],
    log_level: str,
) -> None:
    app = create_app(config_dir)
    if uds:
        _remove_stale_socket(uds)

    config = uvicorn.Config(
        app,
        host=host or DEFAULT_HOST_FALLBACK,
        port=port or 8000,
        uds=uds,
        log_level=log_level,
        proxy_headers=False,
    )
    server = uvicorn.Server(config)
    app.state.server = server
    server.run()


def _pid_is_active(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _start_background(
    cfg_dir: Path,
    host: Optional[str],
    port: Optional[int],
    uds: Optional[str],
    log_level: str,
) -> None:
    pid_path = cfg_dir / "mini-ipgate.pid"

    if pid_path.exists():
        try:
            existing_pid = int(pid_path.read_text().strip())
        except (OSError, ValueError):
            existing_pid = None
        if existing_pid and _pid_is_active(existing_pid):
            _fail(f"mini-ipgate appears to be running already (PID {existing_pid})")
        try:
            pid_path.unlink()
        except OSError as exc:
            print(f"[warning] Failed to remove stale pidfile {pid_path}: {exc}", file=sys.stderr)

    desc = f"unix:{uds}" if uds else f"http://{host}:{port}"
    print(f"mini-ipgate starting in background on {desc} (pidfile {pid_path})")

    daemon = Daemonize(
        app="mini-ipgate",
        pid=str(pid_path),
        action=lambda: _serve_uvicorn(cfg_dir, host, port, uds, log_level),
    )
    try:
        daemon.start()
    except Exception as exc:  # pragma: no cover - daemonization failure
        _fail(f"Failed to daemonize mini-ipgate: {exc}")


def determine_listen_target(
    args: argparse.Namespace, daemon_cfg: DaemonConfig
) -> Tuple[Optional[str], Optional[int], Optional[str]]:
    host_override = getattr(args, "host", None)
    port_override = getattr(args, "port", None)
    unix_socket_override = getattr(args, "unix_socket", None)

    if unix_socket_override and (host_override or port_override):
        raise ValueError("Cannot combine --unix-socket with --host/--port overrides")

    if unix_socket_override:
        return None, None, unix_socket_override

    listen = daemon_cfg.listen
    host = host_override or listen.host_v6 or listen.host_v4
    port = port_override if port_override is not None else listen.port

    if host is None and port_override is not None:
        host = DEFAULT_HOST_FALLBACK

    if host:
        return host, port if port is not None else 8080, None

    return None, None, listen.unix_socket or DEFAULT_SOCKET_PATH


def _listen_base_url(daemon_cfg: DaemonConfig) -> str:
    listen = daemon_cfg.listen
    host = listen.host_v6 or listen.host_v4
    if host is None or listen.port is None:
        raise ConfigError("No TCP listener configured for the admin endpoints")
    if host in WILDCARD_HOSTS:
        host = "::1" if ":" in host else DEFAULT_HOST_FALLBACK
    if ":" in host:
        return f"http://[{host}]:{listen.port}"
    return f"http://{host}:{listen.port}"


def resolve_admin_endpoint(args: argparse.Namespace, daemon_cfg: DaemonConfig) -> Tuple[str, Optional[str]]:
    admin_url = getattr(args, "admin_url", None)
    unix_socket_override = getattr(args, "unix_socket", None)

    if admin_url and unix_socket_override:
        raise ConfigError("Cannot combine --admin-url with --unix-socket")
    if admin_url:
        return admin_url.rstrip("/"), None
    if unix_socket_override:
        return "http://unix", unix_socket_override
    if daemon_cfg.listen.unix_socket:
        return "http://unix", daemon_cfg.listen.unix_socket
    return _listen_base_url(daemon_cfg), None


def _perform_admin_action(url: str, timeout: float, uds: Optional[str]) -> None:
    transport = httpx.HTTPTransport(uds=uds) if uds else None
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.post(url)
    except (httpx.HTTPError, OSError) as exc:
        _fail(f"Admin request failed: {exc}")
        return

    if response.status_code >= 400:
        _fail(f"Admin endpoint returned {response.status_code}: {response.text}")

    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and "status" in payload:
        print(payload["status"])
    else:
        print(f"Request succeeded ({response.status_code})")


def _command_start(args: argparse.Namespace) -> None:
    cfg_dir, daemon_cfg = _load_daemon(args)
    try:
        host, port, uds = determine_listen_target(args, daemon_cfg)
    except ValueError as exc:
        _fail(str(exc), code=2)
        return

    log_level = daemon_cfg.logging.level.lower()
    if getattr(args, "foreground", False):
        desc = f"unix:{uds}" if uds else f"http://{host}:{port}"
        print(f"mini-ipgate starting in foreground on {desc}")
        _serve_uvicorn(cfg_dir, host, port, uds, log_level)
        return
    _start_background(cfg_dir, host, port, uds, log_level)


def _admin_command(path: str):
    def _command(args: argparse.Namespace) -> None:
        _, daemon_cfg = _load_daemon(args)
        try:
            base_url, uds = resolve_admin_endpoint(args, daemon_cfg)
        except ConfigError as exc:
            _fail(str(exc))
            return
        _perform_admin_action(f"{base_url}{path}", args.timeout, uds)

    return _command


def _read_allowlist(path: str) -> Tuple[dict, Diagnostics]:
    diagnostics = Diagnostics()
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        _fail(f"Unable to read allowlist {path}: {exc}")
        raise  # pragma: no cover - _fail exits
    return parse_allow_map(raw, diagnostics), diagnostics


def _command_parse(args: argparse.Namespace) -> None:
    allow_map, diagnostics = _read_allowlist(args.file)
    print(json.dumps(allow_map, ensure_ascii=False, indent=2))
    if args.verbose:
        for entry in diagnostics:
            print(f"[skipped] {entry.stage}: {entry.value!r} ({entry.reason})", file=sys.stderr)


def _command_check(args: argparse.Namespace) -> None:
    allow_map, _ = _read_allowlist(args.allowlist)
    specs = lookup_specs(allow_map, args.resource)
    if specs is None:
        print(f"{args.resource}: not restricted")
        return

    # addresses given on the command line are matched as-is, without the public-address filter
    candidates = CandidateSet.from_addresses(
        address for value in args.addresses for address in extract_addresses(value)
    )
    matched = first_match(candidates, specs)
    if matched is None:
        print(f"{args.resource}: denied")
        sys.exit(1)
    print(f"{args.resource}: allowed (matched {matched})")


def build_parser() -> argparse.ArgumentParser:
    start_parent = argparse.ArgumentParser(add_help=False)
    start_parent.add_argument("--config-dir", help="Directory containing daemon.json and the allowlist")
    start_parent.add_argument("--host", help="Override listen host")
    start_parent.add_argument("--port", type=int, help="Override listen port")
    start_parent.add_argument("--unix-socket", help="Override Unix domain socket path")
    start_parent.add_argument("--foreground", action="store_true", help="Run in the foreground")

    parser = argparse.ArgumentParser(description="mini-ipgate service management", parents=[start_parent])
    subparsers = parser.add_subparsers(dest="command")

    start_parser = subparsers.add_parser("start", help="Start the service", parents=[start_parent])
    start_parser.set_defaults(func=_command_start)

    for name, path, help_text in (
        ("reload", "/admin/reload", "Reload configuration and allowlist"),
        ("stop", "/admin/shutdown", "Request a graceful shutdown"),
    ):
        admin_parser = subparsers.add_parser(name, help=help_text)
        admin_parser.add_argument("--config-dir", help="Directory containing daemon.json")
        admin_parser.add_argument("--admin-url", help="Override admin base URL (e.g. http://127.0.0.1:8081)")
        admin_parser.add_argument("--unix-socket", help="Path to Unix domain socket for admin endpoint")
        admin_parser.add_argument("--timeout", type=float, default=5.0, help="HTTP timeout in seconds")
        admin_parser.set_defaults(func=_admin_command(path))

    parse_parser = subparsers.add_parser("parse", help="Print a parsed allowlist file as JSON")
    parse_parser.add_argument("file", help="Allowlist text file")
    parse_parser.add_argument("--verbose", action="store_true", help="Report skipped lines on stderr")
    parse_parser.set_defaults(func=_command_parse)

    check_parser = subparsers.add_parser("check", help="Check addresses against an allowlist file")
    check_parser.add_argument("--allowlist", required=True, help="Allowlist text file")
    check_parser.add_argument("--resource", required=True, help="Resource slug to look up")
    check_parser.add_argument("addresses", nargs="+", help="Client addresses or header values")
    check_parser.set_defaults(func=_command_check)

    parser.set_defaults(func=_command_start)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
