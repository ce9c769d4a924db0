import argparse
import json
from pathlib import Path

import pytest

from ipgate.cli import build_parser, determine_listen_target, main, resolve_admin_endpoint
from ipgate.config import AdminConfig, ConfigError, DaemonConfig, ListenConfig


@pytest.fixture
def allowlist(tmp_path: Path) -> Path:
    path = tmp_path / "allowlist.txt"
    path.write_text("<p>members =&gt; 203.0.113.0/24, bogus</p>\nno separator here\n", encoding="utf-8")
    return path


def test_parse_prints_json(allowlist: Path, capsys):
    main(["parse", str(allowlist), "--verbose"])
    captured = capsys.readouterr()
    assert json.loads(captured.out) == {"members": ["203.0.113.0/24", "bogus"]}
    assert "[skipped] line: 'no separator here'" in captured.err


def test_check_allowed(allowlist: Path, capsys):
    main(["check", "--allowlist", str(allowlist), "--resource", "members", "198.51.100.1, 203.0.113.9:443"])
    assert capsys.readouterr().out.strip() == "members: allowed (matched 203.0.113.0/24)"


def test_check_denied(allowlist: Path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["check", "--allowlist", str(allowlist), "--resource", "/members/", "198.51.100.1"])
    assert excinfo.value.code == 1
    assert capsys.readouterr().out.strip() == "/members/: denied"


def test_check_unlisted(allowlist: Path, capsys):
    main(["check", "--allowlist", str(allowlist), "--resource", "blog", "198.51.100.1"])
    assert capsys.readouterr().out.strip() == "blog: not restricted"


def test_parse_missing_file(tmp_path: Path, capsys):
    with pytest.raises(SystemExit):
        main(["parse", str(tmp_path / "missing.txt")])
    assert "[error]" in capsys.readouterr().err


def test_parser_defaults_to_start():
    args = build_parser().parse_args(["--foreground"])
    assert args.foreground is True
    assert args.func.__name__ == "_command_start"


def test_determine_listen_target():
    tcp = DaemonConfig(listen=ListenConfig(host_v4="0.0.0.0", port=9090))
    assert determine_listen_target(argparse.Namespace(), tcp) == ("0.0.0.0", 9090, None)
    assert determine_listen_target(argparse.Namespace(port=1234), tcp) == ("0.0.0.0", 1234, None)

    uds = DaemonConfig(listen=ListenConfig(unix_socket="/run/ipgate.sock"))
    assert determine_listen_target(argparse.Namespace(), uds) == (None, None, "/run/ipgate.sock")
    assert determine_listen_target(argparse.Namespace(port=8000), uds) == ("127.0.0.1", 8000, None)

    with pytest.raises(ValueError):
        determine_listen_target(argparse.Namespace(unix_socket="/tmp/x.sock", host="::1"), uds)


def test_resolve_admin_endpoint():
    tcp = DaemonConfig(listen=ListenConfig(host_v4="0.0.0.0", port=9090))
    assert resolve_admin_endpoint(argparse.Namespace(), tcp) == ("http://127.0.0.1:9090", None)

    tcp6 = DaemonConfig(listen=ListenConfig(host_v6="::", port=9090), admin=AdminConfig())
    assert resolve_admin_endpoint(argparse.Namespace(), tcp6) == ("http://[::1]:9090", None)

    uds = DaemonConfig(listen=ListenConfig(unix_socket="/run/ipgate.sock"))
    assert resolve_admin_endpoint(argparse.Namespace(), uds) == ("http://unix", "/run/ipgate.sock")

    override = argparse.Namespace(admin_url="http://10.0.0.5:8080/")
    assert resolve_admin_endpoint(override, uds) == ("http://10.0.0.5:8080", None)

    with pytest.raises(ConfigError):
        resolve_admin_endpoint(argparse.Namespace(admin_url="http://x", unix_socket="/tmp/x.sock"), uds)
