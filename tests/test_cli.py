import sys

import pytest
from typer.testing import CliRunner

from flareroute import cli
from flareroute.log import config as log_config

runner = CliRunner()


@pytest.fixture(autouse=True)
def _log_to_tmp(tmp_path, monkeypatch):
    monkeypatch.setattr(log_config, "log_file_path", lambda: tmp_path / "tunnel.log")
    monkeypatch.delenv("CLOUDFLARE_API_TOKEN", raising=False)
    monkeypatch.delenv("CLOUDFLARED_BIN", raising=False)


def test_missing_token_exits_1(tmp_path):
    result = runner.invoke(cli.app, ["api.example.com", "8080", "--state-dir", str(tmp_path)])
    assert result.exit_code == 1


def test_missing_daemon_exits_1(tmp_path):
    result = runner.invoke(
        cli.app,
        ["api.example.com", "8080", "--state-dir", str(tmp_path), "--cloudflared", "no-such-cloudflared"],
        env={"CLOUDFLARE_API_TOKEN": "t"},
    )
    assert result.exit_code == 1


def test_missing_certificate_exits_1(tmp_path):
    result = runner.invoke(
        cli.app,
        ["api.example.com", "8080", "--state-dir", str(tmp_path), "--cloudflared", sys.executable],
        env={"CLOUDFLARE_API_TOKEN": "t"},
    )
    assert result.exit_code == 1


def test_port_required_without_cleanup_exits_1():
    result = runner.invoke(cli.app, ["api.example.com"], env={"CLOUDFLARE_API_TOKEN": "t"})
    assert result.exit_code == 1


def test_invalid_domain_exits_1():
    result = runner.invoke(cli.app, ["localhost", "8080"], env={"CLOUDFLARE_API_TOKEN": "t"})
    assert result.exit_code == 1


@pytest.mark.parametrize("port", ["0", "70000"])
def test_out_of_range_port_exits_1(port):
    result = runner.invoke(cli.app, ["api.example.com", port], env={"CLOUDFLARE_API_TOKEN": "t"})
    assert result.exit_code == 1


def test_unparseable_port_is_a_usage_error():
    result = runner.invoke(cli.app, ["api.example.com", "http"], env={"CLOUDFLARE_API_TOKEN": "t"})
    assert result.exit_code == 2


def test_check_target_normalises_domain():
    assert cli.check_target("API.Example.com.", 8080, False) == "api.example.com"
    assert cli.check_target("api.example.com", None, True) == "api.example.com"


def test_session_is_wired_to_reconciler(tmp_path, monkeypatch):
    (tmp_path / "cert.pem").write_text("cert")
    seen = {}

    async def fake_session(settings, domain, port, cleanup):
        seen.update(settings=settings, domain=domain, port=port, cleanup=cleanup)
        return False

    monkeypatch.setattr(cli, "_session", fake_session)
    result = runner.invoke(
        cli.app,
        ["API.Example.com", "8080", "--state-dir", str(tmp_path), "--cloudflared", sys.executable,
         "--timeout", "5", "--interval", "0.5"],
        env={"CLOUDFLARE_API_TOKEN": "secret"},
    )

    assert result.exit_code == 0, result.output
    assert seen["domain"] == "api.example.com"
    assert seen["port"] == 8080
    assert seen["cleanup"] is False
    assert seen["settings"].api_token.get_secret_value() == "secret"
    assert seen["settings"].convergence_timeout == 5
    assert seen["settings"].poll_interval == 0.5


def test_cleanup_needs_no_port(tmp_path, monkeypatch):
    (tmp_path / "cert.pem").write_text("cert")
    seen = {}

    async def fake_session(settings, domain, port, cleanup):
        seen.update(port=port, cleanup=cleanup)
        return False

    monkeypatch.setattr(cli, "_session", fake_session)
    result = runner.invoke(
        cli.app,
        ["--cleanup", "api.example.com", "--state-dir", str(tmp_path), "--cloudflared", sys.executable],
        env={"CLOUDFLARE_API_TOKEN": "t"},
    )

    assert result.exit_code == 0, result.output
    assert seen == {"port": None, "cleanup": True}
