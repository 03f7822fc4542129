from pathlib import Path

import pytest
from pydantic import SecretStr

from flareroute.settings import Settings
from fakes import FakeDaemon, FakeDns


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    (tmp_path / "cert.pem").write_text("fake cert")
    return Settings(
        api_token=SecretStr("test-token"),
        state_dir=tmp_path,
        cloudflared=Path("cloudflared"),
        poll_interval=0.01,
        convergence_timeout=0.2,
    )


@pytest.fixture
def events() -> list[str]:
    return []


@pytest.fixture
def dns(events) -> FakeDns:
    return FakeDns(events)


@pytest.fixture
def daemon(events, dns, tmp_path) -> FakeDaemon:
    return FakeDaemon(events, dns, tmp_path)
