"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from gobelt.core.context import AppContext, build_context
from gobelt.core.models import BinarySpec, Settings
from tests.helpers import FAKE_GO, module_for


@pytest.fixture
def fake_go(tmp_path: Path) -> list[str]:
    """go_cmd pointing at the fake toolchain."""
    script = tmp_path / "fake_go.py"
    script.write_text(FAKE_GO)
    return [sys.executable, str(script)]


@pytest.fixture
def gobin(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Empty GOBIN; the registry searches only this directory."""
    path = tmp_path / "gobin"
    path.mkdir()
    monkeypatch.setenv("FAKE_GOBIN", str(path))
    for var in (
        "FAKE_GO_DELAY", "FAKE_GO_FAIL", "FAKE_GO_LATEST", "FAKE_GO_OFFLINE",
        "FAKE_GO_CHILD_PIDFILE",
    ):
        monkeypatch.delenv(var, raising=False)
    return path


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    return tmp_path / "data" / "state.json"


@pytest.fixture
def make_app(fake_go: list[str], gobin: Path, state_file: Path):
    """Factory for a fully wired AppContext backed by the fake toolchain."""
    apps: list[AppContext] = []

    def _make(
        binaries: tuple[str, ...] = ("a", "b", "c"),
        concurrency: int = 2,
        **overrides,
    ) -> AppContext:
        go_cmd = overrides.pop("go_cmd", fake_go)
        settings = Settings(
            concurrency=concurrency,
            go_cmd=go_cmd,
            state_file=str(state_file),
            binaries=[BinarySpec(name=n, source=module_for(n)) for n in binaries],
            **overrides,
        )
        app = build_context(settings, search_path=str(gobin))
        apps.append(app)
        return app

    yield _make

    for app in apps:
        app.runner.abort()
        app.close()
