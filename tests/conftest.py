from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from rich.logging import RichHandler
from typer.testing import CliRunner

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from epicswarm.core.rig import Rig  # noqa: E402
from epicswarm.swarm.manager import SwarmManager  # noqa: E402


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def ensure_commands_registered() -> None:
    """Ensure CLI commands are registered before tests run."""
    from epicswarm.main import _register_commands

    _register_commands()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path so tests don't touch user state."""
    cfg_path = tmp_path / "config.toml"
    monkeypatch.setenv("EPICSWARM_CONFIG", str(cfg_path))
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True, width=200)
    import epicswarm.commands.plan as plan_cmd
    import epicswarm.commands.session as session_cmd
    import epicswarm.core.console as core_console
    import epicswarm.main as es_main

    for module in (core_console, es_main, plan_cmd, session_cmd):
        monkeypatch.setattr(module, "console", test_console)
    return test_console


class StepClock:
    """Deterministic clock: each call returns a later timestamp."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def rig(tmp_path: Path) -> Rig:
    return Rig(name="test-rig", path=tmp_path / "test-rig")


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def manager(rig: Rig, clock: StepClock) -> SwarmManager:
    return SwarmManager(rig, clock=clock)


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    """Undo setup_logging() so caplog keeps seeing epicswarm records."""
    root = logging.getLogger()
    saved_level = root.level
    yield
    app_logger = logging.getLogger("epicswarm")
    app_logger.handlers.clear()
    app_logger.setLevel(logging.NOTSET)
    app_logger.propagate = True
    root.setLevel(saved_level)
    for handler in [h for h in root.handlers if isinstance(h, RichHandler)]:
        root.removeHandler(handler)
