"""Tests for configuration loading and Safe Mode fallback."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from epicswarm.core.config import AppConfig, SessionConfig, load_config


class TestLoadConfig:
    def test_defaults_when_file_missing(self, isolate_config: Path) -> None:
        config, meta = load_config()

        assert meta.path == isolate_config
        assert meta.file_loaded is False
        assert meta.error is None
        assert config.session.session_prefix == "es"
        assert config.session.grace_period == 10.0
        assert config.swarm.default_base_branch == "main"
        assert config.log_level == "INFO"

    def test_reads_toml(self, isolate_config: Path) -> None:
        isolate_config.write_text(
            '[session]\ngrace_period = 2.5\nready_marker = "$ "\n\n[swarm]\ndefault_rig = "gastown"\n',
            encoding="utf-8",
        )

        config, meta = load_config()

        assert meta.file_loaded is True
        assert config.session.grace_period == 2.5
        assert config.session.ready_marker == "$ "
        assert config.swarm.default_rig == "gastown"

    def test_reads_json(self, tmp_path: Path) -> None:
        path = tmp_path / "epicswarm.json"
        path.write_text('{"session": {"agent_command": "codex"}}', encoding="utf-8")

        config, meta = load_config(config_path=path)

        assert meta.path == path
        assert config.session.agent_command == "codex"

    def test_env_overrides_file(self, isolate_config: Path) -> None:
        isolate_config.write_text("[session]\ngrace_period = 2.5\n", encoding="utf-8")

        config, meta = load_config(
            env={"EPICSWARM_SESSION__GRACE_PERIOD": "7", "EPICSWARM_LOG_LEVEL": "DEBUG"}
        )

        assert config.session.grace_period == 7.0
        assert config.log_level == "DEBUG"
        assert meta.env_overrides == {"session.grace_period", "log_level"}

    def test_syntax_error_enters_safe_mode(self, isolate_config: Path) -> None:
        isolate_config.write_text("[session\ngrace_period = ", encoding="utf-8")

        config, meta = load_config()

        assert meta.error is not None
        assert "Syntax error" in meta.error
        assert config == AppConfig()

    def test_invalid_value_enters_safe_mode(self, isolate_config: Path) -> None:
        isolate_config.write_text("[session]\ngrace_period = -1\n", encoding="utf-8")

        config, meta = load_config()

        assert meta.error is not None
        assert config.session.grace_period == 10.0

    def test_non_mapping_root(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")

        _, meta = load_config(config_path=path)

        assert meta.error is not None
        assert "mapping" in meta.error


class TestSessionConfig:
    @pytest.mark.parametrize("field", ["ready_timeout", "poll_interval", "grace_period"])
    def test_negative_durations_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError):
            SessionConfig(**{field: -0.1})

    def test_zero_grace_is_allowed(self) -> None:
        assert SessionConfig(grace_period=0).grace_period == 0
