"""Tests for configuration loading and validation."""

from __future__ import annotations

import json
import logging

import pytest

from tally.config.loader import _deep_merge, load_config
from tally.config.schema import AssistantConfig, LoggingConfig, TallyConfig
from tally.core.errors import ConfigError
from tally.core.logging import JsonFormatter, configure_logging


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """No user or project config files, no secrets in the environment."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for var in (
        "TALLY_CONFIG",
        "TALLY_JWT_SECRET",
        "DEEPSEEK_API_KEY",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
    ):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


class TestSchemaDefaults:
    def test_tally_config_defaults(self):
        cfg = TallyConfig()
        assert cfg.assistant.model == "deepseek:deepseek-chat"
        assert cfg.assistant.max_tool_rounds == 5
        assert cfg.assistant.history_turns == 5
        assert cfg.assistant.max_message_length == 1000
        assert set(cfg.providers) == {"deepseek", "openai", "anthropic"}
        assert cfg.providers["deepseek"].base_url == "https://api.deepseek.com/v1"
        assert cfg.logging.level == "INFO"

    def test_round_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            AssistantConfig(max_tool_rounds=0)


class TestDeepMerge:
    def test_nested_override(self):
        base = {"assistant": {"model": "a", "max_tool_rounds": 5}}
        merged = _deep_merge(base, {"assistant": {"model": "b"}})
        assert merged == {"assistant": {"model": "b", "max_tool_rounds": 5}}
        assert base["assistant"]["model"] == "a"


class TestLoadConfig:
    def test_defaults_when_no_files(self, isolated):
        cfg = load_config()
        assert cfg.api.port == 8080
        assert cfg.auth.jwt_secret == ""

    def test_project_file_then_explicit_path(self, isolated):
        (isolated / "tally.toml").write_text(
            '[assistant]\nmodel = "openai:gpt-4o"\nmax_tool_rounds = 3\n'
        )
        explicit = isolated / "override.toml"
        explicit.write_text("[assistant]\nmax_tool_rounds = 2\n")
        cfg = load_config(path=explicit)
        assert cfg.assistant.model == "openai:gpt-4o"
        assert cfg.assistant.max_tool_rounds == 2

    def test_programmatic_overrides_win(self, isolated):
        cfg = load_config(overrides={"api": {"port": 9999}})
        assert cfg.api.port == 9999

    def test_secrets_from_environment(self, isolated, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-test")
        monkeypatch.setenv("TALLY_JWT_SECRET", "s3cret")
        cfg = load_config()
        assert cfg.providers["deepseek"].api_key == "sk-test"
        assert cfg.auth.jwt_secret == "s3cret"

    def test_missing_explicit_path(self, isolated):
        with pytest.raises(ConfigError, match="not found"):
            load_config(path=isolated / "nope.toml")

    def test_tally_config_env_must_exist(self, isolated, monkeypatch):
        monkeypatch.setenv("TALLY_CONFIG", str(isolated / "missing.toml"))
        with pytest.raises(ConfigError, match="TALLY_CONFIG"):
            load_config()

    def test_invalid_toml(self, isolated):
        bad = isolated / "bad.toml"
        bad.write_text("[assistant\nmodel = ")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path=bad)

    def test_schema_violation(self, isolated):
        bad = isolated / "bad.toml"
        bad.write_text("[assistant]\nmax_tool_rounds = 0\n")
        with pytest.raises(ConfigError, match="validation failed"):
            load_config(path=bad)


class TestLogging:
    def test_json_formatter(self):
        record = logging.LogRecord(
            "tally.tools.executor",
            logging.INFO,
            __file__,
            1,
            "Tool %s ok",
            ("x",),
            None,
        )
        payload = json.loads(JsonFormatter().format(record))
        assert payload["logger"] == "tally.tools.executor"
        assert payload["message"] == "Tool x ok"
        assert payload["level"] == "INFO"

    def test_configure_logging_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "tally.log"
        configure_logging(LoggingConfig(level="debug", file=str(log_file)))
        logger = logging.getLogger("tally")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        logging.getLogger("tally.test").debug("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "hello" in log_file.read_text()

    def test_reconfigure_closes_replaced_handlers(self, tmp_path):
        configure_logging(LoggingConfig(file=str(tmp_path / "first.log")))
        logger = logging.getLogger("tally")
        [old_file] = [
            h for h in logger.handlers if isinstance(h, logging.FileHandler)
        ]
        assert old_file.stream is not None

        configure_logging(LoggingConfig(file=str(tmp_path / "second.log")))

        assert old_file not in logger.handlers
        assert old_file.stream is None
