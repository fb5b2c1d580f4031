# tests/test_config.py
"""
Tests for AppSettings loading: defaults, TOML file, environment and init kwargs.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler

import pytest
from pydantic import ValidationError

import synvek_plugins.config as config_module
from synvek_plugins.config import AppSettings, LoggingConfig, SandboxConfig
from synvek_plugins.logging_setup import GUEST_LOGGER, NOISY_LOGGERS, setup_logging


@pytest.fixture
def toml_file(tmp_path, monkeypatch):
    path = tmp_path / "synvek_plugins.toml"
    monkeypatch.setattr(config_module, "TOML_PATH", path)
    return path


class TestAppSettings:
    """Source priority and validation."""

    def test_defaults_without_a_file(self, toml_file):
        settings = AppSettings()
        assert settings.sandbox.allow_network is False
        assert settings.sandbox.ready_timeout_seconds == 5.0
        assert settings.services.agent_server_url == "http://127.0.0.1:12001"
        assert settings.services.default_model is None
        assert settings.tools.activated_plugins == ["math-function-tools"]

    def test_toml_values(self, toml_file):
        toml_file.write_text(
            '[sandbox]\nready_timeout_seconds = 9.5\n\n'
            '[services]\nagent_server_url = "http://localhost:9000"\n'
        )
        settings = AppSettings()
        assert settings.sandbox.ready_timeout_seconds == 9.5
        assert settings.sandbox.cpu_time_seconds == 30
        assert settings.services.agent_server_url == "http://localhost:9000"

    def test_environment_fills_keys_missing_from_the_file(self, toml_file, monkeypatch):
        toml_file.write_text('[services]\nagent_server_url = "http://localhost:9000"\n')
        monkeypatch.setenv("SYNVEK_SERVICES__DEFAULT_MODEL", "qwen3")
        settings = AppSettings()
        assert settings.services.default_model == "qwen3"
        assert settings.services.agent_server_url == "http://localhost:9000"

    def test_init_arguments_win(self, toml_file):
        toml_file.write_text("[sandbox]\nready_timeout_seconds = 9.5\n")
        settings = AppSettings(sandbox=SandboxConfig(ready_timeout_seconds=1.0))
        assert settings.sandbox.ready_timeout_seconds == 1.0

    def test_unknown_section_is_rejected(self, toml_file):
        toml_file.write_text("[workers]\ncount = 3\n")
        with pytest.raises(ValidationError):
            AppSettings()

    def test_shipped_config_file_loads(self):
        settings = AppSettings()
        assert settings.logging.log_file == "logs/synvek_plugins.log"
        assert settings.sandbox.memory_bytes == 512 * 1024 * 1024


class TestSetupLogging:
    """setup_logging() against the root logger."""

    @pytest.fixture(autouse=True)
    def restore_loggers(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)
        for name in (GUEST_LOGGER, *NOISY_LOGGERS):
            logging.getLogger(name).setLevel(logging.NOTSET)

    def test_console_handler_and_levels(self):
        setup_logging(AppSettings(logging=LoggingConfig(level="info")))
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert [type(h) for h in root.handlers] == [logging.StreamHandler]
        assert root.handlers[0].stream is sys.stderr
        assert logging.getLogger(GUEST_LOGGER).level == logging.NOTSET
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_guest_level_and_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "host.log"
        setup_logging(AppSettings(logging=LoggingConfig(
            level="DEBUG",
            guest_level="debug",
            log_to_file=True,
            log_file=str(log_file),
        )))
        root = logging.getLogger()
        assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)
        assert log_file.parent.is_dir()
        assert logging.getLogger(GUEST_LOGGER).level == logging.DEBUG
        assert logging.getLogger("httpcore").level == logging.DEBUG
