"""Tests for YAML config loading and logging setup."""

from __future__ import annotations

from collections.abc import Iterator
import logging
from pathlib import Path

from preload_harness.config import configure_logging, load_config, load_yaml
from preload_harness.models import HarnessConfig
from pydantic import ValidationError
import pytest

# ===========================================================================
# YAML loading
# ===========================================================================


@pytest.mark.unit
class TestLoadConfig:
    """load_config builds a validated HarnessConfig from YAML."""

    def test_defaults_without_file(self) -> None:
        """No path yields the defaults."""
        assert load_config().log_path == "tmp/harness.log"

    def test_reads_fields(self, tmp_path: Path) -> None:
        """Fields in the YAML mapping are applied."""
        path = tmp_path / "harness.yaml"
        path.write_text(
            "default_timeout: 42\n"
            "log_path: log/server.log\n"
            "cleared_env: [APP_ENV]\n"
            "extra_env:\n"
            "  FOO: bar\n"
            "  DROP: null\n"
        )
        config = load_config(path)
        assert config.default_timeout == 42.0
        assert config.log_path == "log/server.log"
        assert config.cleared_env == ("APP_ENV",)
        assert config.extra_env == {"FOO": "bar", "DROP": None}

    def test_overrides_win(self, tmp_path: Path) -> None:
        """Keyword overrides replace file values."""
        path = tmp_path / "harness.yaml"
        path.write_text("default_timeout: 42\n")
        assert load_config(path, default_timeout=3).default_timeout == 3.0

    def test_empty_file_is_defaults(self, tmp_path: Path) -> None:
        """An empty YAML file means no overrides."""
        path = tmp_path / "harness.yaml"
        path.write_text("")
        assert load_config(path) == load_config()

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises FileNotFoundError naming the label."""
        with pytest.raises(FileNotFoundError, match="config file not found"):
            load_config(tmp_path / "absent.yaml")

    def test_non_mapping(self, tmp_path: Path) -> None:
        """A YAML list is rejected."""
        path = tmp_path / "harness.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="must contain a YAML mapping, got list"):
            load_yaml(path, "config")

    def test_invalid_value(self, tmp_path: Path) -> None:
        """Validation errors surface from the model."""
        path = tmp_path / "harness.yaml"
        path.write_text("default_timeout: -5\n")
        with pytest.raises(ValidationError):
            load_config(path)


# ===========================================================================
# Logging
# ===========================================================================


@pytest.fixture()
def clean_logger() -> Iterator[logging.Logger]:
    """Provide the package logger and restore its handlers afterwards."""
    harness_logger = logging.getLogger("preload_harness")
    saved_handlers = list(harness_logger.handlers)
    saved_level = harness_logger.level
    harness_logger.handlers.clear()
    yield harness_logger
    for handler in harness_logger.handlers:
        handler.close()
    harness_logger.handlers[:] = saved_handlers
    harness_logger.setLevel(saved_level)


@pytest.mark.unit
class TestConfigureLogging:
    """configure_logging attaches handlers once."""

    def test_sets_level(self, clean_logger: logging.Logger) -> None:
        """The configured level is applied to the package logger."""
        configure_logging(HarnessConfig(log_level="debug"))
        assert clean_logger.level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self, clean_logger: logging.Logger) -> None:
        """An unknown level string means INFO."""
        configure_logging(HarnessConfig(log_level="chatty"))
        assert clean_logger.level == logging.INFO

    def test_idempotent(self, clean_logger: logging.Logger) -> None:
        """Repeated calls do not duplicate the console handler."""
        configure_logging(HarnessConfig())
        configure_logging(HarnessConfig())
        assert len(clean_logger.handlers) == 1

    def test_file_handler(self, clean_logger: logging.Logger, tmp_path: Path) -> None:
        """A log_file adds exactly one file handler."""
        log_file = tmp_path / "harness.log"
        config = HarnessConfig(log_file=str(log_file))
        configure_logging(config)
        configure_logging(config)
        file_handlers = [h for h in clean_logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert len(clean_logger.handlers) == 2
