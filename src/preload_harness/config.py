"""Configuration loading and logging setup for the preload harness."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from preload_harness.models import HarnessConfig

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def load_yaml(path: str | Path, label: str) -> dict[str, Any]:
    """Load a YAML file that must contain a mapping.

    Args:
        path: File path to the YAML file.
        label: Human-readable label for error messages (e.g. "config").

    Returns:
        The parsed YAML content as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file does not parse to a mapping.
    """
    file_path = Path(path)
    if not file_path.exists():
        msg = f"{label} file not found: {path}"
        raise FileNotFoundError(msg)

    with open(file_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{label} file must contain a YAML mapping, got {type(data).__name__}"
        raise ValueError(msg)

    return data


def load_config(path: str | Path | None = None, **overrides: Any) -> HarnessConfig:
    """Build a ``HarnessConfig`` from an optional YAML file plus overrides.

    Args:
        path: YAML file with config fields, or ``None`` for defaults.
        **overrides: Field values applied on top of the file's values.

    Returns:
        The validated configuration.
    """
    data = load_yaml(path, "config") if path is not None else {}
    data.update(overrides)
    return HarnessConfig(**data)


def configure_logging(config: HarnessConfig) -> None:
    """Configure Python logging for the harness.

    Sets up the ``"preload_harness"`` logger with a console handler and an
    optional file handler. Idempotent: repeated calls do not duplicate
    handlers.

    Args:
        config: Configuration providing ``log_level`` and optional
            ``log_file``.
    """
    harness_logger = logging.getLogger("preload_harness")
    harness_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    # FileHandler subclasses StreamHandler, so exclude it explicitly
    if not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in harness_logger.handlers
    ):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        harness_logger.addHandler(console)

    if config.log_file is not None:
        has_file = any(
            isinstance(h, logging.FileHandler)
            and getattr(h, "baseFilename", None) == str(Path(config.log_file).resolve())
            for h in harness_logger.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            harness_logger.addHandler(file_handler)
