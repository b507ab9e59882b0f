"""Shared fixtures for the preload_harness test suite."""

from __future__ import annotations

from collections.abc import Iterator
import contextlib
import os
from pathlib import Path
import signal
import subprocess
import time
from typing import Any

from preload_harness.models import Artifacts, HarnessConfig
from preload_harness.process_tree import children_of
from preload_harness.runner import CommandRunner
import pytest

# ---------------------------------------------------------------------------
# Factory functions (plain functions, importable from conftest)
# ---------------------------------------------------------------------------


def make_config(**overrides: Any) -> HarnessConfig:
    """Build a HarnessConfig with short polling intervals for fast tests.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed HarnessConfig instance.
    """
    defaults: dict[str, Any] = {
        "default_timeout": 10.0,
        "stream_poll_interval": 0.05,
        "reload_poll_interval": 0.01,
        "debug": False,
    }
    defaults.update(overrides)
    return HarnessConfig(**defaults)


def make_artifacts(**overrides: Any) -> Artifacts:
    """Build a valid Artifacts record with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed Artifacts instance.
    """
    defaults: dict[str, Any] = {
        "stdout": "hello\n",
        "stderr": "",
        "log": "",
        "status": 0,
        "command": "echo hello",
    }
    defaults.update(overrides)
    return Artifacts(**defaults)


def spawn_parent(count: int, seconds: float = 30) -> subprocess.Popen[bytes]:
    """Start a shell with *count* sleeping children and wait until they exist.

    The shell runs in its own session, so killing its process group kills
    the children too.
    """
    script = " & ".join([f"sleep {seconds}"] * count) + " & wait"
    proc = subprocess.Popen(["sh", "-c", script], start_new_session=True)
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline and len(children_of(proc.pid)) < count:
        time.sleep(0.02)
    return proc


def kill_group(pid: int) -> None:
    """SIGKILL the process group led by *pid*, ignoring vanished groups."""
    with contextlib.suppress(OSError):
        os.killpg(pid, signal.SIGKILL)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def app_root(tmp_path: Path) -> Path:
    """Provide an empty target root directory."""
    root = tmp_path / "app"
    root.mkdir()
    return root


@pytest.fixture()
def runner(app_root: Path) -> Iterator[CommandRunner]:
    """Provide a CommandRunner on ``app_root`` with fast polling, closed afterwards."""
    with CommandRunner(app_root, make_config()) as command_runner:
        yield command_runner


@pytest.fixture()
def parent_with_two_children() -> Iterator[subprocess.Popen[bytes]]:
    """Provide a live shell process that has two sleeping children."""
    proc = spawn_parent(2)
    try:
        yield proc
    finally:
        kill_group(proc.pid)
        proc.wait()
