"""Core data models for the preload harness.

Defines the frozen Pydantic models shared by the runner, the CLI and the
tests: ``HarnessConfig`` for every tunable of a harness instance and
``Artifacts`` for the captured result of a single command invocation.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field, field_validator

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def ci_default_timeout() -> float:
    """Return the default command timeout for the current environment.

    Continuous-integration machines are slower, so the timeout is longer
    when the ``CI`` environment variable is set.

    Returns:
        ``30.0`` on CI, ``10.0`` otherwise.
    """
    return 30.0 if os.environ.get("CI") else 10.0


def debug_from_env() -> bool:
    """Return whether ``HARNESS_DEBUG`` is set to a truthy value."""
    return os.environ.get("HARNESS_DEBUG", "").strip().lower() in _TRUTHY


class HarnessConfig(BaseModel):
    """Configuration of a harness instance.

    Relative paths are resolved against the target root of the runner that
    uses the configuration.

    Attributes:
        default_timeout: Seconds to wait for a command when no explicit
            timeout is given.
        stream_poll_interval: Seconds each stream poll waits for data.
        reload_poll_interval: Seconds between liveness polls.
        read_chunk_size: Maximum bytes read from a stream in one call.
        log_path: Side-channel log file the child appends to.
        log_env_var: Variable through which the child learns ``log_path``.
        user_home: Directory used as ``HOME`` for the child.
        package_home: Isolated package directory (``PYTHONUSERBASE``).
        server_executable: Server executable, used by ``stop()``.
        pid_file: Optional pid file of the supervisor process.
        cleared_env: Framework variables explicitly unset in the child.
        passthrough_env: Variables copied from the caller's environment.
        extra_env: Additional variables; ``None`` values unset the variable.
        terminate_on_timeout: Kill the child's process group on timeout
            instead of leaving it running.
        debug: Dump every invocation to the debug sink.
        log_level: Logging level string.
        log_file: Optional log file for the harness's own logging.
    """

    model_config = ConfigDict(frozen=True)

    default_timeout: float = Field(default_factory=ci_default_timeout)
    stream_poll_interval: float = 0.5
    reload_poll_interval: float = 0.1
    read_chunk_size: int = 10240

    log_path: str = "tmp/harness.log"
    log_env_var: str = "HARNESS_LOG"
    user_home: str = "user_home"
    package_home: str = "vendor/packages"
    server_executable: str = "bin/spring"
    pid_file: str | None = None

    cleared_env: tuple[str, ...] = ("RAILS_ENV", "RACK_ENV")
    passthrough_env: tuple[str, ...] = (
        "PATH",
        "LANG",
        "LC_ALL",
        "TERM",
        "TMPDIR",
        "USER",
        "CI",
    )
    extra_env: dict[str, str | None] = Field(default_factory=dict)

    terminate_on_timeout: bool = False
    debug: bool = Field(default_factory=debug_from_env)

    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator(
        "default_timeout",
        "stream_poll_interval",
        "reload_poll_interval",
        "read_chunk_size",
    )
    @classmethod
    def _must_be_positive(cls, v: float) -> float:
        """Validate that timeouts, intervals and chunk sizes are > 0."""
        if v <= 0:
            msg = "Value must be > 0"
            raise ValueError(msg)
        return v

    @field_validator("log_path", "user_home", "package_home", "server_executable")
    @classmethod
    def _must_be_nonempty(cls, v: str) -> str:
        """Validate that path fields are not blank."""
        if not v.strip():
            msg = "Path must not be empty"
            raise ValueError(msg)
        return v


class Artifacts(BaseModel):
    """Captured result of one command invocation.

    Attributes:
        stdout: Text the command wrote to standard output.
        stderr: Text the command wrote to standard error.
        log: Text appended to the side-channel log file during the run.
        status: Process return code (negative when killed by a signal).
        command: The literal command string.
    """

    model_config = ConfigDict(frozen=True)

    stdout: str
    stderr: str
    log: str
    status: int
    command: str

    @property
    def success(self) -> bool:
        """Whether the command exited with status zero."""
        return self.status == 0

    def streams(self) -> dict[str, str]:
        """Return the captured streams keyed by name, in dump order."""
        return {"stdout": self.stdout, "stderr": self.stderr, "log": self.log}
