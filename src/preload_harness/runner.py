"""Command runner: spawn, bounded wait, capture, supervisor snapshot.

``CommandRunner`` drives one target directory at a time. Every command is
spawned with a minimal explicit environment, its stdout and stderr wired
to a pipe pair owned by the runner, and its side-channel log file shared
through an environment variable. After the command exits, the children of
the supervisor process are snapshotted so a later ``await_reload`` can
block until they have been replaced.

A runner instance is single-invocation-at-a-time: the pipes and the log
handle are reused by every command and are not protected by locks.

Known limitation: unless ``terminate_on_timeout`` is enabled, a command
that times out is abandoned, not killed, and keeps running detached.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
import contextlib
import logging
import os
from pathlib import Path
import shlex
import signal
import subprocess
import sys
import time
from typing import IO, Any

from preload_harness.errors import (
    CommandFailedError,
    CommandLaunchError,
    CommandTimeoutError,
    DrainTimeoutError,
    StreamTimeoutError,
)
from preload_harness.models import Artifacts, HarnessConfig
from preload_harness.process_tree import children_of
from preload_harness.reload import await_pids
from preload_harness.streams import drain, dump_streams
from preload_harness.supervisor import PidFileSupervisor, no_supervisor
from preload_harness.timing import Timer

logger = logging.getLogger(__name__)

# Sentinel: "use the configured default timeout" (``None`` disables it)
DEFAULT = object()

_SIGKILL_GRACE_SECONDS = 5

# Commands containing any of these, or starting with a shell keyword or
# special builtin, go through /bin/sh
_SHELL_METACHARACTERS = frozenset("*?{}[]<>()~&|\\$;'`\"\n#=%")
_SHELL_WORDS = frozenset(
    {
        "!", ".", ":", "break", "case", "continue", "do", "done", "elif",
        "else", "esac", "eval", "exec", "exit", "export", "fi", "for", "if",
        "in", "readonly", "return", "set", "shift", "then", "times", "trap",
        "unset", "until", "while",
    }
)

# Dependency-manager settings the child must never see
_NEUTRALIZED_ENV_PREFIXES = (
    "VIRTUAL_ENV",
    "PYTHONPATH",
    "PYTHONHOME",
    "PIP_",
    "PIPENV_",
    "POETRY_",
    "UV_",
    "CONDA_",
)


def needs_shell(command: str) -> bool:
    """Whether *command* uses shell syntax and must be run via ``/bin/sh``."""
    if any(char in _SHELL_METACHARACTERS for char in command):
        return True
    words = command.split()
    return bool(words) and words[0] in _SHELL_WORDS


def _is_dependency_manager_var(name: str) -> bool:
    return name.startswith(_NEUTRALIZED_ENV_PREFIXES)


def _without_virtualenv(path: str) -> str:
    """Drop the active virtualenv's directories from a ``PATH`` value."""
    if sys.prefix == sys.base_prefix:
        return path
    venv = Path(sys.prefix).resolve()
    kept = [
        entry
        for entry in path.split(os.pathsep)
        if entry and not Path(entry).resolve().is_relative_to(venv)
    ]
    return os.pathsep.join(kept)


def _kill_process_group(proc: subprocess.Popen[bytes]) -> None:
    """Send SIGTERM to the process group, escalating to SIGKILL after a grace period.

    Args:
        proc: The subprocess to kill.
    """
    try:
        pgid = os.getpgid(proc.pid)
    except (OSError, ProcessLookupError):
        return

    try:
        os.killpg(pgid, signal.SIGTERM)
    except (OSError, ProcessLookupError):
        return

    try:
        proc.wait(timeout=_SIGKILL_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGKILL)
        with contextlib.suppress(ChildProcessError):
            proc.wait()


class CommandRunner:
    """Runs commands against a target root and captures their artifacts.

    Example:
        with CommandRunner("/tmp/app", supervisor=PidFileSupervisor(pidfile)) as app:
            app.run_strict("bin/rake test")
            app.path("app/models/post.rb").write_text(new_source)
            app.await_reload()

    Attributes:
        root: Absolute target directory; commands run with it as working
            directory.
        config: Harness configuration.
        supervisor: Zero-argument callable returning the supervisor pid or
            ``None``.
        debug_sink: Stream the debug dumps go to (``sys.stdout`` when
            ``None``).
        timer: Timing series for ``with_timing`` sessions.
        server_pid: Supervisor pid seen after the latest run, if any.
        application_pids: Children of the supervisor after the latest run
            that found a supervisor.
    """

    def __init__(
        self,
        root: str | Path,
        config: HarnessConfig | None = None,
        *,
        supervisor: Callable[[], int | None] | None = None,
        debug_sink: IO[str] | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.config = config if config is not None else HarnessConfig()
        if supervisor is None:
            if self.config.pid_file is not None:
                supervisor = PidFileSupervisor(self.path(self.config.pid_file))
            else:
                supervisor = no_supervisor
        self.supervisor = supervisor
        self.debug_sink = debug_sink
        self.timer = Timer()
        self.server_pid: int | None = None
        self.application_pids: list[int] | None = None

        self._stdout_pipe: tuple[int, int] | None = None
        self._stderr_pipe: tuple[int, int] | None = None
        self._log_file: IO[bytes] | None = None
        self._env: dict[str, str | None] | None = None

    def __enter__(self) -> CommandRunner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -----------------------------------------------------------------------
    # Paths
    # -----------------------------------------------------------------------

    def path(self, addition: str | Path) -> Path:
        """Resolve *addition* against the target root."""
        return self.root / addition

    @property
    def log_file_path(self) -> Path:
        return self.path(self.config.log_path)

    @property
    def user_home(self) -> Path:
        return self.path(self.config.user_home)

    @property
    def package_home(self) -> Path:
        return self.path(self.config.package_home)

    @property
    def server_executable(self) -> Path:
        return self.path(self.config.server_executable)

    # -----------------------------------------------------------------------
    # Owned resources, created lazily and reused by every command
    # -----------------------------------------------------------------------

    @property
    def stdout_pipe(self) -> tuple[int, int]:
        """``(read_fd, write_fd)`` of the pipe wired to every child's stdout."""
        if self._stdout_pipe is None:
            self._stdout_pipe = os.pipe()
        return self._stdout_pipe

    @property
    def stderr_pipe(self) -> tuple[int, int]:
        """``(read_fd, write_fd)`` of the pipe wired to every child's stderr."""
        if self._stderr_pipe is None:
            self._stderr_pipe = os.pipe()
        return self._stderr_pipe

    @property
    def log_file(self) -> IO[bytes]:
        """The side-channel log, truncated and opened read/write on first use."""
        if self._log_file is None:
            self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_file = open(self.log_file_path, "w+b")  # noqa: SIM115
        return self._log_file

    @property
    def env(self) -> dict[str, str | None]:
        """Variables set (or unset, when ``None``) in every child's environment."""
        if self._env is None:
            env: dict[str, str | None] = {
                "HOME": str(self.user_home),
                "PYTHONUSERBASE": str(self.package_home),
                self.config.log_env_var: str(self.log_file_path),
            }
            for name in self.config.cleared_env:
                env[name] = None
            env.update(self.config.extra_env)
            self._env = env
        return self._env

    def close(self) -> None:
        """Close the pipes and the log file. The runner can be reused afterwards."""
        for pipe in (self._stdout_pipe, self._stderr_pipe):
            if pipe is not None:
                for fd in pipe:
                    with contextlib.suppress(OSError):
                        os.close(fd)
        self._stdout_pipe = None
        self._stderr_pipe = None
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None

    # -----------------------------------------------------------------------
    # Running commands
    # -----------------------------------------------------------------------

    def child_environment(self) -> dict[str, str]:
        """Build the complete environment handed to a child process.

        Only ``passthrough_env`` entries are inherited from the caller, minus
        any dependency-manager settings; ``env`` is applied on top.
        """
        child: dict[str, str] = {}
        for name in self.config.passthrough_env:
            if name in os.environ and not _is_dependency_manager_var(name):
                child[name] = os.environ[name]
        if "PATH" in child:
            child["PATH"] = _without_virtualenv(child["PATH"])

        for name, value in self.env.items():
            if value is None:
                child.pop(name, None)
            else:
                child[name] = value
        return child

    def _spawn(self, command: str | list[str], label: str) -> subprocess.Popen[bytes]:
        if isinstance(command, str):
            shell = needs_shell(command)
            args: str | list[str] = command if shell else shlex.split(command)
        else:
            shell = False
            args = command
        # Opening the log before spawning guarantees its directory exists
        log_file = self.log_file
        logger.debug("Spawning %r in %s (log %s)", label, self.root, log_file.name)

        try:
            return subprocess.Popen(  # nosec B602
                args,
                shell=shell,
                env=self.child_environment(),
                stdin=subprocess.DEVNULL,
                stdout=self.stdout_pipe[1],
                stderr=self.stderr_pipe[1],
                cwd=self.root,
                start_new_session=True,
            )
        except OSError as exc:
            raise CommandLaunchError(label, str(exc)) from exc

    def run(
        self,
        command: str | Sequence[str],
        *,
        timeout: float | None | Any = DEFAULT,
    ) -> Artifacts:
        """Run *command* and capture its artifacts.

        Args:
            command: Command string, run via ``/bin/sh`` when it contains
                shell syntax and executed directly otherwise; or an argument
                list, always executed directly.
            timeout: Seconds to wait for exit. Defaults to
                ``config.default_timeout``; ``None`` waits forever.

        Returns:
            The captured streams, exit status and command.

        Raises:
            ValueError: If *command* is blank.
            CommandLaunchError: If the command could not be spawned.
            CommandTimeoutError: If the command did not exit in time, or its
                output did not go idle within the same budget. Its
                ``output`` holds whatever had been captured.
        """
        if isinstance(command, (str, os.PathLike)):
            command = os.fspath(command)
            label = command
            if not command.strip():
                msg = "command must not be empty"
                raise ValueError(msg)
        else:
            command = [os.fspath(word) for word in command]
            label = shlex.join(command)
            if not command:
                msg = "command must not be empty"
                raise ValueError(msg)
        if timeout is DEFAULT:
            timeout = self.config.default_timeout
        # Draining stays bounded even when the wait is not
        drain_budget = timeout if timeout is not None else self.config.default_timeout

        start = time.monotonic()
        proc = self._spawn(command, label)

        try:
            status = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Command %r (pid %s) timed out after %ss", label, proc.pid, timeout)
            if self.config.terminate_on_timeout:
                _kill_process_group(proc)
            try:
                streams = self.read_streams(max_wait=drain_budget)
            except StreamTimeoutError as exc:
                streams = exc.streams
            output = self.dump_streams(label, streams)
            raise CommandTimeoutError(
                label, pid=proc.pid, timeout=timeout, output=output
            ) from None

        logger.debug("Command %r (pid %s) exited with %s", label, proc.pid, status)
        self._snapshot_supervisor()

        try:
            streams = self.read_streams(max_wait=drain_budget)
        except StreamTimeoutError as exc:
            # A detached descendant still holds the pipes and keeps writing
            output = self.dump_streams(label, exc.streams)
            raise CommandTimeoutError(
                label,
                pid=proc.pid,
                timeout=drain_budget,
                output=output,
                reason=f"exited with {status} but its output did not go idle",
            ) from None
        if self.config.debug:
            sink = self.debug_sink if self.debug_sink is not None else sys.stdout
            sink.write(self.dump_streams(label, streams))
            sink.flush()

        self.timer.record(time.monotonic() - start)

        return Artifacts(**streams, status=status, command=label)

    def run_strict(
        self,
        command: str | Sequence[str],
        *,
        timeout: float | None | Any = DEFAULT,
    ) -> Artifacts:
        """Like ``run`` but raise ``CommandFailedError`` on a non-zero status."""
        artifacts = self.run(command, timeout=timeout)
        if not artifacts.success:
            raise CommandFailedError(artifacts, self.debug(artifacts))
        return artifacts

    def stop(self) -> Artifacts | None:
        """Ask the server to stop.

        Returns ``None`` without failing when the server executable does
        not exist yet.
        """
        try:
            return self.run([str(self.server_executable), "stop"])
        except CommandLaunchError as exc:
            if isinstance(exc.__cause__, FileNotFoundError):
                logger.debug("Server executable missing, nothing to stop: %s", exc)
                return None
            raise

    def _snapshot_supervisor(self) -> None:
        pid = self.supervisor()
        if pid is None:
            return
        self.server_pid = pid
        self.application_pids = children_of(pid)
        logger.debug("Supervisor %s has children %s", pid, self.application_pids)

    def await_reload(self, timeout: float | None = None) -> None:
        """Block until the supervisor children seen after the latest run have exited.

        Args:
            timeout: Seconds to wait; defaults to ``config.default_timeout``.

        Raises:
            NoPidsError: If no run has captured supervisor children.
            ReloadTimeoutError: If some of them are still alive at the deadline.
        """
        await_pids(
            self.application_pids,
            timeout if timeout is not None else self.config.default_timeout,
            interval=self.config.reload_poll_interval,
        )

    # -----------------------------------------------------------------------
    # Captured output
    # -----------------------------------------------------------------------

    def read_streams(self, max_wait: float | None = None) -> dict[str, str]:
        """Drain stdout, stderr and the log file, in that order.

        Args:
            max_wait: Budget in seconds for each stream, or ``None`` to
                drain until every stream goes idle.

        Raises:
            StreamTimeoutError: If a stream was still producing data after
                *max_wait*. It carries what was read from every stream.
        """
        options = {
            "poll_interval": self.config.stream_poll_interval,
            "chunk_size": self.config.read_chunk_size,
            "max_wait": max_wait,
        }
        sources: dict[str, IO[bytes] | int] = {
            "stdout": self.stdout_pipe[0],
            "stderr": self.stderr_pipe[0],
            "log": self.log_file,
        }
        streams: dict[str, str] = {}
        overran: list[str] = []
        for name, source in sources.items():
            try:
                streams[name] = drain(source, **options)
            except DrainTimeoutError as exc:
                streams[name] = exc.text
                overran.append(name)
        if overran:
            raise StreamTimeoutError(streams, overran, max_wait)
        return streams

    def dump_streams(self, command: str, streams: dict[str, str]) -> str:
        return dump_streams(command, streams)

    def debug(self, artifacts: Artifacts) -> str:
        """Dump *artifacts* the way a debug run or a failed strict run shows them."""
        return dump_streams(artifacts.command, artifacts.streams())

    # -----------------------------------------------------------------------
    # Timing
    # -----------------------------------------------------------------------

    @contextlib.contextmanager
    def with_timing(self) -> Iterator[Timer]:
        """Record the elapsed time of every run inside the block."""
        with self.timer.session() as timer:
            yield timer

    @property
    def first_time(self) -> float:
        return self.timer.first

    @property
    def last_time(self) -> float:
        return self.timer.last

    @property
    def timing_ratio(self) -> float:
        return self.timer.ratio
