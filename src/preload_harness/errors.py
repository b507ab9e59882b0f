"""Exception hierarchy for the preload harness.

Every failure raised by the harness derives from ``HarnessError`` and
carries the diagnostic dump captured at the time of failure, so a failing
command can be understood without re-running it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from preload_harness.models import Artifacts


class HarnessError(Exception):
    """Harness failure with captured diagnostic output.

    Attributes:
        output: Dump of the streams captured when the failure occurred,
            or an empty string when nothing was captured.
    """

    def __init__(self, message: str, *, output: str = "") -> None:
        """Initialize with a message and the captured diagnostic dump.

        Args:
            message: Human-readable error description.
            output: Diagnostic dump (command header plus non-empty streams).
        """
        super().__init__(message)
        self.output = output


class CommandLaunchError(HarnessError):
    """The command could not be spawned (missing executable, bad cwd, ...)."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"could not launch {command!r}: {reason}")
        self.command = command


class CommandTimeoutError(HarnessError, TimeoutError):
    """The command did not exit before its deadline.

    The child is not necessarily dead: unless the runner is configured to
    terminate on timeout it keeps running detached.

    Attributes:
        command: The literal command string.
        pid: Process id of the abandoned child.
        timeout: The deadline in seconds that was exceeded.
    """

    def __init__(
        self,
        command: str,
        *,
        pid: int,
        timeout: float,
        output: str,
        reason: str = "did not exit",
    ) -> None:
        super().__init__(
            f"command {command!r} {reason} within {timeout}s\n\nOutput:\n\n{output}",
            output=output,
        )
        self.command = command
        self.pid = pid
        self.timeout = timeout


class DrainTimeoutError(HarnessError, TimeoutError):
    """A stream kept producing data past the drain deadline.

    Attributes:
        text: Everything drained before the deadline, decoded.
        max_wait: The drain budget in seconds.
    """

    def __init__(self, text: str, max_wait: float) -> None:
        super().__init__(f"stream still producing data after {max_wait}s")
        self.text = text
        self.max_wait = max_wait


class StreamTimeoutError(HarnessError, TimeoutError):
    """One or more captured streams did not go idle within the drain budget.

    Attributes:
        streams: Stream name to the text drained so far, for every stream.
        names: Names of the streams that overran.
        max_wait: The drain budget in seconds.
    """

    def __init__(self, streams: dict[str, str], names: list[str], max_wait: float) -> None:
        super().__init__(f"streams {names} still producing data after {max_wait}s")
        self.streams = streams
        self.names = names
        self.max_wait = max_wait


class CommandFailedError(HarnessError):
    """A strict run finished with a non-zero exit status.

    Attributes:
        artifacts: The full result of the failed run.
    """

    def __init__(self, artifacts: Artifacts, output: str) -> None:
        super().__init__(f"command failed\n\n{output}", output=output)
        self.artifacts = artifacts


class NoPidsError(HarnessError):
    """Reload waiting was requested without a captured pid snapshot."""

    def __init__(self) -> None:
        super().__init__("no pid")


class ReloadTimeoutError(HarnessError, TimeoutError):
    """Some watched processes were still alive at the deadline.

    Attributes:
        pids: The pids still alive when the wait gave up.
        timeout: The deadline in seconds that was exceeded.
    """

    def __init__(self, pids: list[int], timeout: float) -> None:
        super().__init__(f"processes {pids} still alive after {timeout}s")
        self.pids = pids
        self.timeout = timeout


class TimingError(HarnessError):
    """A timing accessor was used outside a session or before any sample."""
