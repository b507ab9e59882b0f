"""Discovery of the supervisor (preloading server) process.

The runner accepts any zero-argument callable returning the supervisor's
pid or ``None``. An absent supervisor is a normal state, e.g. before the
first command has booted the server, so discovery never raises.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
from pathlib import Path

from preload_harness.reload import process_alive

logger = logging.getLogger(__name__)

SupervisorLookup = Callable[[], int | None]


def no_supervisor() -> int | None:
    """Lookup used when the harness has no supervisor to track."""
    return None


class PidFileSupervisor:
    """Reads the supervisor pid from a pid file on every call.

    The file is re-read each time because the server may not have started
    yet or may have been restarted since the previous command.

    Attributes:
        path: Location of the pid file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def __call__(self) -> int | None:
        """Return the live supervisor pid, or ``None``.

        Returns ``None`` when the pid file is missing, unreadable, does not
        hold an integer, or names a process that is no longer running.
        """
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except OSError:
            return None

        try:
            pid = int(content)
        except ValueError:
            logger.debug("Ignoring malformed pid file %s: %r", self.path, content)
            return None

        if pid < 1 or not process_alive(pid):
            return None
        return pid
