"""Waiting for a captured set of processes to exit.

After a command changes code the supervisor has loaded, the supervisor
replaces its worker processes in the background. Waiting until every
worker from the pre-change snapshot has exited guarantees the next
command talks to a reloaded worker.
"""

from __future__ import annotations

from collections.abc import Sequence
import logging
import os
import time

from preload_harness.errors import NoPidsError, ReloadTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_RELOAD_INTERVAL = 0.1


def process_alive(pid: int) -> bool:
    """Probe *pid* with signal 0.

    Only "no such process" counts as dead. Any other outcome, including a
    permission error for a process owned by someone else, means alive.

    Args:
        pid: Process id to probe.

    Returns:
        ``True`` unless the process does not exist.
    """
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def await_pids(
    pids: Sequence[int] | None,
    timeout: float,
    *,
    interval: float = DEFAULT_RELOAD_INTERVAL,
) -> None:
    """Block until every pid in *pids* has exited.

    Args:
        pids: Snapshot of process ids to watch.
        timeout: Maximum seconds to wait.
        interval: Seconds between liveness polls.

    Raises:
        NoPidsError: If *pids* is ``None`` or empty; the caller never
            captured a snapshot.
        ReloadTimeoutError: If some pids are still alive after *timeout*.
    """
    if not pids:
        raise NoPidsError

    deadline = time.monotonic() + timeout
    logger.debug("Waiting up to %ss for PIDs %s to exit", timeout, list(pids))

    while True:
        alive = [pid for pid in pids if process_alive(pid)]
        if not alive:
            logger.debug("All PIDs %s have exited", list(pids))
            return
        if time.monotonic() >= deadline:
            logger.warning("PIDs %s still alive after %ss", alive, timeout)
            raise ReloadTimeoutError(alive, timeout)
        time.sleep(interval)
