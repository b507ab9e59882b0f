"""Process-table queries for the supervisor's children."""

from __future__ import annotations

import logging

import psutil

logger = logging.getLogger(__name__)


def children_of(pid: int) -> list[int]:
    """Return the pids of all processes whose parent is *pid*.

    The live process table is scanned on every call, so the result is a
    point-in-time snapshot in table order. Only direct children are
    returned. A pid with no children, or one that no longer exists,
    yields an empty list.

    Args:
        pid: The parent process id.

    Returns:
        Child pids in process-table order.
    """
    child_pids = [
        proc.info["pid"]
        for proc in psutil.process_iter(["pid", "ppid"])
        if proc.info["ppid"] == pid
    ]
    logger.debug("Found %s child processes for PID %s: %s", len(child_pids), pid, child_pids)
    return child_pids
