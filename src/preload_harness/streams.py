"""Non-blocking stream draining and diagnostic dumps.

Streams are drained once per command boundary rather than continuously:
``drain`` returns as soon as its source goes idle, even when the writer is
still alive. Data written later stays in the stream until the next drain.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
import os
import select
import time
from typing import IO, Any

from preload_harness.errors import DrainTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_CHUNK_SIZE = 10240


def _fileno(stream: IO[Any] | int) -> int:
    return stream if isinstance(stream, int) else stream.fileno()


def drain(
    stream: IO[Any] | int,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_wait: float | None = None,
) -> str:
    """Read everything currently pending on *stream* without blocking forever.

    Each iteration waits up to *poll_interval* for the stream to become
    readable, then reads whatever is immediately available (up to
    *chunk_size* bytes). Draining stops when a poll times out or the
    stream reports end of data.

    A writer that never goes idle would keep the loop reading forever, so
    *max_wait* bounds the whole drain: once it has elapsed the text read so
    far is attached to a ``DrainTimeoutError``.

    Reads go through the raw file descriptor, so a file object's own
    buffer is bypassed; the descriptor's position still advances.

    Args:
        stream: A readable file object or raw file descriptor (pipe read
            end, regular file, ...).
        poll_interval: Seconds to wait for readability on each poll.
        chunk_size: Maximum number of bytes per read.
        max_wait: Overall budget in seconds, or ``None`` for no limit.

    Returns:
        The drained bytes decoded as UTF-8, invalid sequences replaced.

    Raises:
        DrainTimeoutError: The stream was still producing data after
            *max_wait* seconds.
    """
    fd = _fileno(stream)
    chunks: list[bytes] = []
    deadline = None if max_wait is None else time.monotonic() + max_wait

    while True:
        if deadline is None:
            wait = poll_interval
        else:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                text = _decode(chunks)
                logger.warning("Stream still producing data after %ss, giving up", max_wait)
                raise DrainTimeoutError(text, max_wait)
            wait = min(poll_interval, remaining)
        ready, _, _ = select.select([fd], [], [], wait)
        if not ready:
            break
        chunk = os.read(fd, chunk_size)
        if not chunk:
            # End of data: closed pipe writer or end of a regular file
            break
        chunks.append(chunk)

    return _decode(chunks)


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


def _chomp(text: str) -> str:
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith(("\n", "\r")):
        return text[:-1]
    return text


def dump_streams(command: str, streams: Mapping[str, str]) -> str:
    """Format captured streams as a human-readable diagnostic dump.

    The dump starts with a ``$ <command>`` header, followed by a
    ``--- <name> ---`` section for every stream whose text is not empty
    once its final line ending is removed, and ends with a blank line.

    Args:
        command: The literal command string.
        streams: Stream name to captured text, in output order.

    Returns:
        The formatted dump.
    """
    lines = [f"$ {command}\n"]
    for name, text in streams.items():
        body = _chomp(text)
        if body:
            lines.append(f"--- {name} ---\n")
            lines.append(f"{body}\n")
    lines.append("\n")
    return "".join(lines)
