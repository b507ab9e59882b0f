"""Elapsed-time samples across a bracketed sequence of runs.

Used to compare a cold run against a server-backed run, e.g. asserting the
second invocation is much faster than the first.
"""

from __future__ import annotations

from collections.abc import Iterator
import contextlib

from preload_harness.errors import TimingError


class Timer:
    """Collects one elapsed-time sample per run while a session is active."""

    def __init__(self) -> None:
        self._samples: list[float] | None = None

    @property
    def active(self) -> bool:
        """Whether a timing session is open."""
        return self._samples is not None

    @contextlib.contextmanager
    def session(self) -> Iterator[Timer]:
        """Open a timing session, clearing the series when it ends.

        The series is cleared even when the block raises.

        Yields:
            This timer.
        """
        self._samples = []
        try:
            yield self
        finally:
            self._samples = None

    def record(self, elapsed: float) -> None:
        """Append *elapsed* to the series; ignored outside a session."""
        if self._samples is not None:
            self._samples.append(elapsed)

    @property
    def samples(self) -> list[float]:
        """A copy of the samples of the current session."""
        if self._samples is None:
            msg = "no timing session is active"
            raise TimingError(msg)
        return list(self._samples)

    @property
    def first(self) -> float:
        return self._require_samples()[0]

    @property
    def last(self) -> float:
        return self._require_samples()[-1]

    @property
    def ratio(self) -> float:
        """``last / first``; callers need at least two samples for it to mean anything."""
        return self.last / self.first

    def _require_samples(self) -> list[float]:
        if self._samples is None:
            msg = "no timing session is active"
            raise TimingError(msg)
        if not self._samples:
            msg = "timing session has no samples yet"
            raise TimingError(msg)
        return self._samples
