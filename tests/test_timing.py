"""Tests for timing sessions and ratio comparisons."""

from __future__ import annotations

from hypothesis import given, strategies as st
from preload_harness.errors import TimingError
from preload_harness.timing import Timer
import pytest


@pytest.mark.unit
class TestTimerSession:
    """Timer.session brackets a series that is cleared afterwards."""

    def test_inactive_by_default(self) -> None:
        """A fresh timer has no session."""
        assert Timer().active is False

    def test_active_inside_session(self) -> None:
        """The session is active inside the block and inactive after it."""
        timer = Timer()
        with timer.session():
            assert timer.active is True
        assert timer.active is False

    def test_session_yields_timer(self) -> None:
        """The context manager yields the timer itself."""
        timer = Timer()
        with timer.session() as yielded:
            assert yielded is timer

    def test_session_starts_empty(self) -> None:
        """Every session starts with an empty series."""
        timer = Timer()
        with timer.session():
            timer.record(1.0)
        with timer.session():
            assert timer.samples == []

    def test_cleared_after_exception(self) -> None:
        """The series is cleared even when the block raises."""
        timer = Timer()
        with pytest.raises(RuntimeError), timer.session():
            timer.record(1.0)
            raise RuntimeError("boom")
        assert timer.active is False
        with pytest.raises(TimingError):
            _ = timer.first

    def test_record_outside_session_is_ignored(self) -> None:
        """Samples recorded without a session are dropped."""
        timer = Timer()
        timer.record(5.0)
        with timer.session():
            assert timer.samples == []


@pytest.mark.unit
class TestTimerAccessors:
    """first, last and ratio expose before/after comparisons."""

    def test_ratio_of_first_and_last(self) -> None:
        """First 10.0 and last 2.0 give a ratio of 0.2."""
        timer = Timer()
        with timer.session():
            timer.record(10.0)
            timer.record(5.0)
            timer.record(2.0)
            assert timer.first == 10.0
            assert timer.last == 2.0
            assert timer.ratio == pytest.approx(0.2)

    def test_samples_in_order(self) -> None:
        """Samples are kept in recording order."""
        timer = Timer()
        with timer.session():
            for value in (3.0, 1.0, 2.0):
                timer.record(value)
            assert timer.samples == [3.0, 1.0, 2.0]

    def test_samples_is_a_copy(self) -> None:
        """Mutating the returned list does not change the series."""
        timer = Timer()
        with timer.session():
            timer.record(1.0)
            timer.samples.append(99.0)
            assert timer.samples == [1.0]

    @pytest.mark.parametrize("accessor", ["first", "last", "ratio", "samples"])
    def test_unavailable_after_session(self, accessor: str) -> None:
        """Accessors raise once the session has ended."""
        timer = Timer()
        with timer.session():
            timer.record(1.0)
            timer.record(2.0)
        with pytest.raises(TimingError):
            getattr(timer, accessor)

    @pytest.mark.parametrize("accessor", ["first", "last", "ratio"])
    def test_unavailable_without_samples(self, accessor: str) -> None:
        """Accessors raise in a session with no samples yet."""
        timer = Timer()
        with timer.session(), pytest.raises(TimingError):
            getattr(timer, accessor)

    @given(
        first=st.floats(min_value=0.001, max_value=1e6),
        last=st.floats(min_value=0.0, max_value=1e6),
    )
    def test_ratio_is_last_over_first(self, first: float, last: float) -> None:
        """ratio always equals last / first."""
        timer = Timer()
        with timer.session():
            timer.record(first)
            timer.record(last)
            assert timer.ratio == pytest.approx(last / first)
