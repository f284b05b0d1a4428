"""
Tests for intune_lib/deadline.py.
"""
import pytest

from conftest import FakeClock

from intune_lib.deadline import RunDeadline, make_deadline
from intune_lib.errors import DeadlineExceeded


class TestRunDeadline:
    """Tests for RunDeadline."""

    def test_remaining_counts_down(self):
        clock = FakeClock(100)
        deadline = RunDeadline(30, clock=clock)

        assert deadline.remaining() == 30
        clock.advance(12)
        assert deadline.remaining() == 18
        assert not deadline.expired()

    def test_expires(self):
        clock = FakeClock()
        deadline = RunDeadline(5, clock=clock)
        clock.advance(5)

        assert deadline.expired()
        assert deadline.remaining() == 0

    def test_check_raises_with_context(self):
        clock = FakeClock()
        deadline = RunDeadline(1, clock=clock)
        deadline.check("starting batch 1/3")
        clock.advance(2)

        with pytest.raises(DeadlineExceeded, match="starting batch 2/3"):
            deadline.check("starting batch 2/3")

    @pytest.mark.parametrize("seconds", [0, -10])
    def test_non_positive_rejected(self, seconds):
        with pytest.raises(ValueError):
            RunDeadline(seconds)


class TestMakeDeadline:
    """Tests for make_deadline."""

    @pytest.mark.parametrize("seconds", [None, 0, 0.0])
    def test_disabled(self, seconds):
        assert make_deadline(seconds) is None

    def test_enabled(self):
        deadline = make_deadline(600)
        assert deadline.seconds == 600.0
        assert 0 < deadline.remaining() <= 600
