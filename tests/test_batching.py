"""
Tests for intune_lib/batching.py.

Covers:
- Batch sizing and inter-batch delays
- Per-item failure isolation
- Fatal errors from per-item actions
- Outcome accounting (succeeded / updated / skipped / categories)
- Deadline and progress tracker hooks
"""
from unittest.mock import Mock

import pytest

from conftest import FakeClock, SleepRecorder

from intune_lib.batching import (
    BatchProcessor,
    batch_count,
    chunk_list,
    default_item_ref,
    process_in_batches,
)
from intune_lib.deadline import RunDeadline
from intune_lib.errors import AuthenticationError, DeadlineExceeded
from intune_lib.models import ItemOutcome, ItemResult, RunStatistics


def noop(item, stats):
    return None


# =============================================================================
# Helpers
# =============================================================================

class TestChunkList:
    """Tests for chunk_list / batch_count."""

    def test_even_split(self):
        assert chunk_list([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]

    def test_remainder(self):
        assert chunk_list([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert chunk_list([], 10) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            chunk_list([1], 0)

    @pytest.mark.parametrize("total,size,expected", [
        (0, 50, 0),
        (1, 50, 1),
        (50, 50, 1),
        (51, 50, 2),
        (120, 50, 3),
    ])
    def test_batch_count(self, total, size, expected):
        assert batch_count(total, size) == expected


class TestDefaultItemRef:
    """Tests for default_item_ref."""

    def test_prefers_id(self):
        assert default_item_ref({'id': 'abc', 'deviceName': 'LAPTOP-1'}) == 'abc'

    def test_falls_back_to_name(self):
        assert default_item_ref({'deviceName': 'LAPTOP-1'}) == 'LAPTOP-1'

    def test_non_dict(self):
        assert default_item_ref(42) == '42'


# =============================================================================
# Batching and Delays
# =============================================================================

class TestBatching:
    """Tests for batch sizing and pauses."""

    def test_120_items_in_batches_of_50(self):
        """Test 120 items / 50 per batch produce 50/50/20 with two pauses."""
        sleeps = SleepRecorder()
        processor = BatchProcessor(batch_size=50, delay_between_batches=10, sleep=sleeps)

        stats = processor.process(range(120), noop)

        assert [b.size for b in stats.batches] == [50, 50, 20]
        assert sleeps.calls == [10, 10]
        assert stats.processed == 120
        assert stats.succeeded == 120

    @pytest.mark.parametrize("total,size", [(1, 50), (50, 50), (51, 50), (7, 3), (100, 1)])
    def test_pause_count(self, total, size):
        """Test there is exactly one pause between consecutive batches."""
        sleeps = SleepRecorder()
        stats = BatchProcessor(size, 2.5, sleep=sleeps).process(range(total), noop)

        expected_batches = batch_count(total, size)
        assert len(stats.batches) == expected_batches
        assert sleeps.calls == [2.5] * (expected_batches - 1)

    def test_empty_working_set(self):
        """Test no batches and no pauses for zero items."""
        sleeps = SleepRecorder()
        stats = BatchProcessor(sleep=sleeps).process([], noop)
        assert stats.batches == []
        assert sleeps.calls == []
        assert stats.processed == 0

    def test_zero_delay_never_sleeps(self):
        """Test a zero delay skips the pause entirely."""
        sleeps = SleepRecorder()
        BatchProcessor(2, 0, sleep=sleeps).process(range(6), noop)
        assert sleeps.calls == []

    def test_input_order_preserved(self):
        """Test items are handled sequentially in input order."""
        seen = []
        BatchProcessor(3, 0).process(range(10), lambda item, stats: seen.append(item))
        assert seen == list(range(10))

    @pytest.mark.parametrize("kwargs", [
        {'batch_size': 0},
        {'batch_size': -5},
        {'delay_between_batches': -1},
    ])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            BatchProcessor(**kwargs)

    def test_sleep_failure_propagates(self):
        """Test an interrupted pause aborts the run."""
        def interrupted(seconds):
            raise KeyboardInterrupt()

        with pytest.raises(KeyboardInterrupt):
            BatchProcessor(2, 1, sleep=interrupted).process(range(4), noop)

    def test_process_in_batches(self):
        """Test the functional form."""
        sleeps = SleepRecorder()
        stats = process_in_batches(range(5), 2, 3, noop, sleep=sleeps)
        assert [b.size for b in stats.batches] == [2, 2, 1]
        assert sleeps.calls == [3, 3]


# =============================================================================
# Failure Isolation
# =============================================================================

class TestFailureIsolation:
    """Tests for per-item error handling."""

    def test_one_failure_does_not_stop_batch(self):
        """Test a failing item is counted and its neighbours still run."""
        def action(item, stats):
            if item == 3:
                raise RuntimeError("device is retired")

        stats = BatchProcessor(5, 0).process(range(5), action)

        assert stats.processed == 5
        assert stats.errors == 1
        assert stats.succeeded == 4
        assert stats.error_samples == [
            {'item': '3', 'error_type': 'RuntimeError', 'message': 'device is retired'}
        ]
        assert stats.batches[0].errors == 1

    def test_failure_in_one_batch_continues_to_next(self):
        def action(item, stats):
            if item < 2:
                raise ValueError("bad")

        stats = BatchProcessor(2, 0).process(range(6), action)
        assert stats.errors == 2
        assert stats.succeeded == 4
        assert [b.errors for b in stats.batches] == [2, 0, 0]

    def test_authentication_error_is_fatal(self):
        """Test an AuthenticationError from an action aborts the run."""
        calls = []

        def action(item, stats):
            calls.append(item)
            if item == 1:
                raise AuthenticationError("token rejected")

        with pytest.raises(AuthenticationError):
            BatchProcessor(5, 0).process(range(5), action)
        assert calls == [0, 1]

    def test_deadline_exceeded_is_fatal(self):
        def action(item, stats):
            raise DeadlineExceeded("out of time")

        with pytest.raises(DeadlineExceeded):
            BatchProcessor(5, 0).process(range(3), action)

    def test_unsupported_outcome_counts_as_error(self):
        """Test an action returning an unknown value is an item failure."""
        stats = BatchProcessor(5, 0).process(range(2), lambda item, stats: "done")
        assert stats.errors == 2
        assert stats.error_samples[0]['error_type'] == 'TypeError'

    @pytest.mark.parametrize("bad_category", ['errors', 'duration_seconds', 'skipped_recently_synced'])
    def test_colliding_category_counts_as_item_error(self, bad_category):
        """Test a result category clashing with a record field fails only that item."""
        seen = []

        def action(item, stats):
            seen.append(item)
            if item == 1:
                return ItemResult.updated(category=bad_category)
            return ItemResult.updated(category='os_Windows')

        stats = BatchProcessor(5, 0).process(range(5), action)

        assert seen == [0, 1, 2, 3, 4]
        assert stats.processed == 5
        assert stats.errors == 1
        assert stats.updated == 4
        assert stats.categories == {'os_Windows': 4}
        assert stats.error_samples[0]['error_type'] == 'ValueError'
        assert stats.batches[0].errors == 1

    def test_custom_item_ref(self):
        def action(item, stats):
            raise RuntimeError("boom")

        processor = BatchProcessor(5, 0, item_ref=lambda item: f"device-{item['n']}")
        stats = processor.process([{'n': 7}], action)
        assert stats.error_samples[0]['item'] == 'device-7'


# =============================================================================
# Outcomes
# =============================================================================

class TestOutcomes:
    """Tests for outcome accounting."""

    def test_mixed_outcomes(self):
        """Test each outcome lands in the right counters."""
        outcomes = {
            0: None,
            1: ItemOutcome.SUCCEEDED,
            2: ItemOutcome.UPDATED,
            3: ItemResult.updated(category='os_Windows'),
            4: ItemResult.skipped('recently_synced', category='os_iOS'),
            5: ItemOutcome.SKIPPED,
        }
        stats = BatchProcessor(10, 0).process(range(6), lambda item, stats: outcomes[item])

        assert stats.processed == 6
        assert stats.succeeded == 4
        assert stats.updated == 2
        assert stats.skipped == 2
        assert stats.errors == 0
        assert stats.skipped_by_reason == {'recently_synced': 1, 'unspecified': 1}
        assert stats.categories == {'os_Windows': 1, 'os_iOS': 1}

        batch = stats.batches[0]
        assert (batch.succeeded, batch.updated, batch.skipped) == (4, 2, 2)

    def test_processed_equals_sum_of_outcomes(self):
        """Test processed == succeeded + skipped + errors."""
        def action(item, stats):
            if item % 5 == 0:
                raise RuntimeError("x")
            if item % 3 == 0:
                return ItemResult.skipped('filtered')
            return ItemOutcome.UPDATED if item % 2 else None

        stats = BatchProcessor(7, 0).process(range(40), action)
        assert stats.processed == 40
        assert stats.processed == stats.succeeded + stats.skipped + stats.errors

    def test_action_can_record_categories_directly(self):
        def action(item, stats):
            stats.increment_category('custom_counter')

        stats = BatchProcessor(5, 0).process(range(3), action)
        assert stats.categories['custom_counter'] == 3

    def test_accumulates_into_existing_stats(self):
        existing = RunStatistics()
        existing.increment('processed', 10)
        stats = BatchProcessor(5, 0).process(range(2), noop, stats=existing)
        assert stats is existing
        assert stats.processed == 12


# =============================================================================
# Deadline and Tracker
# =============================================================================

class TestHooks:
    """Tests for deadline checks and progress tracker calls."""

    def test_deadline_checked_between_batches(self):
        """Test an expired deadline stops before the next batch starts."""
        clock = FakeClock()
        sleeps = SleepRecorder(clock)
        deadline = RunDeadline(15, clock=clock)
        seen = []

        with pytest.raises(DeadlineExceeded):
            BatchProcessor(2, 10, sleep=sleeps, deadline=deadline).process(
                range(10), lambda item, stats: seen.append(item))

        # batch 1 at t=0, batch 2 at t=10, batch 3 refused at t=20
        assert seen == [0, 1, 2, 3]

    def test_tracker_calls(self):
        tracker = Mock()
        BatchProcessor(2, 0, tracker=tracker).process(range(5), noop)

        assert tracker.start_batch.call_count == 3
        tracker.start_batch.assert_any_call(3, 3, 1)
        assert tracker.advance.call_count == 5
        assert tracker.complete_batch.call_count == 3
