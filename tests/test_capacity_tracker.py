"""Tests for the run-scoped capacity counters."""

import pytest

from ecahub.core.exceptions import CapacityInvariantViolation
from ecahub.staff.services.capacity_tracker import CapacityTracker
from ecahub.staff.services.selection_store import activity_snapshot

from factories import make_activity


def _tracker(*activities):
    return CapacityTracker([activity_snapshot(a) for a in activities])


class TestReserve:
    def test_reserve_until_full(self):
        tracker = _tracker(make_activity(1, max_capacity=2))

        assert tracker.reserve(1) is True
        assert tracker.reserve(1) is True
        assert tracker.reserve(1) is False
        assert tracker.current_enrollment(1) == 2
        assert tracker.remaining(1) == 0
        assert tracker.has_room(1) is False

    def test_unbounded_activity(self):
        tracker = _tracker(make_activity(1))
        for _ in range(100):
            assert tracker.reserve(1)
        assert tracker.remaining(1) is None
        assert tracker.has_room(1) is True

    def test_release_frees_a_seat(self):
        tracker = _tracker(make_activity(1, max_capacity=1))
        tracker.reserve(1)
        tracker.release(1)
        assert tracker.current_enrollment(1) == 0
        assert tracker.reserve(1) is True

    def test_unknown_activity(self):
        tracker = _tracker(make_activity(1))
        with pytest.raises(KeyError):
            tracker.reserve(99)


class TestInvariant:
    def test_release_below_zero_is_fatal(self):
        tracker = _tracker(make_activity(1, max_capacity=3))
        with pytest.raises(CapacityInvariantViolation):
            tracker.release(1)

    def test_verify_matches_confirmed(self):
        tracker = _tracker(make_activity(1, max_capacity=3), make_activity(2))
        tracker.reserve(1)
        tracker.reserve(2)
        tracker.reserve(2)
        tracker.verify([1, 2, 2])

    def test_verify_detects_drift(self):
        tracker = _tracker(make_activity(1, max_capacity=3))
        tracker.reserve(1)
        with pytest.raises(CapacityInvariantViolation) as exc_info:
            tracker.verify([1, 1])
        assert exc_info.value.status_code == 500
        assert exc_info.value.details["activity_id"] == 1

    def test_snapshot_is_a_copy(self):
        tracker = _tracker(make_activity(1))
        counts = tracker.snapshot()
        counts[1] = 42
        assert tracker.current_enrollment(1) == 0
