"""
Tests for the allocation engine main pass.

Covers both selection modes, pre-seeding of manual, compulsory and invited
allocations, and the run-level invariants: capacity, one allocation per
student and slot, determinism.
"""

from collections import Counter

from ecahub.staff.models.enums import (
    ActivityType,
    AllocationStatus,
    AllocationType,
    EligibleGender,
    InvitationStatus,
    SelectionMode,
    TimeSlot,
    UnallocatedReason,
)
from ecahub.staff.services.allocation_engine import (
    ROUND_FORCED,
    ROUND_PRIORITY,
    ROUND_REALLOCATION,
    AllocationEngine,
    WaitlistEntry,
)
from ecahub.staff.services.capacity_tracker import CapacityTracker

from factories import (
    make_activity,
    make_compulsory,
    make_invitation,
    make_manual,
    make_selection,
    make_snapshot,
    make_student,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(snapshot, mode=None):
    tracker = CapacityTracker(snapshot.activities.values())
    engine = AllocationEngine(snapshot, mode or snapshot.default_selection_mode, tracker)
    return engine.run()


def _placements(outcome):
    """{student_id: (activity_id, allocation_type)} для подтверждённых зачислений"""
    return {
        a.student_id: (a.activity_id, a.allocation_type) for a in outcome.confirmed()
    }


def _students(*ids):
    return [make_student(i) for i in ids]


# ---------------------------------------------------------------------------
# FIRST_COME_FIRST_SERVED
# ---------------------------------------------------------------------------


class TestFirstComeFirstServed:
    def test_two_seats_three_students(self):
        """A и B зачислены, C - первый в листе ожидания"""
        snapshot = make_snapshot(
            [make_activity(1, max_capacity=2)],
            _students(1, 2, 3),
            [make_selection(1, 1, 1), make_selection(2, 2, 1), make_selection(3, 3, 1)],
            mode=SelectionMode.FIRST_COME_FIRST_SERVED,
        )

        outcome = _run(snapshot)

        assert _placements(outcome) == {
            1: (1, AllocationType.FIRST_COME),
            2: (1, AllocationType.FIRST_COME),
        }
        assert outcome.waitlist == [WaitlistEntry(activity_id=1, student_id=3, position=1)]
        assert [(u.student_id, u.reason) for u in outcome.unallocated] == [
            (3, UnallocatedReason.ALL_FULL)
        ]
        assert all(a.allocation_round is None for a in outcome.allocations)

    def test_submission_time_decides_not_id(self):
        snapshot = make_snapshot(
            [make_activity(1, max_capacity=1)],
            _students(1, 2),
            [make_selection(1, 1, 1, minute=30), make_selection(2, 2, 1, minute=10)],
            mode=SelectionMode.FIRST_COME_FIRST_SERVED,
        )

        outcome = _run(snapshot)

        assert _placements(outcome) == {2: (1, AllocationType.FIRST_COME)}
        assert outcome.waitlist == [WaitlistEntry(1, 1, 1)]

    def test_waitlist_positions_follow_submission_order(self):
        snapshot = make_snapshot(
            [make_activity(1, max_capacity=1)],
            _students(1, 2, 3, 4),
            [
                make_selection(1, 1, 1, minute=1),
                make_selection(2, 4, 1, minute=2),
                make_selection(3, 2, 1, minute=3),
                make_selection(4, 3, 1, minute=4),
            ],
            mode=SelectionMode.FIRST_COME_FIRST_SERVED,
        )

        outcome = _run(snapshot)

        assert [(w.student_id, w.position) for w in outcome.waitlist] == [(4, 1), (2, 2), (3, 3)]

    def test_later_selection_in_same_slot_is_ignored(self):
        snapshot = make_snapshot(
            [make_activity(1, max_capacity=1), make_activity(2)],
            _students(1, 2),
            [
                make_selection(1, 1, 1),
                make_selection(2, 2, 1),
                make_selection(3, 2, 2),
            ],
            mode=SelectionMode.FIRST_COME_FIRST_SERVED,
        )

        outcome = _run(snapshot)

        assert _placements(outcome) == {1: (1, AllocationType.FIRST_COME)}
        assert outcome.waitlist == [WaitlistEntry(1, 2, 1)]
        assert outcome.unallocated[0].requested_activity_ids == (1, 2)

    def test_priority_and_rank_are_ignored(self):
        snapshot = make_snapshot(
            [make_activity(1, max_capacity=1)],
            _students(1, 2),
            [
                make_selection(1, 1, 1, rank=3),
                make_selection(2, 2, 1, rank=1, is_priority=True),
            ],
            mode=SelectionMode.FIRST_COME_FIRST_SERVED,
        )

        outcome = _run(snapshot)

        assert _placements(outcome) == {1: (1, AllocationType.FIRST_COME)}

    def test_different_slots_are_independent(self):
        snapshot = make_snapshot(
            [
                make_activity(1, day_of_week=0),
                make_activity(2, day_of_week=0, time_slot=TimeSlot.BEFORE_SCHOOL),
                make_activity(3, day_of_week=2),
            ],
            _students(1),
            [make_selection(1, 1, 1), make_selection(2, 1, 2), make_selection(3, 1, 3)],
            mode=SelectionMode.FIRST_COME_FIRST_SERVED,
        )

        outcome = _run(snapshot)

        assert sorted(a.activity_id for a in outcome.confirmed()) == [1, 2, 3]

    def test_ineligible_only_choice_is_reported(self):
        snapshot = make_snapshot(
            [make_activity(1), make_activity(2, eligible_gender=EligibleGender.BOYS_ONLY)],
            _students(1, 2),
            [make_selection(1, 1, 2), make_selection(2, 2, 1)],
            mode=SelectionMode.FIRST_COME_FIRST_SERVED,
        )

        outcome = _run(snapshot)

        assert _placements(outcome) == {2: (1, AllocationType.FIRST_COME)}
        [slot] = outcome.unallocated
        assert (slot.student_id, slot.reason) == (1, UnallocatedReason.NO_ELIGIBLE_ACTIVITIES)
        assert slot.requested_activity_ids == (2,)


# ---------------------------------------------------------------------------
# SMART_ALLOCATION
# ---------------------------------------------------------------------------


class TestSmartAllocation:
    def test_third_choice_when_first_two_are_full(self):
        snapshot = make_snapshot(
            [
                make_activity(1, max_capacity=1),
                make_activity(2, max_capacity=1),
                make_activity(3, max_capacity=5),
            ],
            _students(1, 2, 3),
            [
                make_selection(1, 1, 1, rank=1),
                make_selection(2, 2, 2, rank=1),
                make_selection(3, 3, 1, rank=1),
                make_selection(4, 3, 2, rank=2),
                make_selection(5, 3, 3, rank=3),
            ],
        )

        outcome = _run(snapshot)

        allocation = next(a for a in outcome.confirmed() if a.student_id == 3)
        assert allocation.activity_id == 3
        assert allocation.allocation_type == AllocationType.SMART_RANKED
        assert allocation.allocation_round == 4
        assert allocation.choice_rank == 3
        assert outcome.third_choice_count == 1
        assert outcome.forced_count == 0
        # Промах первого выбора - лист ожидания первого занятия
        assert outcome.waitlist == [WaitlistEntry(1, 3, 1)]

    def test_all_choices_full_leaves_student_unallocated(self):
        snapshot = make_snapshot(
            [
                make_activity(1, max_capacity=1),
                make_activity(2, max_capacity=1),
                make_activity(3, max_capacity=1),
            ],
            _students(1, 2, 3, 4),
            [
                make_selection(1, 1, 1),
                make_selection(2, 2, 2),
                make_selection(3, 4, 3),
                make_selection(4, 3, 1, rank=1),
                make_selection(5, 3, 2, rank=2),
                make_selection(6, 3, 3, rank=3),
            ],
        )

        outcome = _run(snapshot)

        assert 3 not in _placements(outcome)
        assert outcome.forced_count == 0
        unallocated = outcome.unallocated[0]
        assert unallocated.student_id == 3
        assert unallocated.reason == UnallocatedReason.ALL_FULL
        assert unallocated.requested_activity_ids == (1, 2, 3)

    def test_priority_single_seat_goes_to_earlier_submission(self):
        snapshot = make_snapshot(
            [make_activity(1, max_capacity=1), make_activity(2)],
            _students(1, 2),
            [
                make_selection(1, 2, 1, rank=1, is_priority=True, minute=20),
                make_selection(2, 1, 1, rank=1, is_priority=True, minute=10),
                make_selection(3, 2, 2, rank=2, minute=21),
                make_selection(4, 1, 2, rank=2, minute=11),
            ],
        )

        outcome = _run(snapshot)

        placements = _placements(outcome)
        assert placements[1] == (1, AllocationType.SMART_PRIORITY)
        assert placements[2] == (2, AllocationType.SMART_RANKED)
        priority = next(a for a in outcome.confirmed() if a.student_id == 1)
        assert priority.allocation_round == ROUND_PRIORITY
        assert outcome.waitlist == [WaitlistEntry(1, 2, 1)]
        assert outcome.first_choice_count == 1
        assert outcome.second_choice_count == 1

    def test_priority_beats_earlier_rank_one(self):
        """Приоритетный выбор обрабатывается раньше обычного первого ранга"""
        snapshot = make_snapshot(
            [make_activity(1, max_capacity=1)],
            _students(1, 2),
            [
                make_selection(1, 1, 1, rank=1, minute=1),
                make_selection(2, 2, 1, rank=1, is_priority=True, minute=50),
            ],
        )

        outcome = _run(snapshot)

        assert _placements(outcome) == {2: (1, AllocationType.SMART_PRIORITY)}

    def test_reallocation_to_demanded_activity(self):
        snapshot = make_snapshot(
            [make_activity(1, max_capacity=1), make_activity(2, max_capacity=5)],
            _students(1, 2, 3),
            [
                make_selection(1, 1, 1),
                make_selection(2, 2, 1),
                make_selection(3, 3, 2),
            ],
        )

        outcome = _run(snapshot)

        allocation = next(a for a in outcome.confirmed() if a.student_id == 2)
        assert allocation.activity_id == 2
        assert allocation.allocation_type == AllocationType.SMART_REALLOCATION
        assert allocation.allocation_round == ROUND_REALLOCATION
        assert outcome.forced_count == 1

    def test_forced_into_least_subscribed_activity(self):
        snapshot = make_snapshot(
            [
                make_activity(1, max_capacity=1),
                make_activity(2, max_capacity=5),
                make_activity(3, max_capacity=5),
            ],
            _students(1, 2, 4),
            [make_selection(1, 1, 1), make_selection(2, 2, 1)],
            manual=[make_manual(100, 4, 2)],
        )

        outcome = _run(snapshot)

        allocation = next(a for a in outcome.confirmed() if a.student_id == 2)
        assert allocation.activity_id == 3
        assert allocation.allocation_type == AllocationType.SMART_FORCED
        assert allocation.allocation_round == ROUND_FORCED

    def test_forced_tie_goes_to_lowest_id(self):
        snapshot = make_snapshot(
            [
                make_activity(1, max_capacity=1),
                make_activity(3, max_capacity=5),
                make_activity(2, max_capacity=5),
            ],
            _students(1, 2),
            [make_selection(1, 1, 1), make_selection(2, 2, 1)],
        )

        outcome = _run(snapshot)

        assert _placements(outcome)[2] == (2, AllocationType.SMART_FORCED)

    def test_forced_skips_ineligible_activities(self):
        snapshot = make_snapshot(
            [
                make_activity(1, max_capacity=1),
                make_activity(2, eligible_year_group_ids=[9]),
                make_activity(3, activity_type=ActivityType.INVITE_ONLY),
                make_activity(4),
            ],
            _students(1, 2),
            [make_selection(1, 1, 1), make_selection(2, 2, 1)],
        )

        outcome = _run(snapshot)

        assert _placements(outcome)[2] == (4, AllocationType.SMART_FORCED)

    def test_ineligible_selection_is_skipped_with_error(self):
        snapshot = make_snapshot(
            [make_activity(1, eligible_year_group_ids=[9])],
            _students(1),
            [make_selection(7, 1, 1)],
        )

        outcome = _run(snapshot)

        assert outcome.confirmed() == []
        assert "Selection 7 skipped" in outcome.errors[0]
        assert "YEAR_GROUP_MISMATCH" in outcome.errors[0]

    def test_no_eligible_activities_in_slot(self):
        snapshot = make_snapshot(
            [
                make_activity(1, eligible_year_group_ids=[7]),
                make_activity(2, eligible_year_group_ids=[7]),
            ],
            [make_student(1, year_group_id=5)],
            [make_selection(1, 1, 1)],
        )

        outcome = _run(snapshot)

        assert outcome.confirmed() == []
        [slot] = outcome.unallocated
        assert slot.student_id == 1
        assert slot.reason == UnallocatedReason.NO_ELIGIBLE_ACTIVITIES
        assert slot.requested_activity_ids == (1,)

    def test_student_with_only_ineligible_choices_is_forced(self):
        snapshot = make_snapshot(
            [make_activity(1), make_activity(2, eligible_year_group_ids=[9])],
            _students(1),
            [make_selection(1, 1, 2)],
        )

        outcome = _run(snapshot)

        assert _placements(outcome) == {1: (1, AllocationType.SMART_FORCED)}
        assert outcome.unallocated == []


# ---------------------------------------------------------------------------
# Pre-seeding
# ---------------------------------------------------------------------------


class TestPreSeed:
    def test_compulsory_consumes_capacity_first(self):
        snapshot = make_snapshot(
            [
                make_activity(1, activity_type=ActivityType.COMPULSORY, max_capacity=1),
                make_activity(2, day_of_week=1, max_capacity=1),
            ],
            _students(1, 2),
            [make_selection(1, 2, 2)],
            compulsory=[make_compulsory(1, 1, 1)],
        )

        outcome = _run(snapshot)

        placements = _placements(outcome)
        assert placements[1] == (1, AllocationType.COMPULSORY)
        assert placements[2] == (2, AllocationType.SMART_RANKED)
        assert next(a for a in outcome.allocations if a.student_id == 1).allocation_round is None

    def test_accepted_invitation_becomes_invited_allocation(self):
        snapshot = make_snapshot(
            [
                make_activity(1, activity_type=ActivityType.INVITE_ONLY, max_capacity=2),
                make_activity(2, activity_type=ActivityType.INVITE_ONLY, max_capacity=2),
            ],
            _students(1, 2),
            invitations=[
                make_invitation(1, 1, 1),
                make_invitation(2, 2, 2, status=InvitationStatus.DECLINED),
            ],
        )

        outcome = _run(snapshot)

        assert _placements(outcome) == {1: (1, AllocationType.INVITED)}

    def test_invited_student_keeps_slot_over_own_selection(self):
        snapshot = make_snapshot(
            [make_activity(1, activity_type=ActivityType.INVITE_ONLY), make_activity(2)],
            _students(1),
            [make_selection(1, 1, 2)],
            invitations=[make_invitation(1, 1, 1)],
        )

        outcome = _run(snapshot)

        assert [a.activity_id for a in outcome.confirmed()] == [1]
        assert outcome.unallocated == []

    def test_manual_allocation_is_kept(self):
        snapshot = make_snapshot(
            [make_activity(1, max_capacity=1)],
            _students(1, 2),
            [make_selection(1, 2, 1)],
            manual=[make_manual(55, 1, 1)],
        )

        outcome = _run(snapshot)

        manual = next(a for a in outcome.allocations if a.student_id == 1)
        assert manual.allocation_type == AllocationType.MANUAL
        assert manual.allocation_id == 55
        assert manual.is_new is False
        assert outcome.waitlist == [WaitlistEntry(1, 2, 1)]

    def test_manual_allocation_to_cancelled_activity_is_removed(self):
        snapshot = make_snapshot(
            [make_activity(1, is_cancelled=True)],
            _students(1),
            manual=[make_manual(55, 1, 1)],
        )

        outcome = _run(snapshot)

        assert outcome.confirmed() == []
        removed = outcome.allocations[0]
        assert removed.status == AllocationStatus.REMOVED
        assert removed.allocation_id == 55
        assert "ACTIVITY_CANCELLED" in outcome.errors[0]

    def test_compulsory_may_share_slot_with_manual(self):
        snapshot = make_snapshot(
            [make_activity(1), make_activity(2, activity_type=ActivityType.COMPULSORY)],
            _students(1),
            compulsory=[make_compulsory(1, 1, 2)],
            manual=[make_manual(9, 1, 1)],
        )

        outcome = _run(snapshot)

        assert sorted(a.allocation_type for a in outcome.confirmed()) == sorted(
            [AllocationType.MANUAL, AllocationType.COMPULSORY]
        )


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


def _busy_term(mode):
    activities = [
        make_activity(1, max_capacity=3),
        make_activity(2, max_capacity=2),
        make_activity(3, max_capacity=4),
        make_activity(4, day_of_week=1, max_capacity=2),
        make_activity(5, day_of_week=1, max_capacity=2, eligible_year_group_ids=[6]),
        make_activity(6, day_of_week=1, time_slot=TimeSlot.BEFORE_SCHOOL, max_capacity=1),
    ]
    students = [make_student(i, year_group_id=5 + i % 2) for i in range(1, 13)]
    selections = []
    selection_id = 1
    for student in students:
        ordered = [1, 2, 3][student.id % 3:] + [1, 2, 3][: student.id % 3]
        for rank, activity_id in enumerate(ordered, start=1):
            selections.append(
                make_selection(
                    selection_id,
                    student.id,
                    activity_id,
                    rank=rank,
                    is_priority=(rank == 1 and student.id % 4 == 0),
                    minute=(student.id * 7) % 13 * 10 + rank,
                )
            )
            selection_id += 1
        selections.append(make_selection(selection_id, student.id, 4, minute=student.id))
        selection_id += 1
        selections.append(make_selection(selection_id, student.id, 6, minute=student.id))
        selection_id += 1
    return make_snapshot(activities, students, selections, mode=mode)


class TestInvariants:
    def _check(self, snapshot, outcome):
        counts = Counter(a.activity_id for a in outcome.confirmed())
        for activity in snapshot.activities.values():
            if activity.max_capacity is not None:
                assert counts[activity.id] <= activity.max_capacity

        slots = Counter(
            (a.student_id, a.slot_key)
            for a in outcome.confirmed()
            if a.allocation_type != AllocationType.COMPULSORY
        )
        assert all(count == 1 for count in slots.values())

    def test_smart_invariants(self):
        snapshot = _busy_term(SelectionMode.SMART_ALLOCATION)
        self._check(snapshot, _run(snapshot))

    def test_fcfs_invariants(self):
        snapshot = _busy_term(SelectionMode.FIRST_COME_FIRST_SERVED)
        self._check(snapshot, _run(snapshot))

    def test_runs_are_deterministic(self):
        snapshot = _busy_term(SelectionMode.SMART_ALLOCATION)
        first = _run(snapshot)
        second = _run(snapshot)

        assert first.allocations == second.allocations
        assert first.waitlist == second.waitlist
        assert first.unallocated == second.unallocated

    def test_mode_override(self):
        snapshot = _busy_term(SelectionMode.SMART_ALLOCATION)
        outcome = _run(snapshot, SelectionMode.FIRST_COME_FIRST_SERVED)

        assert outcome.mode == SelectionMode.FIRST_COME_FIRST_SERVED
        assert {a.allocation_type for a in outcome.confirmed()} == {AllocationType.FIRST_COME}
