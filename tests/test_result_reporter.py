"""
Tests for the admin-facing allocation summary and the preview.

The preview must report exactly what a real run would write for the same
data, so both are built from one run_pipeline call here.
"""

from ecahub.staff.models.enums import SelectionMode, TimeSlot, UnallocatedReason
from ecahub.staff.services.allocation_pipeline import AllocationOptions, run_pipeline
from ecahub.staff.services.allocation_preview import build_preview, preview_allocation
from ecahub.staff.services.result_reporter import build_allocation_result

from factories import make_activity, make_manual, make_selection, make_snapshot, make_student


def _term():
    activities = [
        make_activity(1, name="Chess", max_capacity=1),
        make_activity(2, name="Drama", min_capacity=3, max_capacity=10),
        make_activity(3, name="Robotics", min_capacity=2, day_of_week=1),
        make_activity(4, name="Choir", day_of_week=1, time_slot=TimeSlot.BEFORE_SCHOOL, max_capacity=1),
    ]
    students = [make_student(i, first_name=f"Kid{i}", last_name="Doe") for i in (1, 2, 3)]
    selections = [
        make_selection(1, 1, 1, rank=1),
        make_selection(2, 2, 1, rank=1),
        make_selection(3, 2, 2, rank=2),
        make_selection(4, 1, 3, rank=1),
        make_selection(5, 1, 4, rank=1),
        make_selection(6, 3, 4, rank=1),
    ]
    return make_snapshot(activities, students, selections, manual=[make_manual(90, 3, 2)])


class TestAllocationResult:
    def test_counts(self):
        result = build_allocation_result(
            run_pipeline(_term(), AllocationOptions(cancel_below_minimum=False))
        )

        assert result.success is True
        assert result.selection_mode == SelectionMode.SMART_ALLOCATION
        # Chess, Drama(2nd choice), Robotics, Choir + MANUAL Drama
        assert result.total_allocations == 5
        assert result.allocations == 4
        assert result.total_students == 3
        assert result.first_choice_allocations == 3
        assert result.second_choice_allocations == 1
        assert result.third_choice_allocations == 0
        assert result.forced_allocations == 0
        assert result.waitlisted == 2
        assert result.cancelled_activities == 0

    def test_unallocated_student_detail(self):
        result = build_allocation_result(
            run_pipeline(_term(), AllocationOptions(cancel_below_minimum=False))
        )

        assert len(result.unallocated_students) == 1
        student = result.unallocated_students[0]
        assert student.student_id == 3
        assert student.student_name == "Kid3 Doe"
        assert student.class_name == "5A"
        slot = student.unallocated_slots[0]
        assert (slot.day_of_week, slot.time_slot) == (1, TimeSlot.BEFORE_SCHOOL)
        assert slot.requested_activities == ["Choir"]
        assert slot.reason == UnallocatedReason.ALL_FULL

    def test_activities_at_risk(self):
        result = build_allocation_result(
            run_pipeline(_term(), AllocationOptions(cancel_below_minimum=False))
        )

        at_risk = {a.activity_name: a for a in result.activities_at_risk}
        assert set(at_risk) == {"Drama", "Robotics"}
        assert at_risk["Drama"].current_enrollment == 2
        assert at_risk["Drama"].shortfall == 1
        assert at_risk["Robotics"].shortfall == 1

    def test_cancelled_activities_are_not_at_risk(self):
        result = build_allocation_result(
            run_pipeline(_term(), AllocationOptions(cancel_below_minimum=True))
        )

        assert result.cancelled_activities == 2
        assert result.cancelled_activity_names == ["Drama", "Robotics"]
        assert result.activities_at_risk == []

    def test_errors_are_reported(self):
        snapshot = make_snapshot(
            [make_activity(1)],
            [make_student(1)],
            [make_selection(1, 1, 1), make_selection(2, 99, 1)],
        )

        result = build_allocation_result(run_pipeline(snapshot, AllocationOptions()))

        assert result.errors == ["Selection 2 skipped: student 99 does not exist"]
        assert result.total_allocations == 1


class TestPreview:
    def test_preview_matches_run_result(self):
        options = AllocationOptions(cancel_below_minimum=True)
        preview = preview_allocation(_term(), options)
        result = build_allocation_result(run_pipeline(_term(), options))

        assert preview.result == result
        assert preview.total_allocations == result.total_allocations
        assert preview.total_waitlist == result.waitlisted
        assert preview.activities_to_cancel == result.cancelled_activities

    def test_preview_is_repeatable(self):
        options = AllocationOptions(cancel_below_minimum=True)
        first = preview_allocation(_term(), options)
        second = preview_allocation(_term(), options)

        assert first.model_dump_json() == second.model_dump_json()

    def test_per_activity_flags(self):
        preview = build_preview(
            run_pipeline(_term(), AllocationOptions(cancel_below_minimum=True))
        )

        by_name = {a.activity_name: a for a in preview.activities}
        assert by_name["Drama"].below_minimum is True
        assert by_name["Drama"].will_be_cancelled is True
        assert by_name["Drama"].allocations == 0
        assert by_name["Chess"].below_minimum is False
        assert by_name["Chess"].allocations == 1
        assert by_name["Chess"].waitlist == 1
        assert by_name["Choir"].waitlist == 1
        assert preview.default_selection_mode == SelectionMode.SMART_ALLOCATION
