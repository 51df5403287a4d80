from collections import OrderedDict
from typing import Dict, List

from ecahub.staff.schemas.allocation import (
    ActivityAtRiskInfo,
    EcaAllocationResult,
    UnallocatedSlotInfo,
    UnallocatedStudentInfo,
)
from ecahub.staff.services.allocation_pipeline import PipelineResult
from ecahub.staff.services.selection_store import TermSnapshot, slot_sort_key


def _unallocated_students(
    snapshot: TermSnapshot, pipeline: PipelineResult
) -> List[UnallocatedStudentInfo]:
    grouped: Dict[int, List[UnallocatedSlotInfo]] = OrderedDict()
    ordered = sorted(
        pipeline.outcome.unallocated,
        key=lambda u: (u.student_id, slot_sort_key((u.day_of_week, u.time_slot))),
    )
    for slot in ordered:
        grouped.setdefault(slot.student_id, []).append(
            UnallocatedSlotInfo(
                day_of_week=slot.day_of_week,
                time_slot=slot.time_slot,
                requested_activities=[
                    snapshot.activities[a].name for a in slot.requested_activity_ids
                ],
                requested_activity_ids=list(slot.requested_activity_ids),
                reason=slot.reason,
            )
        )

    result = []
    for student_id, slots in grouped.items():
        student = snapshot.students[student_id]
        result.append(
            UnallocatedStudentInfo(
                student_id=student_id,
                student_name=student.full_name,
                class_name=student.class_name or None,
                unallocated_slots=slots,
            )
        )
    return result


def _activities_at_risk(
    snapshot: TermSnapshot, pipeline: PipelineResult
) -> List[ActivityAtRiskInfo]:
    cancelled = set(pipeline.cancelled_activity_ids)
    at_risk = []
    for activity in sorted(snapshot.activities.values(), key=lambda a: a.id):
        if not activity.is_usable or activity.id in cancelled:
            continue
        if activity.min_capacity is None:
            continue
        enrollment = pipeline.final_enrollment.get(activity.id, 0)
        if 1 <= enrollment < activity.min_capacity:
            at_risk.append(
                ActivityAtRiskInfo(
                    activity_id=activity.id,
                    activity_name=activity.name,
                    current_enrollment=enrollment,
                    min_capacity=activity.min_capacity,
                    shortfall=activity.min_capacity - enrollment,
                )
            )
    return at_risk


def build_allocation_result(pipeline: PipelineResult) -> EcaAllocationResult:
    """Сводка прогона для администратора"""
    snapshot = pipeline.snapshot
    outcome = pipeline.outcome
    confirmed = outcome.confirmed()

    return EcaAllocationResult(
        success=True,
        selection_mode=pipeline.mode,
        allocations=sum(1 for a in confirmed if a.is_new),
        total_allocations=len(confirmed),
        total_students=len({a.student_id for a in confirmed}),
        waitlisted=len(outcome.waitlist),
        cancelled_activities=len(pipeline.cancelled_activities),
        cancelled_activity_names=[a.name for a in pipeline.cancelled_activities],
        errors=list(outcome.errors),
        first_choice_allocations=outcome.first_choice_count,
        second_choice_allocations=outcome.second_choice_count,
        third_choice_allocations=outcome.third_choice_count,
        forced_allocations=outcome.forced_count,
        unallocated_students=_unallocated_students(snapshot, pipeline),
        activities_at_risk=_activities_at_risk(snapshot, pipeline),
    )
