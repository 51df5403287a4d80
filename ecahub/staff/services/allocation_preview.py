from collections import Counter

from ecahub.staff.schemas.allocation import ActivityPreview, EcaAllocationPreview
from ecahub.staff.services.allocation_pipeline import (
    AllocationOptions,
    PipelineResult,
    run_pipeline,
)
from ecahub.staff.services.result_reporter import build_allocation_result
from ecahub.staff.services.selection_store import TermSnapshot


def build_preview(pipeline: PipelineResult) -> EcaAllocationPreview:
    snapshot = pipeline.snapshot
    outcome = pipeline.outcome
    cancelled = set(pipeline.cancelled_activity_ids)
    confirmed = Counter(a.activity_id for a in outcome.confirmed())
    waitlist = Counter(entry.activity_id for entry in outcome.waitlist)

    activities = []
    for activity in sorted(snapshot.activities.values(), key=lambda a: a.id):
        if not activity.is_usable:
            continue
        first_pass = pipeline.first_pass_enrollment.get(activity.id, 0)
        below_minimum = (
            activity.min_capacity is not None and first_pass < activity.min_capacity
        )
        activities.append(
            ActivityPreview(
                activity_id=activity.id,
                activity_name=activity.name,
                allocations=confirmed.get(activity.id, 0),
                waitlist=waitlist.get(activity.id, 0),
                below_minimum=below_minimum,
                will_be_cancelled=activity.id in cancelled,
                min_capacity=activity.min_capacity,
            )
        )

    return EcaAllocationPreview(
        activities=activities,
        total_allocations=sum(a.allocations for a in activities),
        total_waitlist=sum(a.waitlist for a in activities),
        activities_to_cancel=len(cancelled),
        selection_mode=pipeline.mode,
        default_selection_mode=snapshot.default_selection_mode,
        result=build_allocation_result(pipeline),
    )


def preview_allocation(
    snapshot: TermSnapshot, options: AllocationOptions
) -> EcaAllocationPreview:
    """Прогон без записи в БД: тот же run_pipeline, что и у реального запуска"""
    return build_preview(run_pipeline(snapshot, options))
