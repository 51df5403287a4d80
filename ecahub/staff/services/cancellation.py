"""Отмена занятий, не набравших min_capacity, и повторное распределение их учеников"""
from typing import List, Tuple

from ecahub.core.logging_utils import get_logger
from ecahub.staff.models.enums import UnallocatedReason
from ecahub.staff.services.allocation_engine import AllocationContext, AllocationStrategy
from ecahub.staff.services.selection_store import ActivitySnapshot

logger = get_logger(__name__)


class CancellationResolver:
    """
    Каждое занятие проверяется один раз, по возрастанию id, по наполненности
    после основного прохода. Второй проход не приводит к новым отменам.
    """

    def __init__(self, context: AllocationContext, strategy: AllocationStrategy):
        self.context = context
        self.strategy = strategy

    def find_under_subscribed(self) -> List[ActivitySnapshot]:
        tracker = self.context.tracker
        under_subscribed = []
        for activity in sorted(self.context.snapshot.activities.values(), key=lambda a: a.id):
            if not activity.is_usable:
                continue
            if activity.min_capacity is None:
                continue
            if tracker.current_enrollment(activity.id) < activity.min_capacity:
                under_subscribed.append(activity)
        return under_subscribed

    def resolve(self) -> List[ActivitySnapshot]:
        to_cancel = self.find_under_subscribed()
        if not to_cancel:
            return []

        affected: List[Tuple[ActivitySnapshot, List[int]]] = []
        for activity in to_cancel:
            removed = self.context.cancel_activity(activity.id)
            affected.append((activity, removed))
            logger.info(
                f"Activity '{activity.name}' cancelled: minimum capacity of "
                f"{activity.min_capacity} not met",
                extra={
                    "activity_id": activity.id,
                    "enrollment": len(removed),
                    "min_capacity": activity.min_capacity,
                },
            )

        for activity, removed in affected:
            slot_key = activity.slot_key
            for student_id in self.context.students_by_first_selection(slot_key, removed):
                if self.context.holds_slot(student_id, slot_key):
                    continue
                if self.strategy.second_pass(self.context, student_id, slot_key):
                    continue
                self.context.mark_unallocated(
                    student_id,
                    slot_key,
                    self.strategy.requested_activities(self.context, student_id, slot_key),
                    UnallocatedReason.CANCELLED,
                )

        return to_cancel
