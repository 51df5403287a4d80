"""
Единая цепочка распределения: основной проход, отмена по минимуму, сверка
вместимости. Используется и реальным запуском, и предпросмотром, поэтому
их результаты совпадают при одинаковых данных.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ecahub.core.config import ECA_CANCEL_BELOW_MINIMUM_DEFAULT
from ecahub.core.logging_utils import get_logger
from ecahub.staff.models.enums import SelectionMode
from ecahub.staff.services.allocation_engine import AllocationEngine, EngineOutcome
from ecahub.staff.services.cancellation import CancellationResolver
from ecahub.staff.services.capacity_tracker import CapacityTracker
from ecahub.staff.services.selection_store import ActivitySnapshot, TermSnapshot

logger = get_logger(__name__)


@dataclass(frozen=True)
class AllocationOptions:
    """selection_mode=None - режим семестра по умолчанию"""

    selection_mode: Optional[SelectionMode] = None
    cancel_below_minimum: bool = ECA_CANCEL_BELOW_MINIMUM_DEFAULT

    def resolve_mode(self, snapshot: TermSnapshot) -> SelectionMode:
        return SelectionMode(self.selection_mode or snapshot.default_selection_mode)


@dataclass
class PipelineResult:
    snapshot: TermSnapshot
    outcome: EngineOutcome
    cancelled_activities: List[ActivitySnapshot] = field(default_factory=list)
    # Наполненность после основного прохода, до отмен
    first_pass_enrollment: Dict[int, int] = field(default_factory=dict)
    final_enrollment: Dict[int, int] = field(default_factory=dict)

    @property
    def mode(self) -> SelectionMode:
        return self.outcome.mode

    @property
    def cancelled_activity_ids(self) -> List[int]:
        return [a.id for a in self.cancelled_activities]


def run_pipeline(snapshot: TermSnapshot, options: AllocationOptions) -> PipelineResult:
    mode = options.resolve_mode(snapshot)
    tracker = CapacityTracker(snapshot.activities.values())

    engine = AllocationEngine(snapshot, mode, tracker)
    engine.run()
    first_pass_enrollment = tracker.snapshot()

    cancelled: List[ActivitySnapshot] = []
    if options.cancel_below_minimum:
        cancelled = CancellationResolver(engine.context, engine.strategy).resolve()

    outcome = engine.context.outcome(mode)
    tracker.verify(a.activity_id for a in outcome.confirmed())

    logger.info(
        f"Allocation pipeline finished for term {snapshot.term_id}",
        extra={
            "term_id": snapshot.term_id,
            "mode": mode.value,
            "confirmed": len(outcome.confirmed()),
            "waitlisted": len(outcome.waitlist),
            "cancelled_activities": len(cancelled),
            "errors": len(outcome.errors),
        },
    )

    return PipelineResult(
        snapshot=snapshot,
        outcome=outcome,
        cancelled_activities=cancelled,
        first_pass_enrollment=first_pass_enrollment,
        final_enrollment=tracker.snapshot(),
    )
