"""
Запуск распределения ECA для семестра.

Весь прогон - одна транзакция: блокировка строки семестра (NOWAIT), проверка
состояния и флага allocation_run, чтение снимка, расчёт, замена результатов
прошлого прогона, установка флага. Любая ошибка - rollback, семестр остаётся
в прежнем состоянии и доступен для повторного запуска.
"""
from typing import Any, Dict, Optional

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from ecahub.core.config import ECA_CANCEL_BELOW_MINIMUM_DEFAULT
from ecahub.core.database import with_db_transaction
from ecahub.core.exceptions import StateConflictError
from ecahub.core.logging_utils import get_logger, log_audit_event, log_business_event
from ecahub.staff.crud.settings import find_settings
from ecahub.staff.crud.terms import get_term, lock_term_row, transition_term_status
from ecahub.staff.models.activities import EcaActivity
from ecahub.staff.models.allocations import EcaAllocation
from ecahub.staff.models.enums import (
    ENGINE_ALLOCATION_TYPES,
    SelectionMode,
    TermStatus,
)
from ecahub.staff.models.terms import EcaTerm
from ecahub.staff.models.waitlist import EcaWaitlist
from ecahub.staff.schemas.allocation import (
    AllocationRunOptions,
    EcaAllocationPreview,
    EcaAllocationResult,
)
from ecahub.staff.services.allocation_pipeline import (
    AllocationOptions,
    PipelineResult,
    run_pipeline,
)
from ecahub.staff.services.allocation_preview import build_preview
from ecahub.staff.services.result_reporter import build_allocation_result
from ecahub.staff.services.selection_store import load_term_snapshot
from ecahub.staff.services.term_locks import TermLockRegistry, term_locks

logger = get_logger(__name__)


def pipeline_options(options: Optional[AllocationRunOptions]) -> AllocationOptions:
    options = options or AllocationRunOptions()
    cancel_below_minimum = options.cancel_below_minimum
    if cancel_below_minimum is None:
        cancel_below_minimum = ECA_CANCEL_BELOW_MINIMUM_DEFAULT
    return AllocationOptions(
        selection_mode=options.selection_mode,
        cancel_below_minimum=cancel_below_minimum,
    )


def ensure_can_run(term: EcaTerm, override: bool) -> None:
    if term.status != TermStatus.REGISTRATION_CLOSED:
        raise StateConflictError(
            "Allocation can only run once registration is closed",
            current_state=term.status.value,
        )
    if term.allocation_run and not override:
        raise StateConflictError(
            "Allocation has already been run for this term; use override to re-run",
            current_state=term.status.value,
            details={"allocation_run": True},
        )


def cancel_reason_for(min_capacity: Optional[int]) -> str:
    return f"Minimum capacity of {min_capacity} not met"


def result_counts(result: EcaAllocationResult) -> Dict[str, Any]:
    return {
        "selection_mode": result.selection_mode.value,
        "allocations": result.allocations,
        "total_allocations": result.total_allocations,
        "total_students": result.total_students,
        "waitlisted": result.waitlisted,
        "cancelled_activities": result.cancelled_activities,
        "first_choice_allocations": result.first_choice_allocations,
        "second_choice_allocations": result.second_choice_allocations,
        "third_choice_allocations": result.third_choice_allocations,
        "forced_allocations": result.forced_allocations,
        "unallocated_students": len(result.unallocated_students),
        "errors": len(result.errors),
    }


class AllocationRunner:
    """Запуск, предпросмотр и публикация распределения"""

    def __init__(self, session: AsyncSession, locks: TermLockRegistry = term_locks):
        self.session = session
        self.locks = locks

    async def _default_mode(self, session: AsyncSession, school_id: int) -> SelectionMode:
        settings = await find_settings(session, school_id)
        if settings is None:
            return SelectionMode.FIRST_COME_FIRST_SERVED
        return SelectionMode(settings.selection_mode)

    async def run(
        self,
        term_id: int,
        school_id: int,
        options: Optional[AllocationRunOptions] = None,
        actor_id: Optional[int] = None,
    ) -> EcaAllocationResult:
        options = options or AllocationRunOptions()

        async def _run_operation(session: AsyncSession):
            term = await lock_term_row(session, term_id, school_id)
            ensure_can_run(term, options.override)
            was_run = bool(term.allocation_run)

            default_mode = await self._default_mode(session, school_id)
            snapshot = await load_term_snapshot(session, term.id, school_id, default_mode)
            pipeline = run_pipeline(snapshot, pipeline_options(options))

            await self._persist(session, term, pipeline)
            term.allocation_run = True
            return pipeline, was_run

        async with self.locks.acquire(term_id):
            pipeline, was_run = await with_db_transaction(self.session, _run_operation)

        result = build_allocation_result(pipeline)
        counts = result_counts(result)
        counts["override"] = was_run

        log_audit_event(
            "ALLOCATION_RUN",
            "eca_term",
            term_id,
            metadata=counts,
            actor={"user_id": actor_id, "school_id": school_id},
        )
        log_business_event("ALLOCATION_RUN", "eca_term", term_id, counts)
        return result

    async def _persist(
        self, session: AsyncSession, term: EcaTerm, pipeline: PipelineResult
    ) -> None:
        """Замена результатов прошлого прогона; MANUAL зачисления сохраняются"""
        await session.execute(
            delete(EcaAllocation).where(
                EcaAllocation.term_id == term.id,
                EcaAllocation.allocation_type.in_(ENGINE_ALLOCATION_TYPES),
            )
        )
        await session.execute(delete(EcaWaitlist).where(EcaWaitlist.term_id == term.id))

        for planned in pipeline.outcome.allocations:
            if not planned.is_new:
                if not planned.is_confirmed:
                    await session.execute(
                        update(EcaAllocation)
                        .where(EcaAllocation.id == planned.allocation_id)
                        .values(status=planned.status)
                    )
                continue
            session.add(
                EcaAllocation(
                    term_id=term.id,
                    student_id=planned.student_id,
                    activity_id=planned.activity_id,
                    allocation_type=planned.allocation_type,
                    allocation_round=planned.allocation_round,
                    status=planned.status,
                )
            )

        for entry in pipeline.outcome.waitlist:
            session.add(
                EcaWaitlist(
                    term_id=term.id,
                    activity_id=entry.activity_id,
                    student_id=entry.student_id,
                    position=entry.position,
                )
            )

        for activity in pipeline.cancelled_activities:
            await session.execute(
                update(EcaActivity)
                .where(EcaActivity.id == activity.id)
                .values(is_cancelled=True, cancel_reason=cancel_reason_for(activity.min_capacity))
            )

        await session.flush()

    async def preview(
        self,
        term_id: int,
        school_id: int,
        options: Optional[AllocationRunOptions] = None,
    ) -> EcaAllocationPreview:
        """Тот же конвейер без записи; чтение в отдельной REPEATABLE READ транзакции"""
        await self.session.connection(
            execution_options={"isolation_level": "REPEATABLE READ"}
        )
        try:
            term = await get_term(self.session, term_id, school_id)
            default_mode = await self._default_mode(self.session, school_id)
            snapshot = await load_term_snapshot(
                self.session, term.id, school_id, default_mode
            )
        finally:
            await self.session.rollback()

        preview = build_preview(run_pipeline(snapshot, pipeline_options(options)))
        logger.info(
            f"Allocation preview built for term {term_id}",
            extra={
                "term_id": term_id,
                "total_allocations": preview.total_allocations,
                "activities_to_cancel": preview.activities_to_cancel,
            },
        )
        return preview

    async def publish(
        self, term_id: int, school_id: int, actor_id: Optional[int] = None
    ) -> EcaTerm:
        """REGISTRATION_CLOSED -> ALLOCATION_COMPLETE"""
        async with self.locks.acquire(term_id, operation="publish"):
            term = await transition_term_status(
                self.session, term_id, school_id, TermStatus.ALLOCATION_COMPLETE
            )

        log_audit_event(
            "ALLOCATION_PUBLISHED",
            "eca_term",
            term_id,
            actor={"user_id": actor_id, "school_id": school_id},
        )
        return term
