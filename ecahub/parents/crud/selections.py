from collections import defaultdict
from typing import Dict, List

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ecahub.core.database import with_db_transaction
from ecahub.core.exceptions import (
    LimitExceededError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from ecahub.core.logging_utils import log_business_event
from ecahub.parents.models.selections import EcaSelection
from ecahub.parents.schemas.selections import SelectionItem
from ecahub.staff.models.activities import EcaActivity
from ecahub.staff.models.enums import SelectionMode, TermStatus
from ecahub.staff.models.invitations import EcaInvitation
from ecahub.staff.models.settings import EcaSettings
from ecahub.staff.models.students import Student
from ecahub.staff.models.terms import EcaTerm
from ecahub.staff.services.eligibility import is_eligible
from ecahub.staff.services.selection_store import (
    activity_snapshot,
    invitation_record,
    student_snapshot,
)


async def get_student_selections(
    db: AsyncSession, term_id: int, student_id: int
) -> List[EcaSelection]:
    result = await db.execute(
        select(EcaSelection)
        .where(EcaSelection.term_id == term_id, EcaSelection.student_id == student_id)
        .order_by(EcaSelection.created_at, EcaSelection.id)
    )
    return result.scalars().all()


def normalize_items(
    items: List[SelectionItem], mode: SelectionMode
) -> List[SelectionItem]:
    """В режиме FCFS ранг и приоритет не используются"""
    if mode == SelectionMode.FIRST_COME_FIRST_SERVED:
        return [
            SelectionItem(activity_id=item.activity_id, rank=1, is_priority=False)
            for item in items
        ]
    return list(items)


def validate_selection_rules(
    items: List[SelectionItem],
    activities: Dict[int, EcaActivity],
    settings: EcaSettings,
) -> None:
    """Лимиты школы и уникальность рангов внутри слота (день + время)"""
    mode = SelectionMode(settings.selection_mode)

    priority_count = sum(1 for item in items if item.is_priority)
    if priority_count > settings.max_priority_choices:
        raise LimitExceededError(
            "Priority choices", settings.max_priority_choices, priority_count
        )

    by_slot = defaultdict(list)
    for item in items:
        by_slot[activities[item.activity_id].slot_key].append(item)

    for (day_of_week, time_slot), slot_items in by_slot.items():
        if len(slot_items) > settings.max_choices_per_day:
            raise LimitExceededError(
                f"Choices for day {day_of_week} {time_slot.value}",
                settings.max_choices_per_day,
                len(slot_items),
            )
        if mode == SelectionMode.SMART_ALLOCATION:
            ranks = [item.rank for item in slot_items]
            if len(ranks) != len(set(ranks)):
                raise ValidationError(
                    "Each rank can be used only once per time slot",
                    details={"day_of_week": day_of_week, "time_slot": time_slot.value},
                )


async def submit_selections(
    db: AsyncSession,
    term_id: int,
    student: Student,
    parent_user_id: int,
    items: List[SelectionItem],
    settings: EcaSettings,
) -> List[EcaSelection]:
    """
    Полная замена выбора ученика.

    Выборы уже выбранных занятий сохраняют свой created_at (место в очереди
    FCFS), меняются только ранг и приоритет.
    """
    items = normalize_items(items, SelectionMode(settings.selection_mode))

    async def _submit_operation(session: AsyncSession):
        # FOR SHARE: смена статуса семестра дождётся конца записи выбора
        term_result = await session.execute(
            select(EcaTerm)
            .where(EcaTerm.id == term_id, EcaTerm.school_id == student.school_id)
            .with_for_update(read=True)
        )
        term = term_result.scalar_one_or_none()
        if not term:
            raise NotFoundError("ECA term", str(term_id))
        if term.status != TermStatus.REGISTRATION_OPEN:
            raise StateConflictError(
                "Selections can only be changed while registration is open",
                current_state=term.status.value,
            )

        activity_ids = [item.activity_id for item in items]
        activities: Dict[int, EcaActivity] = {}
        if activity_ids:
            result = await session.execute(
                select(EcaActivity).where(
                    EcaActivity.id.in_(activity_ids), EcaActivity.term_id == term_id
                )
            )
            activities = {a.id: a for a in result.scalars().all()}
        missing = [a for a in activity_ids if a not in activities]
        if missing:
            raise ValidationError(
                "Activities do not belong to this term", details={"activity_ids": missing}
            )

        invitations = {}
        if activity_ids:
            result = await session.execute(
                select(EcaInvitation).where(
                    EcaInvitation.student_id == student.id,
                    EcaInvitation.activity_id.in_(activity_ids),
                )
            )
            invitations = {i.activity_id: invitation_record(i) for i in result.scalars().all()}

        student_view = student_snapshot(student)
        refused = {}
        for activity_id, activity in activities.items():
            eligibility = is_eligible(
                student_view, activity_snapshot(activity), invitations.get(activity_id)
            )
            if not eligibility.eligible:
                refused[activity_id] = eligibility.reason.value
        if refused:
            raise ValidationError(
                "Student is not eligible for some activities",
                details={"not_eligible": refused},
            )

        validate_selection_rules(items, activities, settings)

        existing = {
            s.activity_id: s for s in await get_student_selections(session, term_id, student.id)
        }
        wanted = {item.activity_id: item for item in items}

        stale_ids = [s.id for a, s in existing.items() if a not in wanted]
        if stale_ids:
            await session.execute(delete(EcaSelection).where(EcaSelection.id.in_(stale_ids)))

        for activity_id, item in wanted.items():
            selection = existing.get(activity_id)
            if selection is None:
                session.add(
                    EcaSelection(
                        term_id=term_id,
                        student_id=student.id,
                        parent_user_id=parent_user_id,
                        activity_id=activity_id,
                        rank=item.rank,
                        is_priority=item.is_priority,
                    )
                )
            else:
                selection.rank = item.rank
                selection.is_priority = item.is_priority
                selection.parent_user_id = parent_user_id

    await with_db_transaction(db, _submit_operation)

    log_business_event(
        "ECA_SELECTIONS_SUBMITTED",
        "student",
        student.id,
        {"term_id": term_id, "parent_user_id": parent_user_id, "count": len(items)},
    )
    return await get_student_selections(db, term_id, student.id)

