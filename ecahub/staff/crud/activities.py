from typing import List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ecahub.core.database import db_operation
from ecahub.core.exceptions import NotFoundError, StateConflictError, ValidationError
from ecahub.core.logging_utils import log_business_event
from ecahub.staff.crud.terms import get_term
from ecahub.staff.models.activities import EcaActivity
from ecahub.staff.models.allocations import EcaAllocation
from ecahub.staff.models.enums import AllocationStatus, TermStatus
from ecahub.staff.models.waitlist import EcaWaitlist
from ecahub.staff.schemas.activities import EcaActivityCreate, EcaActivityUpdate


async def get_activity(db: AsyncSession, activity_id: int, school_id: int) -> EcaActivity:
    result = await db.execute(
        select(EcaActivity).where(
            EcaActivity.id == activity_id, EcaActivity.school_id == school_id
        )
    )
    activity = result.scalar_one_or_none()
    if not activity:
        raise NotFoundError("ECA activity", str(activity_id))
    return activity


async def list_activities(
    db: AsyncSession, term_id: int, school_id: int, include_cancelled: bool = True
) -> List[EcaActivity]:
    await get_term(db, term_id, school_id)

    query = select(EcaActivity).where(EcaActivity.term_id == term_id)
    if not include_cancelled:
        query = query.where(EcaActivity.is_cancelled == False)  # noqa: E712
    query = query.order_by(EcaActivity.day_of_week, EcaActivity.time_slot, EcaActivity.id)

    result = await db.execute(query)
    return result.scalars().all()


async def count_confirmed(db: AsyncSession, activity_id: int) -> int:
    result = await db.execute(
        select(func.count(EcaAllocation.id)).where(
            EcaAllocation.activity_id == activity_id,
            EcaAllocation.status == AllocationStatus.CONFIRMED,
        )
    )
    return result.scalar() or 0


@db_operation
async def create_activity(
    db: AsyncSession, term_id: int, school_id: int, data: EcaActivityCreate
) -> EcaActivity:
    term = await get_term(db, term_id, school_id)
    if term.is_immutable:
        raise StateConflictError(
            "Activities cannot be added to an active term", current_state=term.status.value
        )

    activity = EcaActivity(term_id=term.id, school_id=school_id, **data.model_dump())
    db.add(activity)
    await db.commit()
    await db.refresh(activity)

    log_business_event(
        "ECA_ACTIVITY_CREATED",
        "eca_activity",
        activity.id,
        {"term_id": term.id, "name": activity.name},
    )
    return activity


@db_operation
async def update_activity(
    db: AsyncSession, activity_id: int, school_id: int, data: EcaActivityUpdate
) -> EcaActivity:
    activity = await get_activity(db, activity_id, school_id)
    term = await get_term(db, activity.term_id, school_id)
    if term.is_immutable:
        raise StateConflictError(
            "Activities of an active term cannot be changed",
            current_state=term.status.value,
        )

    changes = data.model_dump(exclude_unset=True)

    min_capacity = changes.get("min_capacity", activity.min_capacity)
    max_capacity = changes.get("max_capacity", activity.max_capacity)
    if min_capacity is not None and max_capacity is not None and min_capacity > max_capacity:
        raise ValidationError("min_capacity cannot exceed max_capacity")

    if "max_capacity" in changes and max_capacity is not None:
        enrolled = await count_confirmed(db, activity.id)
        if max_capacity < enrolled:
            raise ValidationError(
                f"max_capacity cannot be lower than current enrollment ({enrolled})",
                details={"current_enrollment": enrolled},
            )

    for field, value in changes.items():
        setattr(activity, field, value)
    if changes.get("is_cancelled") is False:
        activity.cancel_reason = None

    await db.commit()
    await db.refresh(activity)
    return activity


@db_operation
async def delete_activity(db: AsyncSession, activity_id: int, school_id: int) -> None:
    activity = await get_activity(db, activity_id, school_id)
    term = await get_term(db, activity.term_id, school_id)
    if term.status not in (TermStatus.DRAFT, TermStatus.REGISTRATION_OPEN):
        raise StateConflictError(
            "Activities can only be deleted before registration closes",
            current_state=term.status.value,
        )

    await db.delete(activity)
    await db.commit()

    log_business_event("ECA_ACTIVITY_DELETED", "eca_activity", activity_id)


@db_operation
async def cancel_activity(
    db: AsyncSession, activity: EcaActivity, reason: Optional[str] = None
) -> EcaActivity:
    """Отмена занятия: зачисления -> REMOVED, лист ожидания очищается"""
    if activity.is_cancelled:
        raise StateConflictError("Activity is already cancelled")

    activity.is_cancelled = True
    activity.cancel_reason = reason or "Cancelled by administrator"

    removed = await db.execute(
        update(EcaAllocation)
        .where(
            EcaAllocation.activity_id == activity.id,
            EcaAllocation.status == AllocationStatus.CONFIRMED,
        )
        .values(status=AllocationStatus.REMOVED)
    )
    await db.execute(delete(EcaWaitlist).where(EcaWaitlist.activity_id == activity.id))

    await db.commit()
    await db.refresh(activity)

    log_business_event(
        "ECA_ACTIVITY_CANCELLED",
        "eca_activity",
        activity.id,
        {"reason": activity.cancel_reason, "removed_allocations": removed.rowcount},
    )
    return activity
