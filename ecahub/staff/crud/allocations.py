from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from ecahub.core.database import db_operation
from ecahub.core.exceptions import (
    BusinessLogicError,
    DuplicateError,
    NotFoundError,
    StateConflictError,
)
from ecahub.core.logging_utils import log_business_event
from ecahub.staff.crud.activities import count_confirmed
from ecahub.staff.models.activities import EcaActivity
from ecahub.staff.models.allocations import EcaAllocation
from ecahub.staff.models.enums import AllocationStatus, AllocationType
from ecahub.staff.models.students import Student
from ecahub.staff.models.waitlist import EcaWaitlist


async def list_activity_allocations(
    db: AsyncSession,
    activity_id: int,
    status: Optional[AllocationStatus] = AllocationStatus.CONFIRMED,
) -> List[EcaAllocation]:
    query = (
        select(EcaAllocation)
        .options(selectinload(EcaAllocation.student))
        .where(EcaAllocation.activity_id == activity_id)
    )
    if status is not None:
        query = query.where(EcaAllocation.status == status)
    result = await db.execute(query.order_by(EcaAllocation.id))
    return result.scalars().all()


async def get_waitlist(db: AsyncSession, activity_id: int) -> List[EcaWaitlist]:
    result = await db.execute(
        select(EcaWaitlist)
        .options(selectinload(EcaWaitlist.student))
        .where(EcaWaitlist.activity_id == activity_id)
        .order_by(EcaWaitlist.position)
    )
    return result.scalars().all()


async def slot_is_free(
    db: AsyncSession, activity: EcaActivity, student_id: int
) -> bool:
    """Нет ли у ученика другого подтверждённого занятия в этом же слоте"""
    result = await db.execute(
        select(func.count(EcaAllocation.id))
        .join(EcaActivity, EcaActivity.id == EcaAllocation.activity_id)
        .where(
            EcaAllocation.term_id == activity.term_id,
            EcaAllocation.student_id == student_id,
            EcaAllocation.status == AllocationStatus.CONFIRMED,
            EcaAllocation.allocation_type != AllocationType.COMPULSORY,
            EcaActivity.day_of_week == activity.day_of_week,
            EcaActivity.time_slot == activity.time_slot,
        )
    )
    return (result.scalar() or 0) == 0


async def _has_room(db: AsyncSession, activity: EcaActivity) -> bool:
    if activity.max_capacity is None:
        return True
    return await count_confirmed(db, activity.id) < activity.max_capacity


async def _remove_from_waitlist(db: AsyncSession, entry: EcaWaitlist) -> None:
    await db.delete(entry)
    await db.execute(
        update(EcaWaitlist)
        .where(
            EcaWaitlist.activity_id == entry.activity_id,
            EcaWaitlist.position > entry.position,
        )
        .values(position=EcaWaitlist.position - 1)
    )


async def _waitlist_entry(
    db: AsyncSession, activity_id: int, student_id: int
) -> Optional[EcaWaitlist]:
    result = await db.execute(
        select(EcaWaitlist).where(
            EcaWaitlist.activity_id == activity_id, EcaWaitlist.student_id == student_id
        )
    )
    return result.scalar_one_or_none()


async def _confirmed_allocation(
    db: AsyncSession, activity_id: int, student_id: int
) -> EcaAllocation:
    result = await db.execute(
        select(EcaAllocation).where(
            EcaAllocation.activity_id == activity_id,
            EcaAllocation.student_id == student_id,
            EcaAllocation.status == AllocationStatus.CONFIRMED,
        )
    )
    allocation = result.scalar_one_or_none()
    if not allocation:
        raise NotFoundError("ECA allocation", f"student {student_id} in activity {activity_id}")
    return allocation


async def _place_manually(
    db: AsyncSession, activity: EcaActivity, student_id: int
) -> EcaAllocation:
    if activity.is_cancelled or not activity.is_active:
        raise StateConflictError("Activity is not open for allocation")

    existing = await db.execute(
        select(EcaAllocation.id).where(
            EcaAllocation.activity_id == activity.id,
            EcaAllocation.student_id == student_id,
            EcaAllocation.status == AllocationStatus.CONFIRMED,
        )
    )
    if existing.scalar_one_or_none():
        raise DuplicateError("ECA allocation", "student_id", str(student_id))

    if not await _has_room(db, activity):
        raise BusinessLogicError(
            f"Activity '{activity.name}' is full",
            details={"max_capacity": activity.max_capacity},
        )
    if not await slot_is_free(db, activity, student_id):
        raise BusinessLogicError(
            "Student already has an activity in this time slot",
            details={"day_of_week": activity.day_of_week, "time_slot": activity.time_slot.value},
        )

    allocation = EcaAllocation(
        term_id=activity.term_id,
        student_id=student_id,
        activity_id=activity.id,
        allocation_type=AllocationType.MANUAL,
        allocation_round=None,
        status=AllocationStatus.CONFIRMED,
    )
    db.add(allocation)

    entry = await _waitlist_entry(db, activity.id, student_id)
    if entry:
        await _remove_from_waitlist(db, entry)
    return allocation


@db_operation
async def add_student_manually(
    db: AsyncSession, activity: EcaActivity, student: Student
) -> EcaAllocation:
    allocation = await _place_manually(db, activity, student.id)
    await db.commit()
    await db.refresh(allocation)

    log_business_event(
        "ECA_STUDENT_ADDED",
        "eca_allocation",
        allocation.id,
        {"activity_id": activity.id, "student_id": student.id},
    )
    return allocation


@db_operation
async def remove_student(
    db: AsyncSession, activity: EcaActivity, student_id: int
) -> EcaAllocation:
    allocation = await _confirmed_allocation(db, activity.id, student_id)
    allocation.status = AllocationStatus.REMOVED
    await db.commit()
    await db.refresh(allocation)

    log_business_event(
        "ECA_STUDENT_REMOVED",
        "eca_allocation",
        allocation.id,
        {"activity_id": activity.id, "student_id": student_id},
    )
    return allocation


async def _promote_first_available(
    db: AsyncSession, activity: EcaActivity
) -> Optional[EcaAllocation]:
    for entry in await get_waitlist(db, activity.id):
        if await slot_is_free(db, activity, entry.student_id):
            allocation = await _place_manually(db, activity, entry.student_id)
            return allocation
    return None


@db_operation
async def withdraw_student(
    db: AsyncSession, activity: EcaActivity, student_id: int
) -> Tuple[EcaAllocation, Optional[EcaAllocation]]:
    """WITHDRAWN, затем освободившееся место - первому подходящему из листа ожидания"""
    allocation = await _confirmed_allocation(db, activity.id, student_id)
    allocation.status = AllocationStatus.WITHDRAWN
    await db.flush()

    promoted = None
    if activity.is_active and not activity.is_cancelled:
        promoted = await _promote_first_available(db, activity)

    await db.commit()
    await db.refresh(allocation)
    if promoted:
        await db.refresh(promoted)

    log_business_event(
        "ECA_STUDENT_WITHDRAWN",
        "eca_allocation",
        allocation.id,
        {
            "activity_id": activity.id,
            "student_id": student_id,
            "promoted_student_id": promoted.student_id if promoted else None,
        },
    )
    return allocation, promoted


@db_operation
async def promote_from_waitlist(
    db: AsyncSession, activity: EcaActivity, student_id: Optional[int] = None
) -> EcaAllocation:
    """Перевод из листа ожидания: конкретного ученика или первого подходящего"""
    if student_id is None:
        allocation = await _promote_first_available(db, activity)
        if allocation is None:
            raise BusinessLogicError("No waitlisted student can be promoted")
    else:
        if not await _waitlist_entry(db, activity.id, student_id):
            raise NotFoundError("Waitlist entry", f"student {student_id}")
        allocation = await _place_manually(db, activity, student_id)

    await db.commit()
    await db.refresh(allocation)

    log_business_event(
        "ECA_WAITLIST_PROMOTED",
        "eca_allocation",
        allocation.id,
        {"activity_id": activity.id, "student_id": allocation.student_id},
    )
    return allocation


async def list_student_allocations(
    db: AsyncSession, student_ids: List[int], term_id: Optional[int] = None
) -> List[EcaAllocation]:
    if not student_ids:
        return []
    query = (
        select(EcaAllocation)
        .options(selectinload(EcaAllocation.activity))
        .where(
            EcaAllocation.student_id.in_(student_ids),
            EcaAllocation.status == AllocationStatus.CONFIRMED,
        )
    )
    if term_id is not None:
        query = query.where(EcaAllocation.term_id == term_id)
    result = await db.execute(query.order_by(EcaAllocation.student_id, EcaAllocation.id))
    return result.scalars().all()
