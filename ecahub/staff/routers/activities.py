from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ecahub.core.database import get_session
from ecahub.core.dependencies import get_current_admin
from ecahub.core.exceptions import StateConflictError
from ecahub.core.limits import limiter
from ecahub.staff.crud.activities import (
    cancel_activity,
    create_activity,
    delete_activity,
    get_activity,
    list_activities,
    update_activity,
)
from ecahub.staff.crud.allocations import (
    add_student_manually,
    get_waitlist,
    list_activity_allocations,
    promote_from_waitlist,
    remove_student,
    withdraw_student,
)
from ecahub.staff.crud.students import get_student
from ecahub.staff.crud.terms import lock_term_row
from ecahub.staff.models.activities import EcaActivity
from ecahub.staff.models.enums import TermStatus
from ecahub.staff.schemas.activities import (
    EcaActivityCancel,
    EcaActivityCreate,
    EcaActivityRead,
    EcaActivityUpdate,
)
from ecahub.staff.schemas.allocation import (
    AllocationRead,
    ManualAllocationCreate,
    WaitlistRead,
    WithdrawResult,
)
from ecahub.staff.services.term_locks import term_locks

router = APIRouter(prefix="/eca", tags=["ECA Activities"])


@asynccontextmanager
async def allocation_edit(db: AsyncSession, activity: EcaActivity, school_id: int, operation: str):
    """Ручные правки зачислений идут под той же блокировкой семестра, что и прогон"""
    async with term_locks.acquire(activity.term_id, operation=operation):
        term = await lock_term_row(db, activity.term_id, school_id, operation=operation)
        if term.status == TermStatus.COMPLETED:
            raise StateConflictError(
                "Allocations of a completed term cannot be changed",
                current_state=term.status.value,
            )
        yield term


# === Занятия ===


@router.get("/terms/{term_id}/activities", response_model=List[EcaActivityRead])
@limiter.limit("30/minute")
async def get_term_activities(
    request: Request,
    term_id: int,
    include_cancelled: bool = Query(True),
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await list_activities(db, term_id, current_user["school_id"], include_cancelled)


@router.post(
    "/terms/{term_id}/activities",
    response_model=EcaActivityRead,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("20/minute")
async def create_new_activity(
    request: Request,
    term_id: int,
    data: EcaActivityCreate,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Create an activity in the term.

    - **day_of_week**: 0 = Monday .. 6 = Sunday
    - **time_slot**: BEFORE_SCHOOL or AFTER_SCHOOL
    - **min_capacity** / **max_capacity**: optional bounds, min <= max
    - **eligible_year_group_ids**: empty list means every year group
    """
    return await create_activity(db, term_id, current_user["school_id"], data)


@router.get("/activities/{activity_id}", response_model=EcaActivityRead)
@limiter.limit("30/minute")
async def get_activity_by_id(
    request: Request,
    activity_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await get_activity(db, activity_id, current_user["school_id"])


@router.put("/activities/{activity_id}", response_model=EcaActivityRead)
@limiter.limit("20/minute")
async def update_existing_activity(
    request: Request,
    activity_id: int,
    data: EcaActivityUpdate,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await update_activity(db, activity_id, current_user["school_id"], data)


@router.delete("/activities/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("10/minute")
async def delete_existing_activity(
    request: Request,
    activity_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    await delete_activity(db, activity_id, current_user["school_id"])


@router.post("/activities/{activity_id}/cancel", response_model=EcaActivityRead)
@limiter.limit("10/minute")
async def cancel_existing_activity(
    request: Request,
    activity_id: int,
    data: Optional[EcaActivityCancel] = None,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Отмена занятия: все зачисления переходят в REMOVED, лист ожидания очищается"""
    activity = await get_activity(db, activity_id, current_user["school_id"])
    async with allocation_edit(db, activity, current_user["school_id"], "cancel activity"):
        return await cancel_activity(db, activity, data.reason if data else None)


# === Зачисления и лист ожидания ===


@router.get("/activities/{activity_id}/students", response_model=List[AllocationRead])
@limiter.limit("30/minute")
async def get_activity_students(
    request: Request,
    activity_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    activity = await get_activity(db, activity_id, current_user["school_id"])
    return await list_activity_allocations(db, activity.id)


@router.post(
    "/activities/{activity_id}/students",
    response_model=AllocationRead,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("20/minute")
async def add_activity_student(
    request: Request,
    activity_id: int,
    data: ManualAllocationCreate,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Ручное зачисление (MANUAL): проверяются вместимость и занятость слота"""
    school_id = current_user["school_id"]
    activity = await get_activity(db, activity_id, school_id)
    student = await get_student(db, data.student_id, school_id)
    async with allocation_edit(db, activity, school_id, "manual allocation"):
        return await add_student_manually(db, activity, student)


@router.delete("/activities/{activity_id}/students/{student_id}", response_model=AllocationRead)
@limiter.limit("20/minute")
async def remove_activity_student(
    request: Request,
    activity_id: int,
    student_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    school_id = current_user["school_id"]
    activity = await get_activity(db, activity_id, school_id)
    async with allocation_edit(db, activity, school_id, "remove student"):
        return await remove_student(db, activity, student_id)


@router.post(
    "/activities/{activity_id}/students/{student_id}/withdraw",
    response_model=WithdrawResult,
)
@limiter.limit("20/minute")
async def withdraw_activity_student(
    request: Request,
    activity_id: int,
    student_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Withdraw a student from the activity.

    The freed place goes to the first waitlisted student whose
    day and time slot is still free.
    """
    school_id = current_user["school_id"]
    activity = await get_activity(db, activity_id, school_id)
    async with allocation_edit(db, activity, school_id, "withdraw student"):
        withdrawn, promoted = await withdraw_student(db, activity, student_id)
    return WithdrawResult(withdrawn=withdrawn, promoted=promoted)


@router.get("/activities/{activity_id}/waitlist", response_model=List[WaitlistRead])
@limiter.limit("30/minute")
async def get_activity_waitlist(
    request: Request,
    activity_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    activity = await get_activity(db, activity_id, current_user["school_id"])
    return await get_waitlist(db, activity.id)


@router.post("/activities/{activity_id}/waitlist/promote", response_model=AllocationRead)
@limiter.limit("20/minute")
async def promote_waitlisted_student(
    request: Request,
    activity_id: int,
    student_id: Optional[int] = Query(None, gt=0),
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Без student_id переводится первый подходящий ученик из очереди"""
    school_id = current_user["school_id"]
    activity = await get_activity(db, activity_id, school_id)
    async with allocation_edit(db, activity, school_id, "promote from waitlist"):
        return await promote_from_waitlist(db, activity, student_id)
