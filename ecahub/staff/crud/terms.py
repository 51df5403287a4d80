from typing import List

from sqlalchemy import func
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ecahub.core.database import db_operation, is_lock_not_available
from ecahub.core.exceptions import (
    LockConflictError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from ecahub.core.logging_utils import log_business_event
from ecahub.parents.models.selections import EcaSelection
from ecahub.staff.models.activities import EcaActivity
from ecahub.staff.models.allocations import EcaAllocation
from ecahub.staff.models.enums import AllocationStatus, TermStatus
from ecahub.staff.models.terms import EcaTerm
from ecahub.staff.models.waitlist import EcaWaitlist
from ecahub.staff.schemas.terms import EcaTermCreate, EcaTermDetail, EcaTermUpdate


async def get_term(db: AsyncSession, term_id: int, school_id: int) -> EcaTerm:
    """Семестр школы; чужой семестр неотличим от отсутствующего"""
    result = await db.execute(
        select(EcaTerm).where(EcaTerm.id == term_id, EcaTerm.school_id == school_id)
    )
    term = result.scalar_one_or_none()
    if not term:
        raise NotFoundError("ECA term", str(term_id))
    return term


async def lock_term_row(
    db: AsyncSession, term_id: int, school_id: int, operation: str = "allocation"
) -> EcaTerm:
    """
    SELECT ... FOR UPDATE NOWAIT по строке семестра.

    Если строку держит другая транзакция - сразу LockConflictError.
    """
    try:
        result = await db.execute(
            select(EcaTerm)
            .where(EcaTerm.id == term_id, EcaTerm.school_id == school_id)
            .with_for_update(nowait=True)
        )
    except DBAPIError as e:
        if is_lock_not_available(e):
            raise LockConflictError(term_id, operation)
        raise

    term = result.scalar_one_or_none()
    if not term:
        raise NotFoundError("ECA term", str(term_id))
    return term


async def list_terms(db: AsyncSession, school_id: int) -> List[EcaTerm]:
    result = await db.execute(
        select(EcaTerm)
        .where(EcaTerm.school_id == school_id)
        .order_by(EcaTerm.start_date.desc(), EcaTerm.id.desc())
    )
    return result.scalars().all()


async def get_term_detail(db: AsyncSession, term_id: int, school_id: int) -> EcaTermDetail:
    term = await get_term(db, term_id, school_id)

    async def count(query) -> int:
        return (await db.execute(query)).scalar() or 0

    detail = EcaTermDetail.model_validate(term)
    detail.activity_count = await count(
        select(func.count(EcaActivity.id)).where(EcaActivity.term_id == term_id)
    )
    detail.selection_count = await count(
        select(func.count(EcaSelection.id)).where(EcaSelection.term_id == term_id)
    )
    detail.allocation_count = await count(
        select(func.count(EcaAllocation.id)).where(
            EcaAllocation.term_id == term_id,
            EcaAllocation.status == AllocationStatus.CONFIRMED,
        )
    )
    detail.waitlist_count = await count(
        select(func.count(EcaWaitlist.id)).where(EcaWaitlist.term_id == term_id)
    )
    return detail


@db_operation
async def create_term(db: AsyncSession, school_id: int, data: EcaTermCreate) -> EcaTerm:
    term = EcaTerm(
        school_id=school_id,
        status=TermStatus.DRAFT,
        allocation_run=False,
        **data.model_dump(),
    )
    db.add(term)
    await db.commit()
    await db.refresh(term)

    log_business_event("ECA_TERM_CREATED", "eca_term", term.id, {"name": term.name})
    return term


@db_operation
async def update_term(
    db: AsyncSession, term_id: int, school_id: int, data: EcaTermUpdate
) -> EcaTerm:
    term = await get_term(db, term_id, school_id)
    if term.is_immutable:
        raise StateConflictError(
            "Term cannot be changed once it is active", current_state=term.status.value
        )

    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(term, field, value)

    if term.end_date < term.start_date:
        raise ValidationError("end_date must not be earlier than start_date")

    await db.commit()
    await db.refresh(term)
    return term


@db_operation
async def delete_term(db: AsyncSession, term_id: int, school_id: int) -> None:
    term = await get_term(db, term_id, school_id)
    if term.status != TermStatus.DRAFT:
        raise StateConflictError(
            "Only draft terms can be deleted", current_state=term.status.value
        )
    await db.delete(term)
    await db.commit()

    log_business_event("ECA_TERM_DELETED", "eca_term", term_id)


@db_operation
async def transition_term_status(
    db: AsyncSession, term_id: int, school_id: int, new_status: TermStatus
) -> EcaTerm:
    """Переход по линейной машине состояний; публикация требует прогона"""
    term = await lock_term_row(db, term_id, school_id, operation="status change")
    old_status = term.status

    if not term.can_transition_to(new_status):
        raise StateConflictError(
            f"Cannot move term from {old_status.value} to {TermStatus(new_status).value}",
            current_state=old_status.value,
            details={"requested_state": TermStatus(new_status).value},
        )
    if new_status == TermStatus.ALLOCATION_COMPLETE and not term.allocation_run:
        raise StateConflictError(
            "Allocation must be run before it can be published",
            current_state=old_status.value,
        )

    term.status = new_status
    await db.commit()
    await db.refresh(term)

    log_business_event(
        "ECA_TERM_STATUS_CHANGED",
        "eca_term",
        term.id,
        {"from": old_status.value, "to": term.status.value},
    )
    return term
