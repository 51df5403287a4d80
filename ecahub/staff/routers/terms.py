from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ecahub.core.database import get_session
from ecahub.core.dependencies import get_current_admin
from ecahub.core.limits import limiter
from ecahub.core.logging_utils import log_audit_event
from ecahub.staff.crud.terms import (
    create_term,
    delete_term,
    get_term_detail,
    list_terms,
    transition_term_status,
    update_term,
)
from ecahub.staff.schemas.terms import (
    EcaTermCreate,
    EcaTermDetail,
    EcaTermRead,
    EcaTermUpdate,
    TermStatusUpdate,
)
from ecahub.staff.services.term_locks import term_locks

router = APIRouter(prefix="/eca/terms", tags=["ECA Terms"])


@router.get("/", response_model=List[EcaTermRead])
@limiter.limit("30/minute")
async def get_terms(
    request: Request,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await list_terms(db, current_user["school_id"])


@router.post("/", response_model=EcaTermRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_new_term(
    request: Request,
    data: EcaTermCreate,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Create a new ECA term in DRAFT status.

    - **start_date** must not be after **end_date**
    - **registration_opens** must be before **registration_closes**
    """
    return await create_term(db, current_user["school_id"], data)


@router.get("/{term_id}", response_model=EcaTermDetail)
@limiter.limit("30/minute")
async def get_term_by_id(
    request: Request,
    term_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Семестр со счётчиками занятий, выборов, зачислений и листа ожидания"""
    return await get_term_detail(db, term_id, current_user["school_id"])


@router.put("/{term_id}", response_model=EcaTermRead)
@limiter.limit("10/minute")
async def update_existing_term(
    request: Request,
    term_id: int,
    data: EcaTermUpdate,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    return await update_term(db, term_id, current_user["school_id"], data)


@router.delete("/{term_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("5/minute")
async def delete_existing_term(
    request: Request,
    term_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Удалить можно только черновик"""
    await delete_term(db, term_id, current_user["school_id"])


@router.patch("/{term_id}/status", response_model=EcaTermRead)
@limiter.limit("10/minute")
async def change_term_status(
    request: Request,
    term_id: int,
    data: TermStatusUpdate,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Move the term one step along its lifecycle:
    DRAFT -> REGISTRATION_OPEN -> REGISTRATION_CLOSED -> ALLOCATION_COMPLETE -> ACTIVE -> COMPLETED
    """
    async with term_locks.acquire(term_id, operation="status change"):
        term = await transition_term_status(
            db, term_id, current_user["school_id"], data.status
        )

    log_audit_event(
        "TERM_STATUS_CHANGED",
        "eca_term",
        term_id,
        metadata={"status": term.status.value},
        actor={"user_id": current_user["id"], "school_id": current_user["school_id"]},
    )
    return term
