from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ecahub.core.database import get_session
from ecahub.core.dependencies import get_current_parent
from ecahub.core.limits import limiter
from ecahub.parents.crud.eca import (
    build_parent_term_view,
    get_parent_term,
    list_parent_allocations,
    list_parent_invitations,
    list_parent_terms,
    respond_to_invitation,
)
from ecahub.parents.crud.selections import get_student_selections, submit_selections
from ecahub.parents.schemas.selections import (
    InvitationRespond,
    ParentAllocationRead,
    ParentInvitationRead,
    ParentTermView,
    SelectionRead,
    SelectionSubmit,
)
from ecahub.staff.crud.settings import default_settings, find_settings
from ecahub.staff.crud.students import get_student_for_parent
from ecahub.staff.schemas.invitations import EcaInvitationRead
from ecahub.staff.schemas.terms import EcaTermRead

router = APIRouter(prefix="/eca/parent", tags=["ECA Parents"])


async def _school_settings(db: AsyncSession, school_id: int):
    return await find_settings(db, school_id) or default_settings(school_id)


@router.get("/terms", response_model=List[EcaTermRead])
@limiter.limit("30/minute")
async def get_parent_terms(
    request: Request,
    current_user: Dict[str, Any] = Depends(get_current_parent),
    db: AsyncSession = Depends(get_session),
):
    return await list_parent_terms(db, current_user["school_id"])


@router.get("/terms/{term_id}", response_model=ParentTermView)
@limiter.limit("30/minute")
async def get_parent_term_view(
    request: Request,
    term_id: int,
    student_id: int = Query(..., gt=0),
    current_user: Dict[str, Any] = Depends(get_current_parent),
    db: AsyncSession = Depends(get_session),
):
    """
    Activities of the term as seen for one child: eligibility,
    available spots, invitation and current selection.
    """
    school_id = current_user["school_id"]
    student = await get_student_for_parent(db, current_user["id"], student_id, school_id)
    term = await get_parent_term(db, term_id, school_id)
    settings = await _school_settings(db, school_id)
    return await build_parent_term_view(db, term, student, settings)


@router.get("/terms/{term_id}/selections", response_model=List[SelectionRead])
@limiter.limit("30/minute")
async def get_selections(
    request: Request,
    term_id: int,
    student_id: int = Query(..., gt=0),
    current_user: Dict[str, Any] = Depends(get_current_parent),
    db: AsyncSession = Depends(get_session),
):
    school_id = current_user["school_id"]
    student = await get_student_for_parent(db, current_user["id"], student_id, school_id)
    term = await get_parent_term(db, term_id, school_id)
    return await get_student_selections(db, term.id, student.id)


@router.put("/terms/{term_id}/selections", response_model=List[SelectionRead])
@limiter.limit("10/minute")
async def put_selections(
    request: Request,
    term_id: int,
    data: SelectionSubmit,
    current_user: Dict[str, Any] = Depends(get_current_parent),
    db: AsyncSession = Depends(get_session),
):
    """
    Replace all selections of the child for the term.

    Allowed only while registration is open. Limits on priority choices
    and choices per day come from the school settings.
    """
    school_id = current_user["school_id"]
    student = await get_student_for_parent(
        db, current_user["id"], data.student_id, school_id
    )
    term = await get_parent_term(db, term_id, school_id)
    settings = await _school_settings(db, school_id)
    return await submit_selections(
        db, term.id, student, current_user["id"], data.selections, settings
    )


@router.get("/invitations", response_model=List[ParentInvitationRead])
@limiter.limit("30/minute")
async def get_pending_invitations(
    request: Request,
    current_user: Dict[str, Any] = Depends(get_current_parent),
    db: AsyncSession = Depends(get_session),
):
    """Приглашения детей, ожидающие ответа родителя"""
    return await list_parent_invitations(
        db, current_user["id"], current_user["school_id"]
    )


@router.post("/invitations/{invitation_id}/respond", response_model=EcaInvitationRead)
@limiter.limit("10/minute")
async def answer_invitation(
    request: Request,
    invitation_id: int,
    data: InvitationRespond,
    current_user: Dict[str, Any] = Depends(get_current_parent),
    db: AsyncSession = Depends(get_session),
):
    """Принятое приглашение станет зачислением INVITED при следующем прогоне"""
    return await respond_to_invitation(
        db, invitation_id, current_user["id"], current_user["school_id"], data.accept
    )


@router.get("/allocations", response_model=List[ParentAllocationRead])
@limiter.limit("30/minute")
async def get_allocations(
    request: Request,
    term_id: Optional[int] = Query(None, gt=0),
    current_user: Dict[str, Any] = Depends(get_current_parent),
    db: AsyncSession = Depends(get_session),
):
    """Подтверждённые зачисления детей родителя"""
    return await list_parent_allocations(db, current_user["id"], term_id)
