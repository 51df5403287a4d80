from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ecahub.core.database import get_session
from ecahub.core.dependencies import get_current_admin
from ecahub.core.limits import limiter
from ecahub.staff.crud.activities import get_activity
from ecahub.staff.crud.invitations import (
    add_to_compulsory_roster,
    get_invitation,
    invite_students,
    list_activity_invitations,
    list_compulsory_roster,
    remove_from_compulsory_roster,
    update_invitation,
)
from ecahub.staff.schemas.invitations import (
    CompulsoryAssignmentRead,
    CompulsoryRosterRequest,
    EcaInvitationRead,
    InvitationUpdate,
    InviteStudentsRequest,
    InviteStudentsResult,
)

router = APIRouter(prefix="/eca", tags=["ECA Invitations"])


@router.post(
    "/activities/{activity_id}/invitations",
    response_model=InviteStudentsResult,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("10/minute")
async def invite_activity_students(
    request: Request,
    activity_id: int,
    data: InviteStudentsRequest,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Invite students to an INVITE_ONLY or TRYOUT activity.

    Students that already have an invitation are skipped and returned
    in **skipped_student_ids**.
    """
    school_id = current_user["school_id"]
    activity = await get_activity(db, activity_id, school_id)
    created, skipped = await invite_students(
        db,
        activity,
        data.student_ids,
        school_id,
        invited_by_id=current_user["id"],
        is_tryout=data.is_tryout,
    )
    return InviteStudentsResult(created=created, skipped_student_ids=skipped)


@router.get("/activities/{activity_id}/invitations", response_model=List[EcaInvitationRead])
@limiter.limit("30/minute")
async def get_activity_invitations(
    request: Request,
    activity_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    activity = await get_activity(db, activity_id, current_user["school_id"])
    return await list_activity_invitations(db, activity.id)


@router.patch("/invitations/{invitation_id}", response_model=EcaInvitationRead)
@limiter.limit("20/minute")
async def change_invitation(
    request: Request,
    invitation_id: int,
    data: InvitationUpdate,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Статус приглашения и результат отбора (только для TRYOUT)"""
    invitation = await get_invitation(db, invitation_id, current_user["school_id"])
    return await update_invitation(db, invitation, data)


# === Обязательные занятия ===


@router.get(
    "/activities/{activity_id}/compulsory",
    response_model=List[CompulsoryAssignmentRead],
)
@limiter.limit("30/minute")
async def get_compulsory_roster(
    request: Request,
    activity_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    activity = await get_activity(db, activity_id, current_user["school_id"])
    return await list_compulsory_roster(db, activity.id)


@router.post(
    "/activities/{activity_id}/compulsory",
    response_model=List[CompulsoryAssignmentRead],
)
@limiter.limit("10/minute")
async def add_compulsory_students(
    request: Request,
    activity_id: int,
    data: CompulsoryRosterRequest,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    school_id = current_user["school_id"]
    activity = await get_activity(db, activity_id, school_id)
    return await add_to_compulsory_roster(
        db, activity, data.student_ids, school_id, assigned_by_id=current_user["id"]
    )


@router.delete(
    "/activities/{activity_id}/compulsory/{student_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
@limiter.limit("10/minute")
async def remove_compulsory_student(
    request: Request,
    activity_id: int,
    student_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    activity = await get_activity(db, activity_id, current_user["school_id"])
    await remove_from_compulsory_roster(db, activity, student_id)
