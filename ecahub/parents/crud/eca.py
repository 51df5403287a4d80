"""Родительский раздел ECA: семестры, приглашения, зачисления детей"""
from datetime import datetime, timezone
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ecahub.core.database import db_operation
from ecahub.core.exceptions import NotFoundError, PermissionDeniedError, StateConflictError
from ecahub.core.logging_utils import log_business_event
from ecahub.parents.crud.selections import get_student_selections
from ecahub.parents.schemas.selections import (
    ParentActivityView,
    ParentAllocationRead,
    ParentInvitationRead,
    ParentTermView,
)
from ecahub.staff.crud.allocations import list_student_allocations
from ecahub.staff.crud.invitations import list_student_invitations
from ecahub.staff.crud.students import get_parent_student_ids
from ecahub.staff.models.activities import EcaActivity
from ecahub.staff.models.allocations import EcaAllocation
from ecahub.staff.models.enums import (
    AllocationStatus,
    InvitationStatus,
    TermStatus,
    TryoutResult,
)
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

# Родители не видят черновики
PARENT_VISIBLE_STATUSES = (
    TermStatus.REGISTRATION_OPEN,
    TermStatus.REGISTRATION_CLOSED,
    TermStatus.ALLOCATION_COMPLETE,
    TermStatus.ACTIVE,
)

# После публикации распределения ответ на приглашение уже ничего не меняет
INVITATION_OPEN_STATUSES = (
    TermStatus.DRAFT,
    TermStatus.REGISTRATION_OPEN,
    TermStatus.REGISTRATION_CLOSED,
)


async def list_parent_terms(db: AsyncSession, school_id: int) -> List[EcaTerm]:
    result = await db.execute(
        select(EcaTerm)
        .where(EcaTerm.school_id == school_id, EcaTerm.status.in_(PARENT_VISIBLE_STATUSES))
        .order_by(EcaTerm.start_date.desc(), EcaTerm.id.desc())
    )
    return result.scalars().all()


async def get_parent_term(db: AsyncSession, term_id: int, school_id: int) -> EcaTerm:
    result = await db.execute(
        select(EcaTerm).where(
            EcaTerm.id == term_id,
            EcaTerm.school_id == school_id,
            EcaTerm.status.in_(PARENT_VISIBLE_STATUSES),
        )
    )
    term = result.scalar_one_or_none()
    if not term:
        raise NotFoundError("ECA term", str(term_id))
    return term


async def _confirmed_counts(db: AsyncSession, activity_ids: List[int]) -> Dict[int, int]:
    if not activity_ids:
        return {}
    result = await db.execute(
        select(EcaAllocation.activity_id, func.count(EcaAllocation.id))
        .where(
            EcaAllocation.activity_id.in_(activity_ids),
            EcaAllocation.status == AllocationStatus.CONFIRMED,
        )
        .group_by(EcaAllocation.activity_id)
    )
    return {activity_id: count for activity_id, count in result.fetchall()}


async def build_parent_term_view(
    db: AsyncSession, term: EcaTerm, student: Student, settings: EcaSettings
) -> ParentTermView:
    """Занятия семестра с пометкой доступности для конкретного ученика"""
    result = await db.execute(
        select(EcaActivity)
        .where(
            EcaActivity.term_id == term.id,
            EcaActivity.is_active == True,  # noqa: E712
            EcaActivity.is_cancelled == False,  # noqa: E712
        )
        .order_by(EcaActivity.day_of_week, EcaActivity.time_slot, EcaActivity.id)
    )
    activities = result.scalars().all()
    activity_ids = [a.id for a in activities]

    invitations = {}
    if activity_ids:
        inv_result = await db.execute(
            select(EcaInvitation).where(
                EcaInvitation.student_id == student.id,
                EcaInvitation.activity_id.in_(activity_ids),
            )
        )
        invitations = {i.activity_id: i for i in inv_result.scalars().all()}

    selections = {
        s.activity_id: s for s in await get_student_selections(db, term.id, student.id)
    }
    enrolled = await _confirmed_counts(db, activity_ids)
    student_view = student_snapshot(student)

    views = []
    for activity in activities:
        invitation = invitations.get(activity.id)
        eligibility = is_eligible(
            student_view,
            activity_snapshot(activity),
            invitation_record(invitation) if invitation else None,
        )
        selection = selections.get(activity.id)
        available = None
        if activity.max_capacity is not None:
            available = max(activity.max_capacity - enrolled.get(activity.id, 0), 0)

        views.append(
            ParentActivityView(
                id=activity.id,
                name=activity.name,
                description=activity.description,
                location=activity.location,
                day_of_week=activity.day_of_week,
                time_slot=activity.time_slot,
                custom_start_time=activity.custom_start_time,
                custom_end_time=activity.custom_end_time,
                activity_type=activity.activity_type,
                available_spots=available,
                is_eligible=eligibility.eligible,
                eligibility_label=eligibility.label,
                has_invitation=invitation is not None,
                invitation_id=invitation.id if invitation else None,
                invitation_status=invitation.status if invitation else None,
                is_selected=selection is not None,
                selected_rank=selection.rank if selection else None,
                selected_priority=bool(selection.is_priority) if selection else False,
            )
        )

    return ParentTermView(
        id=term.id,
        name=term.name,
        academic_year=term.academic_year,
        start_date=term.start_date,
        end_date=term.end_date,
        registration_opens=term.registration_opens,
        registration_closes=term.registration_closes,
        status=term.status,
        selection_mode=settings.selection_mode,
        max_priority_choices=settings.max_priority_choices,
        max_choices_per_day=settings.max_choices_per_day,
        student_id=student.id,
        activities=views,
    )


@db_operation
async def respond_to_invitation(
    db: AsyncSession, invitation_id: int, parent_user_id: int, school_id: int, accept: bool
) -> EcaInvitation:
    result = await db.execute(
        select(EcaInvitation, EcaTerm)
        .join(EcaActivity, EcaActivity.id == EcaInvitation.activity_id)
        .join(EcaTerm, EcaTerm.id == EcaActivity.term_id)
        .where(EcaInvitation.id == invitation_id, EcaActivity.school_id == school_id)
    )
    row = result.first()
    if not row:
        raise NotFoundError("ECA invitation", str(invitation_id))
    invitation, term = row

    if invitation.student_id not in await get_parent_student_ids(db, parent_user_id):
        raise PermissionDeniedError(
            "respond to", "invitation", "Student is not linked to this parent"
        )
    if term.status not in INVITATION_OPEN_STATUSES:
        raise StateConflictError(
            "Invitations can no longer be answered for this term",
            current_state=term.status.value,
        )
    if invitation.status != InvitationStatus.PENDING:
        raise StateConflictError(
            "Invitation has already been answered",
            current_state=invitation.status.value,
        )
    if accept and invitation.tryout_result == TryoutResult.UNSUCCESSFUL:
        raise StateConflictError("Tryout was not successful", current_state="UNSUCCESSFUL")

    invitation.status = InvitationStatus.ACCEPTED if accept else InvitationStatus.DECLINED
    invitation.responded_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(invitation)

    log_business_event(
        "ECA_INVITATION_ANSWERED",
        "eca_invitation",
        invitation.id,
        {"status": invitation.status.value, "parent_user_id": parent_user_id},
    )
    return invitation


async def list_parent_allocations(
    db: AsyncSession, parent_user_id: int, term_id: int = None
) -> List[ParentAllocationRead]:
    student_ids = await get_parent_student_ids(db, parent_user_id)
    allocations = await list_student_allocations(db, student_ids, term_id)
    return [
        ParentAllocationRead(
            id=a.id,
            term_id=a.term_id,
            student_id=a.student_id,
            activity_id=a.activity_id,
            activity_name=a.activity.name,
            day_of_week=a.activity.day_of_week,
            time_slot=a.activity.time_slot,
            location=a.activity.location,
            allocation_type=a.allocation_type,
            status=a.status,
        )
        for a in allocations
    ]


async def list_parent_invitations(
    db: AsyncSession, parent_user_id: int, school_id: int
) -> List[ParentInvitationRead]:
    student_ids = await get_parent_student_ids(db, parent_user_id)
    rows = await list_student_invitations(
        db, student_ids, school_id, status=InvitationStatus.PENDING
    )
    return [
        ParentInvitationRead(
            id=invitation.id,
            student_id=student.id,
            student_name=student.full_name,
            activity_id=activity.id,
            activity_name=activity.name,
            activity_description=activity.description,
            day_of_week=activity.day_of_week,
            time_slot=activity.time_slot,
            location=activity.location,
            is_tryout=invitation.is_tryout,
            created_at=invitation.created_at,
        )
        for invitation, activity, student in rows
    ]
