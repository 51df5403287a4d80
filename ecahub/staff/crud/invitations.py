from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ecahub.core.database import db_operation, with_db_transaction
from ecahub.core.exceptions import NotFoundError, ValidationError
from ecahub.core.logging_utils import log_business_event
from ecahub.staff.crud.students import get_students_by_ids
from ecahub.staff.models.activities import EcaActivity
from ecahub.staff.models.compulsory import EcaCompulsoryAssignment
from ecahub.staff.models.enums import ActivityType, InvitationStatus, TryoutResult
from ecahub.staff.models.invitations import EcaInvitation
from ecahub.staff.models.students import Student
from ecahub.staff.schemas.invitations import InvitationUpdate


INVITABLE_TYPES = (ActivityType.INVITE_ONLY, ActivityType.TRYOUT)


async def _check_students_exist(
    session: AsyncSession, student_ids: List[int], school_id: int
) -> None:
    found = {s.id for s in await get_students_by_ids(session, student_ids, school_id)}
    missing = [student_id for student_id in student_ids if student_id not in found]
    if missing:
        raise ValidationError(
            "Some students do not exist in this school", details={"student_ids": missing}
        )


async def list_activity_invitations(
    session: AsyncSession, activity_id: int
) -> List[EcaInvitation]:
    result = await session.execute(
        select(EcaInvitation)
        .where(EcaInvitation.activity_id == activity_id)
        .order_by(EcaInvitation.id)
    )
    return result.scalars().all()


async def get_invitation(
    session: AsyncSession, invitation_id: int, school_id: int
) -> EcaInvitation:
    result = await session.execute(
        select(EcaInvitation)
        .join(EcaActivity, EcaActivity.id == EcaInvitation.activity_id)
        .where(EcaInvitation.id == invitation_id, EcaActivity.school_id == school_id)
    )
    invitation = result.scalar_one_or_none()
    if not invitation:
        raise NotFoundError("ECA invitation", str(invitation_id))
    return invitation


async def invite_students(
    session: AsyncSession,
    activity: EcaActivity,
    student_ids: List[int],
    school_id: int,
    invited_by_id: Optional[int] = None,
    is_tryout: bool = False,
) -> Tuple[List[EcaInvitation], List[int]]:
    """Создать приглашения; уже приглашённые ученики пропускаются"""
    if activity.activity_type not in INVITABLE_TYPES:
        raise ValidationError(
            "Invitations are only used for INVITE_ONLY and TRYOUT activities",
            details={"activity_type": activity.activity_type.value},
        )
    tryout = is_tryout or activity.activity_type == ActivityType.TRYOUT

    async def _invite_operation(session: AsyncSession):
        await _check_students_exist(session, student_ids, school_id)

        existing = await session.execute(
            select(EcaInvitation.student_id).where(
                EcaInvitation.activity_id == activity.id,
                EcaInvitation.student_id.in_(student_ids),
            )
        )
        already_invited = {row[0] for row in existing.fetchall()}

        created = []
        for student_id in student_ids:
            if student_id in already_invited:
                continue
            invitation = EcaInvitation(
                activity_id=activity.id,
                student_id=student_id,
                invited_by_id=invited_by_id,
                status=InvitationStatus.PENDING,
                is_tryout=tryout,
                tryout_result=TryoutResult.PENDING if tryout else None,
            )
            session.add(invitation)
            created.append(invitation)
        return created, [s for s in student_ids if s in already_invited]

    created, skipped = await with_db_transaction(session, _invite_operation)
    for invitation in created:
        await session.refresh(invitation)

    log_business_event(
        "ECA_STUDENTS_INVITED",
        "eca_activity",
        activity.id,
        {"invited": len(created), "skipped": len(skipped), "is_tryout": tryout},
    )
    return created, skipped


async def list_student_invitations(
    session: AsyncSession,
    student_ids: List[int],
    school_id: int,
    status: Optional[InvitationStatus] = None,
) -> List[Tuple[EcaInvitation, EcaActivity, Student]]:
    """Приглашения учеников вместе с занятием и учеником, новые первыми"""
    if not student_ids:
        return []
    query = (
        select(EcaInvitation, EcaActivity, Student)
        .join(EcaActivity, EcaActivity.id == EcaInvitation.activity_id)
        .join(Student, Student.id == EcaInvitation.student_id)
        .where(
            EcaInvitation.student_id.in_(student_ids),
            EcaActivity.school_id == school_id,
        )
    )
    if status is not None:
        query = query.where(EcaInvitation.status == status)
    result = await session.execute(
        query.order_by(EcaInvitation.created_at.desc(), EcaInvitation.id.desc())
    )
    return result.all()


@db_operation
async def update_invitation(
    session: AsyncSession, invitation: EcaInvitation, data: InvitationUpdate
) -> EcaInvitation:
    changes = data.model_dump(exclude_unset=True, exclude_none=True)

    if "tryout_result" in changes and not invitation.is_tryout:
        raise ValidationError("Tryout result can only be set for tryout invitations")

    if "status" in changes and changes["status"] != invitation.status:
        invitation.status = changes["status"]
        invitation.responded_at = datetime.now(timezone.utc)
    if "tryout_result" in changes:
        invitation.tryout_result = changes["tryout_result"]

    await session.commit()
    await session.refresh(invitation)

    log_business_event(
        "ECA_INVITATION_UPDATED",
        "eca_invitation",
        invitation.id,
        {key: value.value for key, value in changes.items()},
    )
    return invitation


# === Обязательные занятия ===


def _ensure_compulsory(activity: EcaActivity) -> None:
    if activity.activity_type != ActivityType.COMPULSORY:
        raise ValidationError("Roster can only be managed for COMPULSORY activities")


async def list_compulsory_roster(
    session: AsyncSession, activity_id: int
) -> List[EcaCompulsoryAssignment]:
    result = await session.execute(
        select(EcaCompulsoryAssignment)
        .where(EcaCompulsoryAssignment.activity_id == activity_id)
        .order_by(EcaCompulsoryAssignment.student_id)
    )
    return result.scalars().all()


async def add_to_compulsory_roster(
    session: AsyncSession,
    activity: EcaActivity,
    student_ids: List[int],
    school_id: int,
    assigned_by_id: Optional[int] = None,
) -> List[EcaCompulsoryAssignment]:
    _ensure_compulsory(activity)

    async def _assign_operation(session: AsyncSession):
        await _check_students_exist(session, student_ids, school_id)

        existing = await session.execute(
            select(EcaCompulsoryAssignment.student_id).where(
                EcaCompulsoryAssignment.activity_id == activity.id
            )
        )
        assigned = {row[0] for row in existing.fetchall()}

        created = []
        for student_id in student_ids:
            if student_id in assigned:
                continue
            assignment = EcaCompulsoryAssignment(
                activity_id=activity.id,
                student_id=student_id,
                assigned_by_id=assigned_by_id,
            )
            session.add(assignment)
            created.append(assignment)
        return created

    created = await with_db_transaction(session, _assign_operation)

    log_business_event(
        "ECA_COMPULSORY_ROSTER_UPDATED",
        "eca_activity",
        activity.id,
        {"added": len(created)},
    )
    return await list_compulsory_roster(session, activity.id)


@db_operation
async def remove_from_compulsory_roster(
    session: AsyncSession, activity: EcaActivity, student_id: int
) -> None:
    _ensure_compulsory(activity)

    result = await session.execute(
        select(EcaCompulsoryAssignment).where(
            EcaCompulsoryAssignment.activity_id == activity.id,
            EcaCompulsoryAssignment.student_id == student_id,
        )
    )
    assignment = result.scalar_one_or_none()
    if not assignment:
        raise NotFoundError("Compulsory assignment", f"student {student_id}")

    await session.delete(assignment)
    await session.commit()
