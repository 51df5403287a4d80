"""Проверка, может ли ученик выбрать занятие или быть в него распределён"""
import enum
from dataclasses import dataclass
from typing import Optional

from ecahub.staff.models.enums import (
    ActivityType,
    EligibleGender,
    StudentGender,
    TryoutResult,
)
from ecahub.staff.services.selection_store import (
    ActivitySnapshot,
    InvitationRecord,
    StudentSnapshot,
)

NOT_ELIGIBLE_LABEL = "Not eligible"


class IneligibilityReason(str, enum.Enum):
    ACTIVITY_INACTIVE = "ACTIVITY_INACTIVE"
    ACTIVITY_CANCELLED = "ACTIVITY_CANCELLED"
    YEAR_GROUP_MISMATCH = "YEAR_GROUP_MISMATCH"
    GENDER_MISMATCH = "GENDER_MISMATCH"
    INVITATION_REQUIRED = "INVITATION_REQUIRED"
    TRYOUT_UNSUCCESSFUL = "TRYOUT_UNSUCCESSFUL"
    COMPULSORY_ACTIVITY = "COMPULSORY_ACTIVITY"


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: Optional[IneligibilityReason] = None

    @property
    def label(self) -> Optional[str]:
        # Родителю все причины показываются одинаково
        return None if self.eligible else NOT_ELIGIBLE_LABEL


ELIGIBLE = EligibilityResult(True)

_GENDER_RULES = {
    EligibleGender.BOYS_ONLY: StudentGender.MALE,
    EligibleGender.GIRLS_ONLY: StudentGender.FEMALE,
}


def _refuse(reason: IneligibilityReason) -> EligibilityResult:
    return EligibilityResult(False, reason)


def check_profile(
    student: StudentSnapshot, activity: ActivitySnapshot
) -> EligibilityResult:
    """Состояние занятия, параллель и пол (правила 1-3)"""
    if not activity.is_active:
        return _refuse(IneligibilityReason.ACTIVITY_INACTIVE)
    if activity.is_cancelled:
        return _refuse(IneligibilityReason.ACTIVITY_CANCELLED)

    if (
        activity.eligible_year_group_ids
        and student.year_group_id is not None
        and student.year_group_id not in activity.eligible_year_group_ids
    ):
        return _refuse(IneligibilityReason.YEAR_GROUP_MISMATCH)

    required_gender = _GENDER_RULES.get(activity.eligible_gender)
    if required_gender is not None and student.gender != required_gender:
        return _refuse(IneligibilityReason.GENDER_MISMATCH)

    return ELIGIBLE


def is_eligible(
    student: StudentSnapshot,
    activity: ActivitySnapshot,
    invitation: Optional[InvitationRecord] = None,
) -> EligibilityResult:
    """
    Может ли родитель выбрать занятие для ученика.

    Правила проверяются по порядку, первая неудача определяет причину.
    """
    result = check_profile(student, activity)
    if not result.eligible:
        return result

    if activity.activity_type in (ActivityType.INVITE_ONLY, ActivityType.TRYOUT):
        if invitation is None or not invitation.is_accepted:
            return _refuse(IneligibilityReason.INVITATION_REQUIRED)
        if (
            activity.activity_type == ActivityType.TRYOUT
            and invitation.tryout_result == TryoutResult.UNSUCCESSFUL
        ):
            return _refuse(IneligibilityReason.TRYOUT_UNSUCCESSFUL)

    if activity.activity_type == ActivityType.COMPULSORY:
        return _refuse(IneligibilityReason.COMPULSORY_ACTIVITY)

    return ELIGIBLE


def can_be_placed(
    student: StudentSnapshot,
    activity: ActivitySnapshot,
    invitation: Optional[InvitationRecord] = None,
) -> bool:
    """Можно ли поставить ученика в занятие без его выбора (дораспределение)"""
    return is_eligible(student, activity, invitation).eligible
