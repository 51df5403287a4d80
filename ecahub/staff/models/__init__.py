from ecahub.core.database import Base
from .enums import (
    SelectionMode,
    TermStatus,
    TimeSlot,
    ActivityType,
    EligibleGender,
    StudentGender,
    AllocationType,
    AllocationStatus,
    InvitationStatus,
    TryoutResult,
    UnallocatedReason,
)
from .settings import EcaSettings
from .terms import EcaTerm
from .activities import EcaActivity
from .students import Student, ParentStudentLink
from .allocations import EcaAllocation
from .waitlist import EcaWaitlist
from .invitations import EcaInvitation
from .compulsory import EcaCompulsoryAssignment

__all__ = [
    "Base",
    "SelectionMode",
    "TermStatus",
    "TimeSlot",
    "ActivityType",
    "EligibleGender",
    "StudentGender",
    "AllocationType",
    "AllocationStatus",
    "InvitationStatus",
    "TryoutResult",
    "UnallocatedReason",
    "EcaSettings",
    "EcaTerm",
    "EcaActivity",
    "Student",
    "ParentStudentLink",
    "EcaAllocation",
    "EcaWaitlist",
    "EcaInvitation",
    "EcaCompulsoryAssignment",
]
