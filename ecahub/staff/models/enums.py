"""Перечисления ECA, общие для моделей, схем и сервисов распределения"""
import enum


class SelectionMode(str, enum.Enum):
    FIRST_COME_FIRST_SERVED = "FIRST_COME_FIRST_SERVED"
    SMART_ALLOCATION = "SMART_ALLOCATION"


class TermStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    REGISTRATION_OPEN = "REGISTRATION_OPEN"
    REGISTRATION_CLOSED = "REGISTRATION_CLOSED"
    ALLOCATION_COMPLETE = "ALLOCATION_COMPLETE"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


# Линейная машина состояний семестра
TERM_STATUS_TRANSITIONS = {
    TermStatus.DRAFT: (TermStatus.REGISTRATION_OPEN,),
    TermStatus.REGISTRATION_OPEN: (TermStatus.REGISTRATION_CLOSED,),
    TermStatus.REGISTRATION_CLOSED: (TermStatus.ALLOCATION_COMPLETE,),
    TermStatus.ALLOCATION_COMPLETE: (TermStatus.ACTIVE,),
    TermStatus.ACTIVE: (TermStatus.COMPLETED,),
    TermStatus.COMPLETED: (),
}


class TimeSlot(str, enum.Enum):
    BEFORE_SCHOOL = "BEFORE_SCHOOL"
    AFTER_SCHOOL = "AFTER_SCHOOL"


# Порядок слотов внутри дня
TIME_SLOT_ORDER = {TimeSlot.BEFORE_SCHOOL: 0, TimeSlot.AFTER_SCHOOL: 1}


class ActivityType(str, enum.Enum):
    OPEN = "OPEN"
    INVITE_ONLY = "INVITE_ONLY"
    COMPULSORY = "COMPULSORY"
    TRYOUT = "TRYOUT"


class EligibleGender(str, enum.Enum):
    MIXED = "MIXED"
    BOYS_ONLY = "BOYS_ONLY"
    GIRLS_ONLY = "GIRLS_ONLY"


class StudentGender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class AllocationType(str, enum.Enum):
    FIRST_COME = "FIRST_COME"
    SMART_PRIORITY = "SMART_PRIORITY"
    SMART_RANKED = "SMART_RANKED"
    SMART_REALLOCATION = "SMART_REALLOCATION"
    SMART_FORCED = "SMART_FORCED"
    INVITED = "INVITED"
    COMPULSORY = "COMPULSORY"
    MANUAL = "MANUAL"


# Типы, которые создаёт сам алгоритм и пересоздаёт при повторном запуске
ENGINE_ALLOCATION_TYPES = (
    AllocationType.FIRST_COME,
    AllocationType.SMART_PRIORITY,
    AllocationType.SMART_RANKED,
    AllocationType.SMART_REALLOCATION,
    AllocationType.SMART_FORCED,
    AllocationType.INVITED,
    AllocationType.COMPULSORY,
)


class AllocationStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    WITHDRAWN = "WITHDRAWN"
    REMOVED = "REMOVED"


class InvitationStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


class TryoutResult(str, enum.Enum):
    SUCCESSFUL = "SUCCESSFUL"
    UNSUCCESSFUL = "UNSUCCESSFUL"
    PENDING = "PENDING"


class UnallocatedReason(str, enum.Enum):
    ALL_FULL = "ALL_FULL"
    CANCELLED = "CANCELLED"
    NO_ELIGIBLE_ACTIVITIES = "NO_ELIGIBLE_ACTIVITIES"
