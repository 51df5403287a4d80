"""
Снимок данных семестра для распределения ECA.

Загружает занятия, учеников, выборы родителей, приглашения, списки
обязательных занятий и сохранённые ручные зачисления, проверяет ссылочную
целостность и собирает неизменяемый TermSnapshot. Битые записи не прерывают
прогон: они пропускаются, а текст ошибки попадает в errors снимка.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecahub.core.exceptions import DataIntegrityError
from ecahub.core.logging_utils import get_logger
from ecahub.parents.models.selections import EcaSelection
from ecahub.staff.models.activities import EcaActivity
from ecahub.staff.models.allocations import EcaAllocation
from ecahub.staff.models.compulsory import EcaCompulsoryAssignment
from ecahub.staff.models.enums import (
    ActivityType,
    AllocationStatus,
    AllocationType,
    EligibleGender,
    InvitationStatus,
    SelectionMode,
    StudentGender,
    TimeSlot,
    TIME_SLOT_ORDER,
    TryoutResult,
)
from ecahub.staff.models.invitations import EcaInvitation
from ecahub.staff.models.students import Student

logger = get_logger(__name__)

SlotKey = Tuple[int, TimeSlot]


def slot_sort_key(slot_key: SlotKey) -> Tuple[int, int]:
    day_of_week, time_slot = slot_key
    return day_of_week, TIME_SLOT_ORDER[time_slot]


@dataclass(frozen=True)
class StudentSnapshot:
    id: int
    first_name: str
    last_name: str
    class_name: str = ""
    year_group_id: Optional[int] = None
    gender: Optional[StudentGender] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class ActivitySnapshot:
    id: int
    name: str
    day_of_week: int
    time_slot: TimeSlot
    activity_type: ActivityType = ActivityType.OPEN
    eligible_year_group_ids: Tuple[int, ...] = ()
    eligible_gender: EligibleGender = EligibleGender.MIXED
    min_capacity: Optional[int] = None
    max_capacity: Optional[int] = None
    is_active: bool = True
    is_cancelled: bool = False

    @property
    def slot_key(self) -> SlotKey:
        return self.day_of_week, self.time_slot

    @property
    def is_usable(self) -> bool:
        return self.is_active and not self.is_cancelled


@dataclass(frozen=True)
class SelectionRecord:
    id: int
    student_id: int
    activity_id: int
    rank: int
    is_priority: bool
    created_at: datetime

    @property
    def order_key(self) -> Tuple[datetime, int]:
        # Кто раньше подал, тот и первый; при равном времени - меньший id
        return self.created_at, self.id

    @property
    def preference_key(self) -> Tuple[int, int, datetime, int]:
        return (0 if self.is_priority else 1), self.rank, self.created_at, self.id


@dataclass(frozen=True)
class InvitationRecord:
    id: int
    activity_id: int
    student_id: int
    status: InvitationStatus
    is_tryout: bool = False
    tryout_result: Optional[TryoutResult] = None

    @property
    def is_accepted(self) -> bool:
        return self.status == InvitationStatus.ACCEPTED


@dataclass(frozen=True)
class SeedRecord:
    """Зачисление, которое ставится до раундов по выборам родителей"""

    activity_id: int
    student_id: int
    allocation_type: AllocationType
    # Для сохранённых MANUAL зачислений - id существующей строки
    allocation_id: Optional[int] = None

    @property
    def order_key(self) -> Tuple[int, int]:
        return self.activity_id, self.student_id


@dataclass(frozen=True)
class TermSnapshot:
    term_id: int
    default_selection_mode: SelectionMode
    students: Mapping[int, StudentSnapshot]
    activities: Mapping[int, ActivitySnapshot]
    selections: Tuple[SelectionRecord, ...] = ()
    invitations: Mapping[Tuple[int, int], InvitationRecord] = field(default_factory=dict)
    compulsory: Tuple[SeedRecord, ...] = ()
    manual: Tuple[SeedRecord, ...] = ()
    errors: Tuple[str, ...] = ()

    def invitation_for(
        self, student_id: int, activity_id: int
    ) -> Optional[InvitationRecord]:
        return self.invitations.get((student_id, activity_id))

    def accepted_invitations(self) -> List[SeedRecord]:
        seeds = [
            SeedRecord(inv.activity_id, inv.student_id, AllocationType.INVITED)
            for inv in self.invitations.values()
            if inv.is_accepted
        ]
        return sorted(seeds, key=lambda seed: seed.order_key)

    def activities_in_slot(self, slot_key: SlotKey) -> List[ActivitySnapshot]:
        """Доступные занятия слота, по возрастанию id"""
        return sorted(
            (a for a in self.activities.values() if a.is_usable and a.slot_key == slot_key),
            key=lambda a: a.id,
        )

    def slot_keys(self) -> List[SlotKey]:
        keys = {a.slot_key for a in self.activities.values() if a.is_usable}
        return sorted(keys, key=slot_sort_key)


def activity_snapshot(row: Any) -> ActivitySnapshot:
    return ActivitySnapshot(
        id=row.id,
        name=row.name,
        day_of_week=row.day_of_week,
        time_slot=TimeSlot(row.time_slot),
        activity_type=ActivityType(row.activity_type),
        eligible_year_group_ids=tuple(row.eligible_year_group_ids or ()),
        eligible_gender=EligibleGender(row.eligible_gender or EligibleGender.MIXED),
        min_capacity=row.min_capacity,
        max_capacity=row.max_capacity,
        is_active=bool(row.is_active),
        is_cancelled=bool(row.is_cancelled),
    )


def student_snapshot(row: Any) -> StudentSnapshot:
    return StudentSnapshot(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        class_name=row.class_name or "",
        year_group_id=row.year_group_id,
        gender=StudentGender(row.gender) if row.gender else None,
    )


def invitation_record(row: Any) -> InvitationRecord:
    return InvitationRecord(
        id=row.id,
        activity_id=row.activity_id,
        student_id=row.student_id,
        status=InvitationStatus(row.status),
        is_tryout=bool(row.is_tryout),
        tryout_result=TryoutResult(row.tryout_result) if row.tryout_result else None,
    )


def _record_error(errors: List[str], error: DataIntegrityError) -> None:
    logger.warning(error.message, extra={"details": error.details})
    errors.append(error.message)


def build_term_snapshot(
    term_id: int,
    default_selection_mode: SelectionMode,
    activities: Iterable[Any],
    students: Iterable[Any],
    selections: Iterable[Any] = (),
    invitations: Iterable[Any] = (),
    compulsory: Iterable[Any] = (),
    manual_allocations: Iterable[Any] = (),
) -> TermSnapshot:
    """
    Собирает TermSnapshot из строк БД (или любых объектов с теми же атрибутами).

    Записи, ссылающиеся на отсутствующие занятия или учеников, а также
    выборы с недопустимым рангом, пропускаются с ошибкой в errors.
    """
    errors: List[str] = []

    activity_map: Dict[int, ActivitySnapshot] = {}
    for row in sorted(activities, key=lambda a: a.id):
        activity_map[row.id] = activity_snapshot(row)

    student_map: Dict[int, StudentSnapshot] = {}
    for row in sorted(students, key=lambda s: s.id):
        student_map[row.id] = student_snapshot(row)

    def check_refs(record: str, row: Any) -> bool:
        if row.activity_id is None or row.activity_id not in activity_map:
            _record_error(
                errors,
                DataIntegrityError(
                    record, row.id, f"activity {row.activity_id} does not exist"
                ),
            )
            return False
        if row.student_id not in student_map:
            _record_error(
                errors,
                DataIntegrityError(
                    record, row.id, f"student {row.student_id} does not exist"
                ),
            )
            return False
        return True

    selection_records: List[SelectionRecord] = []
    seen_pairs = set()
    for row in sorted(selections, key=lambda s: (s.created_at, s.id)):
        if not check_refs("Selection", row):
            continue
        if row.rank not in (1, 2, 3):
            _record_error(
                errors, DataIntegrityError("Selection", row.id, f"invalid rank {row.rank}")
            )
            continue
        pair = (row.student_id, row.activity_id)
        if pair in seen_pairs:
            _record_error(
                errors,
                DataIntegrityError(
                    "Selection", row.id, "duplicate selection of the same activity"
                ),
            )
            continue
        seen_pairs.add(pair)
        selection_records.append(
            SelectionRecord(
                id=row.id,
                student_id=row.student_id,
                activity_id=row.activity_id,
                rank=row.rank,
                is_priority=bool(row.is_priority),
                created_at=row.created_at,
            )
        )

    invitation_map: Dict[Tuple[int, int], InvitationRecord] = {}
    for row in sorted(invitations, key=lambda i: i.id):
        if not check_refs("Invitation", row):
            continue
        invitation_map[(row.student_id, row.activity_id)] = invitation_record(row)

    compulsory_seeds: List[SeedRecord] = []
    for row in sorted(compulsory, key=lambda c: (c.activity_id or 0, c.student_id)):
        if not check_refs("Compulsory assignment", row):
            continue
        if activity_map[row.activity_id].activity_type != ActivityType.COMPULSORY:
            _record_error(
                errors,
                DataIntegrityError(
                    "Compulsory assignment",
                    row.id,
                    f"activity {row.activity_id} is not compulsory",
                ),
            )
            continue
        compulsory_seeds.append(
            SeedRecord(row.activity_id, row.student_id, AllocationType.COMPULSORY)
        )

    manual_seeds: List[SeedRecord] = []
    for row in manual_allocations:
        if not check_refs("Allocation", row):
            continue
        manual_seeds.append(
            SeedRecord(
                row.activity_id, row.student_id, AllocationType.MANUAL, allocation_id=row.id
            )
        )
    manual_seeds.sort(key=lambda seed: seed.order_key)

    return TermSnapshot(
        term_id=term_id,
        default_selection_mode=SelectionMode(default_selection_mode),
        students=student_map,
        activities=activity_map,
        selections=tuple(selection_records),
        invitations=invitation_map,
        compulsory=tuple(compulsory_seeds),
        manual=tuple(manual_seeds),
        errors=tuple(errors),
    )


async def load_term_snapshot(
    session: AsyncSession,
    term_id: int,
    school_id: int,
    default_selection_mode: SelectionMode,
) -> TermSnapshot:
    """Читает все данные семестра в текущей транзакции сессии"""
    activities = (
        (await session.execute(select(EcaActivity).where(EcaActivity.term_id == term_id)))
        .scalars()
        .all()
    )
    activity_ids = [a.id for a in activities]

    students = (
        (await session.execute(select(Student).where(Student.school_id == school_id)))
        .scalars()
        .all()
    )

    selections = (
        (
            await session.execute(
                select(EcaSelection)
                .where(EcaSelection.term_id == term_id)
                .order_by(EcaSelection.created_at, EcaSelection.id)
            )
        )
        .scalars()
        .all()
    )

    invitations = []
    compulsory = []
    if activity_ids:
        invitations = (
            (
                await session.execute(
                    select(EcaInvitation).where(EcaInvitation.activity_id.in_(activity_ids))
                )
            )
            .scalars()
            .all()
        )
        compulsory = (
            (
                await session.execute(
                    select(EcaCompulsoryAssignment).where(
                        EcaCompulsoryAssignment.activity_id.in_(activity_ids)
                    )
                )
            )
            .scalars()
            .all()
        )

    manual = (
        (
            await session.execute(
                select(EcaAllocation).where(
                    EcaAllocation.term_id == term_id,
                    EcaAllocation.allocation_type == AllocationType.MANUAL,
                    EcaAllocation.status == AllocationStatus.CONFIRMED,
                )
            )
        )
        .scalars()
        .all()
    )

    snapshot = build_term_snapshot(
        term_id,
        default_selection_mode,
        activities=activities,
        students=students,
        selections=selections,
        invitations=invitations,
        compulsory=compulsory,
        manual_allocations=manual,
    )

    logger.info(
        f"Loaded allocation snapshot for term {term_id}",
        extra={
            "term_id": term_id,
            "activities": len(snapshot.activities),
            "selections": len(snapshot.selections),
            "skipped_records": len(snapshot.errors),
        },
    )
    return snapshot
