"""
Алгоритм распределения учеников по занятиям ECA.

Режим распределения выбирается один раз: FirstComeFirstServed или
SmartAllocation. Оба режима работают поверх общего AllocationContext,
который держит счётчики вместимости (CapacityTracker), занятые слоты
учеников, листы ожидания и список нераспределённых.

Порядок при равенстве везде один: created_at выбора по возрастанию, затем
id выбора. Для дораспределения - наименьший id занятия, для
принудительного распределения - наименьшая текущая наполненность, затем id.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ecahub.core.logging_utils import get_logger
from ecahub.staff.models.enums import (
    AllocationStatus,
    AllocationType,
    SelectionMode,
    TimeSlot,
    UnallocatedReason,
)
from ecahub.staff.services.capacity_tracker import CapacityTracker
from ecahub.staff.services.eligibility import (
    IneligibilityReason,
    can_be_placed,
    check_profile,
    is_eligible,
)
from ecahub.staff.services.selection_store import (
    ActivitySnapshot,
    SeedRecord,
    SelectionRecord,
    SlotKey,
    StudentSnapshot,
    TermSnapshot,
    slot_sort_key,
)

logger = get_logger(__name__)

# Номера раундов SMART (allocation_round)
ROUND_PRIORITY = 1
RANKED_ROUNDS = {1: 2, 2: 3, 3: 4}
# Дораспределение - только в занятия слота, которые кто-то выбрал в этом прогоне;
# свободное занятие без спроса достаётся раунду ROUND_FORCED
ROUND_REALLOCATION = 5
ROUND_FORCED = 6


@dataclass
class PlannedAllocation:
    student_id: int
    activity_id: int
    slot_key: SlotKey
    allocation_type: AllocationType
    allocation_round: Optional[int] = None
    choice_rank: Optional[int] = None
    status: AllocationStatus = AllocationStatus.CONFIRMED
    # Только для сохранённых MANUAL зачислений
    allocation_id: Optional[int] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == AllocationStatus.CONFIRMED

    @property
    def is_new(self) -> bool:
        return self.allocation_id is None


@dataclass(frozen=True)
class WaitlistEntry:
    activity_id: int
    student_id: int
    position: int


@dataclass(frozen=True)
class UnallocatedSlot:
    student_id: int
    day_of_week: int
    time_slot: TimeSlot
    requested_activity_ids: Tuple[int, ...]
    reason: UnallocatedReason


def choice_bucket(allocation: PlannedAllocation) -> Optional[str]:
    """К какой метрике удовлетворённости относится зачисление"""
    if allocation.allocation_type == AllocationType.SMART_PRIORITY:
        return "first"
    if allocation.allocation_type == AllocationType.SMART_RANKED:
        return {1: "first", 2: "second", 3: "third"}.get(allocation.choice_rank)
    if allocation.allocation_type in (
        AllocationType.SMART_REALLOCATION,
        AllocationType.SMART_FORCED,
    ):
        return "forced"
    return None


@dataclass
class EngineOutcome:
    mode: SelectionMode
    allocations: List[PlannedAllocation] = field(default_factory=list)
    waitlist: List[WaitlistEntry] = field(default_factory=list)
    unallocated: List[UnallocatedSlot] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def confirmed(self) -> List[PlannedAllocation]:
        return [a for a in self.allocations if a.is_confirmed]

    def _count(self, bucket: str) -> int:
        return sum(1 for a in self.confirmed() if choice_bucket(a) == bucket)

    @property
    def first_choice_count(self) -> int:
        return self._count("first")

    @property
    def second_choice_count(self) -> int:
        return self._count("second")

    @property
    def third_choice_count(self) -> int:
        return self._count("third")

    @property
    def forced_count(self) -> int:
        return self._count("forced")


class AllocationContext:
    """Изменяемое состояние одного прогона"""

    def __init__(self, snapshot: TermSnapshot, tracker: CapacityTracker):
        self.snapshot = snapshot
        self.tracker = tracker
        self.allocations: List[PlannedAllocation] = []
        self.unallocated: List[UnallocatedSlot] = []
        self.errors: List[str] = list(snapshot.errors)
        self.selections: List[SelectionRecord] = []
        # Выборы, отброшенные проверкой права; ученики всё равно попадают в отчёт
        self.rejected: List[SelectionRecord] = []
        self.cancelled_activity_ids: Set[int] = set()
        self._waitlist: Dict[int, List[int]] = {}
        self._slot_holders: Dict[Tuple[int, SlotKey], PlannedAllocation] = {}

    def student(self, student_id: int) -> StudentSnapshot:
        return self.snapshot.students[student_id]

    def activity(self, activity_id: int) -> ActivitySnapshot:
        return self.snapshot.activities[activity_id]

    def load_selections(self) -> None:
        """Оставляет только выборы, которые ученик имеет право сделать"""
        self.selections = []
        self.rejected = []
        for selection in sorted(self.snapshot.selections, key=lambda s: s.order_key):
            student = self.student(selection.student_id)
            activity = self.activity(selection.activity_id)
            result = is_eligible(
                student,
                activity,
                self.snapshot.invitation_for(student.id, activity.id),
            )
            if not result.eligible:
                self.errors.append(
                    f"Selection {selection.id} skipped: student {student.id} is not "
                    f"eligible for '{activity.name}' ({result.reason.value})"
                )
                self.rejected.append(selection)
                continue
            self.selections.append(selection)

    # === Слоты и вместимость ===

    def holds_slot(self, student_id: int, slot_key: SlotKey) -> bool:
        return (student_id, slot_key) in self._slot_holders

    def place(
        self,
        student_id: int,
        activity: ActivitySnapshot,
        allocation_type: AllocationType,
        allocation_round: Optional[int] = None,
        choice_rank: Optional[int] = None,
        allocation_id: Optional[int] = None,
    ) -> Optional[PlannedAllocation]:
        if not self.tracker.reserve(activity.id):
            return None

        allocation = PlannedAllocation(
            student_id=student_id,
            activity_id=activity.id,
            slot_key=activity.slot_key,
            allocation_type=allocation_type,
            allocation_round=allocation_round,
            choice_rank=choice_rank,
            allocation_id=allocation_id,
        )
        self.allocations.append(allocation)
        self._slot_holders.setdefault((student_id, activity.slot_key), allocation)

        queue = self._waitlist.get(activity.id)
        if queue and student_id in queue:
            queue.remove(student_id)
        return allocation

    def void(self, allocation: PlannedAllocation) -> None:
        """Снять подтверждённое зачисление (статус REMOVED)"""
        allocation.status = AllocationStatus.REMOVED
        self.tracker.release(allocation.activity_id)

        key = (allocation.student_id, allocation.slot_key)
        if self._slot_holders.get(key) is allocation:
            del self._slot_holders[key]
            # COMPULSORY может стоять в том же слоте - он и держит слот дальше
            for other in self.allocations:
                if (
                    other.is_confirmed
                    and other.student_id == allocation.student_id
                    and other.slot_key == allocation.slot_key
                ):
                    self._slot_holders[key] = other
                    break

    def open_activities(self, slot_key: SlotKey) -> List[ActivitySnapshot]:
        return [
            a
            for a in self.snapshot.activities_in_slot(slot_key)
            if a.id not in self.cancelled_activity_ids
        ]

    def placeable_activities(
        self, student_id: int, slot_key: SlotKey
    ) -> List[ActivitySnapshot]:
        student = self.student(student_id)
        return [
            a
            for a in self.open_activities(slot_key)
            if can_be_placed(student, a, self.snapshot.invitation_for(student_id, a.id))
        ]

    # === Выборы ===

    def selections_in_slot(self, slot_key: SlotKey) -> List[SelectionRecord]:
        return [
            s for s in self.selections if self.activity(s.activity_id).slot_key == slot_key
        ]

    def student_selections_in_slot(
        self, student_id: int, slot_key: SlotKey
    ) -> List[SelectionRecord]:
        return [s for s in self.selections_in_slot(slot_key) if s.student_id == student_id]

    def slot_keys(self) -> List[SlotKey]:
        """Слоты занятий и слоты, где остались только отброшенные выборы"""
        keys = set(self.snapshot.slot_keys())
        keys.update(self.activity(s.activity_id).slot_key for s in self.rejected)
        return sorted(keys, key=slot_sort_key)

    def rejected_students(self, slot_key: SlotKey) -> List[int]:
        """Ученики с отброшенными выборами в слоте, по самому раннему из них"""
        ordered: List[int] = []
        for selection in self.rejected:
            if self.activity(selection.activity_id).slot_key != slot_key:
                continue
            if selection.student_id not in ordered:
                ordered.append(selection.student_id)
        return ordered

    def rejected_activity_ids(self, student_id: int, slot_key: SlotKey) -> List[int]:
        return [
            s.activity_id
            for s in self.rejected
            if s.student_id == student_id
            and self.activity(s.activity_id).slot_key == slot_key
        ]

    def students_by_first_selection(
        self, slot_key: SlotKey, student_ids: Optional[Iterable[int]] = None
    ) -> List[int]:
        """Ученики в порядке их самого раннего выбора в слоте, остальные - по id"""
        ordered: List[int] = []
        for selection in self.selections_in_slot(slot_key):
            if selection.student_id not in ordered:
                ordered.append(selection.student_id)
        if student_ids is None:
            return ordered
        wanted = set(student_ids)
        rest = sorted(wanted.difference(ordered))
        return [s for s in ordered if s in wanted] + rest

    # === Лист ожидания и нераспределённые ===

    def add_to_waitlist(self, activity_id: int, student_id: int) -> None:
        queue = self._waitlist.setdefault(activity_id, [])
        if student_id not in queue:
            queue.append(student_id)

    def drop_waitlist(self, activity_id: int) -> None:
        self._waitlist.pop(activity_id, None)

    def waitlist_for(self, activity_id: int) -> List[int]:
        return list(self._waitlist.get(activity_id, ()))

    def mark_unallocated(
        self,
        student_id: int,
        slot_key: SlotKey,
        requested: Iterable[int],
        reason: UnallocatedReason,
    ) -> None:
        day_of_week, time_slot = slot_key
        self.unallocated.append(
            UnallocatedSlot(
                student_id=student_id,
                day_of_week=day_of_week,
                time_slot=time_slot,
                requested_activity_ids=tuple(requested),
                reason=reason,
            )
        )

    def cancel_activity(self, activity_id: int) -> List[int]:
        """Отменяет занятие: зачисления -> REMOVED, лист ожидания сбрасывается"""
        self.cancelled_activity_ids.add(activity_id)
        removed = []
        for allocation in self.allocations:
            if allocation.activity_id == activity_id and allocation.is_confirmed:
                self.void(allocation)
                removed.append(allocation.student_id)
        self.drop_waitlist(activity_id)
        return removed

    def outcome(self, mode: SelectionMode) -> EngineOutcome:
        waitlist = [
            WaitlistEntry(activity_id, student_id, position)
            for activity_id in sorted(self._waitlist)
            for position, student_id in enumerate(self._waitlist[activity_id], start=1)
        ]
        return EngineOutcome(
            mode=mode,
            allocations=list(self.allocations),
            waitlist=waitlist,
            unallocated=list(self.unallocated),
            errors=list(self.errors),
        )


# === Предварительная расстановка ===


def _seed_refusal(context: AllocationContext, seed: SeedRecord) -> Optional[str]:
    student = context.student(seed.student_id)
    activity = context.activity(seed.activity_id)

    if seed.allocation_type == AllocationType.MANUAL:
        # Ручное решение администратора: проверяем только само занятие
        if not activity.is_active:
            return IneligibilityReason.ACTIVITY_INACTIVE.value
        if activity.is_cancelled:
            return IneligibilityReason.ACTIVITY_CANCELLED.value
    elif seed.allocation_type == AllocationType.COMPULSORY:
        result = check_profile(student, activity)
        if not result.eligible:
            return result.reason.value
    else:
        result = is_eligible(
            student, activity, context.snapshot.invitation_for(student.id, activity.id)
        )
        if not result.eligible:
            return result.reason.value

    if seed.allocation_type != AllocationType.COMPULSORY and context.holds_slot(
        student.id, activity.slot_key
    ):
        return "slot already taken"
    return None


def _place_seed(context: AllocationContext, seed: SeedRecord) -> None:
    activity = context.activity(seed.activity_id)
    problem = _seed_refusal(context, seed)
    if problem is None:
        placed = context.place(
            seed.student_id,
            activity,
            seed.allocation_type,
            allocation_id=seed.allocation_id,
        )
        if placed is None:
            problem = "activity is full"

    if problem is None:
        return

    context.errors.append(
        f"{seed.allocation_type.value} allocation of student {seed.student_id} "
        f"to '{activity.name}' skipped: {problem}"
    )
    if seed.allocation_id is not None:
        # Сохранённое ручное зачисление больше не действует
        context.allocations.append(
            PlannedAllocation(
                student_id=seed.student_id,
                activity_id=activity.id,
                slot_key=activity.slot_key,
                allocation_type=seed.allocation_type,
                status=AllocationStatus.REMOVED,
                allocation_id=seed.allocation_id,
            )
        )


def pre_seed(context: AllocationContext) -> None:
    """MANUAL, затем COMPULSORY, затем принятые приглашения"""
    for seed in context.snapshot.manual:
        _place_seed(context, seed)
    for seed in context.snapshot.compulsory:
        _place_seed(context, seed)
    for seed in context.snapshot.accepted_invitations():
        _place_seed(context, seed)


# === Стратегии ===


class AllocationStrategy:
    mode: SelectionMode

    def allocate(self, context: AllocationContext) -> None:
        raise NotImplementedError

    def second_pass(
        self, context: AllocationContext, student_id: int, slot_key: SlotKey
    ) -> bool:
        """Повторная попытка для ученика из отменённого занятия"""
        raise NotImplementedError

    def requested_activities(
        self, context: AllocationContext, student_id: int, slot_key: SlotKey
    ) -> List[int]:
        return [
            s.activity_id for s in context.student_selections_in_slot(student_id, slot_key)
        ]


class FirstComeFirstServed(AllocationStrategy):
    """Чистый порядок подачи, без рангов и приоритетов"""

    mode = SelectionMode.FIRST_COME_FIRST_SERVED

    def allocate(self, context: AllocationContext) -> None:
        earliest: Dict[Tuple[int, SlotKey], SelectionRecord] = {}
        for selection in context.selections:
            slot_key = context.activity(selection.activity_id).slot_key
            # Более поздние выборы того же слота игнорируются
            earliest.setdefault((selection.student_id, slot_key), selection)

        for (student_id, slot_key), selection in earliest.items():
            if context.holds_slot(student_id, slot_key):
                continue
            activity = context.activity(selection.activity_id)
            if context.place(student_id, activity, AllocationType.FIRST_COME) is None:
                context.add_to_waitlist(activity.id, student_id)

        for student_id, slot_key in earliest:
            if not context.holds_slot(student_id, slot_key):
                context.mark_unallocated(
                    student_id,
                    slot_key,
                    self.requested_activities(context, student_id, slot_key),
                    UnallocatedReason.ALL_FULL,
                )

        for slot_key in context.slot_keys():
            for student_id in context.rejected_students(slot_key):
                if (student_id, slot_key) in earliest:
                    continue
                if context.holds_slot(student_id, slot_key):
                    continue
                context.mark_unallocated(
                    student_id,
                    slot_key,
                    context.rejected_activity_ids(student_id, slot_key),
                    UnallocatedReason.NO_ELIGIBLE_ACTIVITIES,
                )

    def second_pass(
        self, context: AllocationContext, student_id: int, slot_key: SlotKey
    ) -> bool:
        for selection in context.student_selections_in_slot(student_id, slot_key):
            if selection.activity_id in context.cancelled_activity_ids:
                continue
            activity = context.activity(selection.activity_id)
            if context.place(student_id, activity, AllocationType.FIRST_COME) is not None:
                return True
        return False


class SmartAllocation(AllocationStrategy):
    """Приоритет, затем ранги 1-3, затем дораспределение и принудительное"""

    mode = SelectionMode.SMART_ALLOCATION

    def allocate(self, context: AllocationContext) -> None:
        for slot_key in context.slot_keys():
            self._allocate_slot(context, slot_key)

    def requested_activities(
        self, context: AllocationContext, student_id: int, slot_key: SlotKey
    ) -> List[int]:
        selections = context.student_selections_in_slot(student_id, slot_key)
        return [s.activity_id for s in sorted(selections, key=lambda s: s.preference_key)]

    def _allocate_slot(self, context: AllocationContext, slot_key: SlotKey) -> None:
        selections = context.selections_in_slot(slot_key)
        rejected = context.rejected_students(slot_key)
        if not selections and not rejected:
            return

        for selection in selections:
            if not selection.is_priority:
                continue
            if context.holds_slot(selection.student_id, slot_key):
                continue
            activity = context.activity(selection.activity_id)
            placed = context.place(
                selection.student_id,
                activity,
                AllocationType.SMART_PRIORITY,
                allocation_round=ROUND_PRIORITY,
            )
            if placed is None:
                context.add_to_waitlist(activity.id, selection.student_id)

        for rank, allocation_round in sorted(RANKED_ROUNDS.items()):
            for selection in selections:
                if selection.is_priority or selection.rank != rank:
                    continue
                if context.holds_slot(selection.student_id, slot_key):
                    continue
                activity = context.activity(selection.activity_id)
                placed = context.place(
                    selection.student_id,
                    activity,
                    AllocationType.SMART_RANKED,
                    allocation_round=allocation_round,
                    choice_rank=rank,
                )
                # В лист ожидания - только при промахе первого выбора
                if placed is None and rank == 1:
                    context.add_to_waitlist(activity.id, selection.student_id)

        students = context.students_by_first_selection(slot_key)
        # Ученики, чьи выборы в слоте все отброшены, идут после остальных
        students += [s for s in rejected if s not in students]
        demand = {s.activity_id for s in selections}

        for student_id in students:
            if not context.holds_slot(student_id, slot_key):
                self._reallocate(context, student_id, slot_key, demand)

        for student_id in students:
            if context.holds_slot(student_id, slot_key):
                continue
            if not self._force(context, student_id, slot_key):
                self._give_up(context, student_id, slot_key)

    def _reallocate(
        self,
        context: AllocationContext,
        student_id: int,
        slot_key: SlotKey,
        demand: Set[int],
    ) -> bool:
        """Свободное занятие слота с наименьшим id, которое кто-то выбрал"""
        for activity in context.placeable_activities(student_id, slot_key):
            if activity.id not in demand or not context.tracker.has_room(activity.id):
                continue
            placed = context.place(
                student_id,
                activity,
                AllocationType.SMART_REALLOCATION,
                allocation_round=ROUND_REALLOCATION,
            )
            return placed is not None
        return False

    def _force(
        self, context: AllocationContext, student_id: int, slot_key: SlotKey
    ) -> bool:
        """Наименее заполненное доступное занятие слота"""
        candidates = [
            a
            for a in context.placeable_activities(student_id, slot_key)
            if context.tracker.has_room(a.id)
        ]
        if not candidates:
            return False
        target = min(
            candidates, key=lambda a: (context.tracker.current_enrollment(a.id), a.id)
        )
        placed = context.place(
            student_id,
            target,
            AllocationType.SMART_FORCED,
            allocation_round=ROUND_FORCED,
        )
        return placed is not None

    def _give_up(
        self, context: AllocationContext, student_id: int, slot_key: SlotKey
    ) -> None:
        if context.placeable_activities(student_id, slot_key):
            reason = UnallocatedReason.ALL_FULL
        else:
            reason = UnallocatedReason.NO_ELIGIBLE_ACTIVITIES
        requested = self.requested_activities(context, student_id, slot_key)
        requested += [
            a for a in context.rejected_activity_ids(student_id, slot_key) if a not in requested
        ]
        context.mark_unallocated(student_id, slot_key, requested, reason)

    def second_pass(
        self, context: AllocationContext, student_id: int, slot_key: SlotKey
    ) -> bool:
        selections = sorted(
            context.student_selections_in_slot(student_id, slot_key),
            key=lambda s: s.preference_key,
        )
        for selection in selections:
            if selection.activity_id in context.cancelled_activity_ids:
                continue
            activity = context.activity(selection.activity_id)
            placed = context.place(
                student_id,
                activity,
                AllocationType.SMART_REALLOCATION,
                allocation_round=ROUND_REALLOCATION,
            )
            if placed is not None:
                return True

        demand = {s.activity_id for s in context.selections_in_slot(slot_key)}
        return self._reallocate(context, student_id, slot_key, demand) or self._force(
            context, student_id, slot_key
        )


def strategy_for(mode: SelectionMode) -> AllocationStrategy:
    strategies = {
        SelectionMode.FIRST_COME_FIRST_SERVED: FirstComeFirstServed,
        SelectionMode.SMART_ALLOCATION: SmartAllocation,
    }
    return strategies[SelectionMode(mode)]()


class AllocationEngine:
    """Основной проход: отбор выборов, предварительная расстановка, раунды режима"""

    def __init__(
        self, snapshot: TermSnapshot, mode: SelectionMode, tracker: CapacityTracker
    ):
        self.mode = SelectionMode(mode)
        self.strategy = strategy_for(self.mode)
        self.context = AllocationContext(snapshot, tracker)

    def run(self) -> EngineOutcome:
        self.context.load_selections()
        pre_seed(self.context)
        self.strategy.allocate(self.context)

        logger.debug(
            f"Main allocation pass finished for term {self.context.snapshot.term_id}",
            extra={
                "term_id": self.context.snapshot.term_id,
                "mode": self.mode.value,
                "allocations": len(self.context.allocations),
                "unallocated": len(self.context.unallocated),
            },
        )
        return self.context.outcome(self.mode)
