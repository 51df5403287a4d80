from collections import Counter
from typing import Dict, Iterable, Optional

from ecahub.core.exceptions import CapacityInvariantViolation
from ecahub.staff.services.selection_store import ActivitySnapshot


class CapacityTracker:
    """
    Счётчики зачислений по занятиям на время одного прогона распределения.

    Создаётся на каждый прогон и передаётся явно; между прогонами не
    разделяется. Неизвестный activity_id - KeyError.
    """

    def __init__(self, activities: Iterable[ActivitySnapshot]):
        self._max_capacity: Dict[int, Optional[int]] = {}
        self._enrollment: Dict[int, int] = {}
        for activity in activities:
            self._max_capacity[activity.id] = activity.max_capacity
            self._enrollment[activity.id] = 0

    def current_enrollment(self, activity_id: int) -> int:
        return self._enrollment[activity_id]

    def remaining(self, activity_id: int) -> Optional[int]:
        """Свободные места; None если вместимость не ограничена"""
        max_capacity = self._max_capacity[activity_id]
        if max_capacity is None:
            return None
        return max_capacity - self._enrollment[activity_id]

    def has_room(self, activity_id: int) -> bool:
        remaining = self.remaining(activity_id)
        return remaining is None or remaining > 0

    def reserve(self, activity_id: int) -> bool:
        """Занять место; False если занятие заполнено"""
        if not self.has_room(activity_id):
            return False
        self._enrollment[activity_id] += 1
        self._check(activity_id)
        return True

    def release(self, activity_id: int) -> None:
        self._enrollment[activity_id] -= 1
        self._check(activity_id)

    def snapshot(self) -> Dict[int, int]:
        return dict(self._enrollment)

    def verify(self, confirmed_activity_ids: Iterable[int]) -> None:
        """Сверка счётчиков с фактическими подтверждёнными зачислениями"""
        actual = Counter(confirmed_activity_ids)
        for activity_id in self._enrollment:
            if actual.get(activity_id, 0) != self._enrollment[activity_id]:
                raise CapacityInvariantViolation(
                    activity_id, actual.get(activity_id, 0), self._max_capacity[activity_id]
                )
            self._check(activity_id)

    def _check(self, activity_id: int) -> None:
        enrollment = self._enrollment[activity_id]
        max_capacity = self._max_capacity[activity_id]
        if enrollment < 0 or (max_capacity is not None and enrollment > max_capacity):
            raise CapacityInvariantViolation(activity_id, enrollment, max_capacity)
