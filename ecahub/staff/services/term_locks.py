import asyncio
from contextlib import asynccontextmanager
from typing import Dict

from ecahub.core.exceptions import LockConflictError


class TermLockRegistry:
    """
    Блокировки семестров внутри процесса.

    Вторая попытка занять тот же семестр не ждёт, а сразу получает
    LockConflictError. Межпроцессную защиту даёт SELECT ... FOR UPDATE NOWAIT.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def is_locked(self, term_id: int) -> bool:
        lock = self._locks.get(term_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, term_id: int, operation: str = "allocation"):
        lock = self._locks.setdefault(term_id, asyncio.Lock())
        if lock.locked():
            raise LockConflictError(term_id, operation)

        await lock.acquire()
        try:
            yield
        finally:
            lock.release()


term_locks = TermLockRegistry()
