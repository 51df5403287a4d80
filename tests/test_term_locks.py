import pytest

from ecahub.core.exceptions import LockConflictError
from ecahub.staff.models.enums import TermStatus
from ecahub.staff.models.terms import EcaTerm
from ecahub.staff.services.term_locks import TermLockRegistry


class TestTermLockRegistry:
    async def test_second_acquire_fails_fast(self):
        locks = TermLockRegistry()

        async with locks.acquire(1):
            assert locks.is_locked(1)
            with pytest.raises(LockConflictError) as exc_info:
                async with locks.acquire(1, operation="publish"):
                    pass

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["retryable"] is True
        assert not locks.is_locked(1)

    async def test_other_terms_not_blocked(self):
        locks = TermLockRegistry()

        async with locks.acquire(1):
            async with locks.acquire(2):
                assert locks.is_locked(1) and locks.is_locked(2)

    async def test_released_after_error(self):
        locks = TermLockRegistry()

        with pytest.raises(RuntimeError):
            async with locks.acquire(1):
                raise RuntimeError("boom")

        assert not locks.is_locked(1)
        async with locks.acquire(1):
            pass


class TestTermStatusMachine:
    @pytest.mark.parametrize(
        "current,target",
        [
            (TermStatus.DRAFT, TermStatus.REGISTRATION_OPEN),
            (TermStatus.REGISTRATION_OPEN, TermStatus.REGISTRATION_CLOSED),
            (TermStatus.REGISTRATION_CLOSED, TermStatus.ALLOCATION_COMPLETE),
            (TermStatus.ALLOCATION_COMPLETE, TermStatus.ACTIVE),
            (TermStatus.ACTIVE, TermStatus.COMPLETED),
        ],
    )
    def test_forward_transitions(self, current, target):
        assert EcaTerm(status=current).can_transition_to(target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (TermStatus.DRAFT, TermStatus.REGISTRATION_CLOSED),
            (TermStatus.REGISTRATION_CLOSED, TermStatus.REGISTRATION_OPEN),
            (TermStatus.COMPLETED, TermStatus.DRAFT),
            (TermStatus.ACTIVE, TermStatus.ACTIVE),
        ],
    )
    def test_rejected_transitions(self, current, target):
        assert not EcaTerm(status=current).can_transition_to(target)

    def test_immutable_after_start(self):
        assert EcaTerm(status=TermStatus.ACTIVE).is_immutable
        assert EcaTerm(status=TermStatus.COMPLETED).is_immutable
        assert not EcaTerm(status=TermStatus.ALLOCATION_COMPLETE).is_immutable
