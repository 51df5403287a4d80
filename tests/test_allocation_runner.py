"""
Tests for AllocationRunner with the database layer mocked out.

The session is an AsyncMock; term row locking, settings and the snapshot
loader are patched on the runner module.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from ecahub.core.exceptions import (
    CapacityInvariantViolation,
    LockConflictError,
    StateConflictError,
)
from ecahub.staff.models.allocations import EcaAllocation
from ecahub.staff.models.enums import SelectionMode, TermStatus
from ecahub.staff.models.waitlist import EcaWaitlist
from ecahub.staff.schemas.allocation import AllocationRunOptions
from ecahub.staff.services import allocation_runner
from ecahub.staff.services.allocation_runner import (
    AllocationRunner,
    cancel_reason_for,
    ensure_can_run,
    pipeline_options,
)
from ecahub.staff.services.term_locks import TermLockRegistry

from factories import make_activity, make_selection, make_snapshot, make_student


def _term(status=TermStatus.REGISTRATION_CLOSED, allocation_run=False):
    return SimpleNamespace(id=1, school_id=10, status=status, allocation_run=allocation_run)


def _session():
    session = AsyncMock()
    session.add = MagicMock()
    return session


def _snapshot():
    """Chess на 2 места, три ученика хотят туда"""
    return make_snapshot(
        activities=[make_activity(1, name="Chess", max_capacity=2)],
        students=[make_student(1), make_student(2), make_student(3)],
        selections=[make_selection(i, i, 1) for i in (1, 2, 3)],
        mode=SelectionMode.FIRST_COME_FIRST_SERVED,
    )


@pytest.fixture
def patched(monkeypatch):
    term = _term()
    mocks = SimpleNamespace(
        term=term,
        lock_term_row=AsyncMock(return_value=term),
        find_settings=AsyncMock(return_value=None),
        load_term_snapshot=AsyncMock(return_value=_snapshot()),
    )
    monkeypatch.setattr(allocation_runner, "lock_term_row", mocks.lock_term_row)
    monkeypatch.setattr(allocation_runner, "find_settings", mocks.find_settings)
    monkeypatch.setattr(allocation_runner, "load_term_snapshot", mocks.load_term_snapshot)
    return mocks


class TestRunGuards:
    @pytest.mark.parametrize(
        "status",
        [TermStatus.DRAFT, TermStatus.REGISTRATION_OPEN, TermStatus.ALLOCATION_COMPLETE],
    )
    def test_only_after_registration_closes(self, status):
        with pytest.raises(StateConflictError) as exc_info:
            ensure_can_run(_term(status=status), override=False)
        assert exc_info.value.details["current_state"] == status.value

    def test_rerun_requires_override(self):
        with pytest.raises(StateConflictError) as exc_info:
            ensure_can_run(_term(allocation_run=True), override=False)
        assert exc_info.value.details["allocation_run"] is True

    def test_rerun_with_override(self):
        ensure_can_run(_term(allocation_run=True), override=True)

    def test_default_options(self):
        options = pipeline_options(None)
        assert options.selection_mode is None
        assert options.cancel_below_minimum is True

    def test_explicit_options(self):
        options = pipeline_options(
            AllocationRunOptions(
                selection_mode=SelectionMode.SMART_ALLOCATION, cancel_below_minimum=False
            )
        )
        assert options.selection_mode == SelectionMode.SMART_ALLOCATION
        assert options.cancel_below_minimum is False

    def test_cancel_reason(self):
        assert cancel_reason_for(5) == "Minimum capacity of 5 not met"


class TestRun:
    async def test_run_persists_and_commits(self, patched):
        session = _session()

        result = await AllocationRunner(session, TermLockRegistry()).run(1, 10, actor_id=7)

        assert result.success is True
        assert result.selection_mode == SelectionMode.FIRST_COME_FIRST_SERVED
        assert result.total_allocations == 2
        assert result.waitlisted == 1
        assert patched.term.allocation_run is True
        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()

        added = [call.args[0] for call in session.add.call_args_list]
        assert sum(isinstance(obj, EcaAllocation) for obj in added) == 2
        assert sum(isinstance(obj, EcaWaitlist) for obj in added) == 1

    async def test_default_mode_from_settings(self, patched):
        patched.find_settings.return_value = SimpleNamespace(
            selection_mode=SelectionMode.SMART_ALLOCATION
        )
        session = _session()

        await AllocationRunner(session, TermLockRegistry()).run(1, 10)

        patched.load_term_snapshot.assert_awaited_once_with(
            session, 1, 10, SelectionMode.SMART_ALLOCATION
        )

    async def test_concurrent_run_rejected(self, patched):
        locks = TermLockRegistry()
        session = _session()

        async with locks.acquire(1):
            with pytest.raises(LockConflictError):
                await AllocationRunner(session, locks).run(1, 10)

        patched.lock_term_row.assert_not_awaited()
        session.commit.assert_not_awaited()

    async def test_state_conflict_rolls_back(self, patched):
        patched.term.allocation_run = True
        session = _session()

        with pytest.raises(StateConflictError):
            await AllocationRunner(session, TermLockRegistry()).run(1, 10)

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    async def test_capacity_violation_rolls_back(self, patched, monkeypatch):
        def _broken_pipeline(snapshot, options):
            raise CapacityInvariantViolation(1, 3, 2)

        monkeypatch.setattr(allocation_runner, "run_pipeline", _broken_pipeline)
        locks = TermLockRegistry()
        session = _session()

        with pytest.raises(CapacityInvariantViolation):
            await AllocationRunner(session, locks).run(1, 10)

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()
        assert patched.term.allocation_run is False
        assert not locks.is_locked(1)


class TestPreviewAndPublish:
    async def test_preview_does_not_write(self, patched, monkeypatch):
        monkeypatch.setattr(
            allocation_runner, "get_term", AsyncMock(return_value=patched.term)
        )
        session = _session()

        preview = await AllocationRunner(session, TermLockRegistry()).preview(1, 10)

        assert preview.total_allocations == 2
        assert preview.total_waitlist == 1
        assert preview.result.total_allocations == 2
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()
        session.add.assert_not_called()

    async def test_publish_under_lock(self, monkeypatch):
        published = _term(status=TermStatus.ALLOCATION_COMPLETE, allocation_run=True)
        transition = AsyncMock(return_value=published)
        monkeypatch.setattr(allocation_runner, "transition_term_status", transition)
        locks = TermLockRegistry()

        term = await AllocationRunner(_session(), locks).publish(1, 10, actor_id=7)

        assert term.status == TermStatus.ALLOCATION_COMPLETE
        assert transition.await_args.args[1:] == (1, 10, TermStatus.ALLOCATION_COMPLETE)

        async with locks.acquire(1):
            with pytest.raises(LockConflictError):
                await AllocationRunner(_session(), locks).publish(1, 10)
