"""Tests for building the immutable term snapshot from database rows."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ecahub.staff.models.enums import (
    ActivityType,
    AllocationType,
    InvitationStatus,
    SelectionMode,
    TimeSlot,
)
from ecahub.staff.services.selection_store import load_term_snapshot, slot_sort_key

from factories import (
    make_activity,
    make_compulsory,
    make_invitation,
    make_manual,
    make_selection,
    make_snapshot,
    make_student,
)


class TestBuildTermSnapshot:
    def test_selections_sorted_by_submission(self):
        snapshot = make_snapshot(
            [make_activity(1)],
            [make_student(1), make_student(2)],
            [make_selection(5, 1, 1, minute=9), make_selection(2, 2, 1, minute=3)],
        )

        assert [s.id for s in snapshot.selections] == [2, 5]
        assert snapshot.errors == ()

    def test_broken_references_are_skipped(self):
        snapshot = make_snapshot(
            [make_activity(1)],
            [make_student(1)],
            [
                make_selection(1, 1, 1),
                make_selection(2, 1, 42),
                make_selection(3, 7, 1),
                make_selection(4, 1, None),
            ],
            invitations=[make_invitation(1, 1, 77)],
        )

        assert [s.id for s in snapshot.selections] == [1]
        assert snapshot.invitations == {}
        assert snapshot.errors == (
            "Selection 2 skipped: activity 42 does not exist",
            "Selection 3 skipped: student 7 does not exist",
            "Selection 4 skipped: activity None does not exist",
            "Invitation 1 skipped: activity 77 does not exist",
        )

    def test_invalid_rank_and_duplicates(self):
        snapshot = make_snapshot(
            [make_activity(1)],
            [make_student(1)],
            [
                make_selection(1, 1, 1, rank=4),
                make_selection(2, 1, 1),
                make_selection(3, 1, 1, rank=2),
            ],
        )

        assert [s.id for s in snapshot.selections] == [2]
        assert "invalid rank 4" in snapshot.errors[0]
        assert "duplicate selection" in snapshot.errors[1]

    def test_compulsory_roster_requires_compulsory_activity(self):
        snapshot = make_snapshot(
            [make_activity(1, activity_type=ActivityType.COMPULSORY), make_activity(2)],
            [make_student(1)],
            compulsory=[make_compulsory(1, 1, 1), make_compulsory(2, 1, 2)],
        )

        assert [(c.activity_id, c.allocation_type) for c in snapshot.compulsory] == [
            (1, AllocationType.COMPULSORY)
        ]
        assert snapshot.errors == ("Compulsory assignment 2 skipped: activity 2 is not compulsory",)

    def test_manual_seeds_keep_row_id(self):
        snapshot = make_snapshot(
            [make_activity(1)], [make_student(1)], manual=[make_manual(31, 1, 1)]
        )

        assert snapshot.manual[0].allocation_id == 31
        assert snapshot.manual[0].allocation_type == AllocationType.MANUAL

    def test_accepted_invitations_only(self):
        snapshot = make_snapshot(
            [make_activity(1), make_activity(2)],
            [make_student(1), make_student(2)],
            invitations=[
                make_invitation(1, 2, 1),
                make_invitation(2, 1, 2, status=InvitationStatus.PENDING),
                make_invitation(3, 1, 1),
            ],
        )

        seeds = snapshot.accepted_invitations()
        assert [(s.activity_id, s.student_id) for s in seeds] == [(1, 1), (1, 2)]
        assert snapshot.invitation_for(1, 2).status == InvitationStatus.PENDING

    def test_slot_keys_skip_unusable_activities(self):
        snapshot = make_snapshot(
            [
                make_activity(3, day_of_week=2),
                make_activity(1, day_of_week=0, time_slot=TimeSlot.AFTER_SCHOOL),
                make_activity(2, day_of_week=0, time_slot=TimeSlot.BEFORE_SCHOOL),
                make_activity(4, day_of_week=4, is_active=False),
            ],
            [make_student(1)],
        )

        assert snapshot.slot_keys() == [
            (0, TimeSlot.BEFORE_SCHOOL),
            (0, TimeSlot.AFTER_SCHOOL),
            (2, TimeSlot.AFTER_SCHOOL),
        ]
        assert snapshot.activities_in_slot((4, TimeSlot.AFTER_SCHOOL)) == []

    def test_slot_sort_key(self):
        assert slot_sort_key((1, TimeSlot.BEFORE_SCHOOL)) < slot_sort_key((1, TimeSlot.AFTER_SCHOOL))
        assert slot_sort_key((0, TimeSlot.AFTER_SCHOOL)) < slot_sort_key((1, TimeSlot.BEFORE_SCHOOL))


def _scalars_result(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    return result


class TestLoadTermSnapshot:
    @pytest.mark.asyncio
    async def test_reads_all_term_data(self):
        session = MagicMock()
        session.execute = AsyncMock(
            side_effect=[
                _scalars_result([make_activity(1)]),
                _scalars_result([make_student(1)]),
                _scalars_result([make_selection(1, 1, 1)]),
                _scalars_result([]),
                _scalars_result([]),
                _scalars_result([]),
            ]
        )

        snapshot = await load_term_snapshot(session, 3, 1, SelectionMode.FIRST_COME_FIRST_SERVED)

        assert snapshot.term_id == 3
        assert snapshot.default_selection_mode == SelectionMode.FIRST_COME_FIRST_SERVED
        assert list(snapshot.activities) == [1]
        assert len(snapshot.selections) == 1
        assert session.execute.await_count == 6

    @pytest.mark.asyncio
    async def test_term_without_activities(self):
        session = MagicMock()
        session.execute = AsyncMock(
            side_effect=[
                _scalars_result([]),
                _scalars_result([make_student(1)]),
                _scalars_result([]),
                _scalars_result([]),
            ]
        )

        snapshot = await load_term_snapshot(session, 3, 1, SelectionMode.SMART_ALLOCATION)

        assert snapshot.activities == {}
        assert session.execute.await_count == 4
