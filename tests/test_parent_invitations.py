from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

from ecahub.parents.crud import eca as parent_crud
from ecahub.staff.crud.invitations import list_student_invitations
from ecahub.staff.models.enums import InvitationStatus, TimeSlot


class TestListParentInvitations:
    async def test_pending_invitations_of_linked_children(self, monkeypatch):
        created = datetime(2026, 9, 1, 9, 0, tzinfo=timezone.utc)
        invitation = SimpleNamespace(id=11, is_tryout=True, created_at=created)
        activity = SimpleNamespace(
            id=4,
            name="Football",
            description="U11 squad",
            day_of_week=2,
            time_slot=TimeSlot.AFTER_SCHOOL,
            location="Field",
        )
        student = SimpleNamespace(id=3, full_name="Aida Test")

        monkeypatch.setattr(
            parent_crud, "get_parent_student_ids", AsyncMock(return_value=[3, 8])
        )
        list_invitations = AsyncMock(return_value=[(invitation, activity, student)])
        monkeypatch.setattr(parent_crud, "list_student_invitations", list_invitations)
        db = AsyncMock()

        [item] = await parent_crud.list_parent_invitations(db, 2, 10)

        assert item.id == 11
        assert (item.student_id, item.student_name) == (3, "Aida Test")
        assert (item.activity_id, item.activity_name) == (4, "Football")
        assert item.activity_description == "U11 squad"
        assert item.is_tryout is True
        assert item.created_at == created
        list_invitations.assert_awaited_once_with(
            db, [3, 8], 10, status=InvitationStatus.PENDING
        )

    async def test_no_children_no_query(self):
        session = AsyncMock()

        assert await list_student_invitations(session, [], 10) == []
        session.execute.assert_not_awaited()
