"""
HTTP-level tests: authentication, role checks and error mapping.

The database session is overridden and services are patched, so no
PostgreSQL is needed. The client is created without entering the
lifespan, which would connect to the database.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from ecahub.core.database import get_session
from ecahub.core.exceptions import LockConflictError, StateConflictError
from ecahub.core.jwt_auth import jwt_manager
from ecahub.main import app
from ecahub.parents.routers import eca as parent_eca
from ecahub.staff.models.enums import SelectionMode, TermStatus
from ecahub.staff.routers import allocation as allocation_router
from ecahub.staff.services.allocation_preview import build_preview
from ecahub.staff.services.allocation_pipeline import AllocationOptions, run_pipeline
from ecahub.staff.services.result_reporter import build_allocation_result

from factories import make_activity, make_selection, make_snapshot, make_student


def _headers(role, user_id=1, school_id=10):
    token = jwt_manager.create_access_token(user_id, role, school_id)
    return {"Authorization": f"Bearer {token}"}


ADMIN = _headers("admin")
PARENT = _headers("parent", user_id=2)


async def _fake_session():
    yield MagicMock()


@pytest.fixture
def client():
    app.dependency_overrides[get_session] = _fake_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def runner(monkeypatch):
    instance = MagicMock()
    instance.run = AsyncMock()
    instance.preview = AsyncMock()
    instance.publish = AsyncMock()
    monkeypatch.setattr(allocation_router, "AllocationRunner", MagicMock(return_value=instance))
    return instance


def _result():
    snapshot = make_snapshot(
        [make_activity(1, name="Chess", max_capacity=1)],
        [make_student(1), make_student(2)],
        [make_selection(1, 1, 1), make_selection(2, 2, 1)],
    )
    return build_allocation_result(run_pipeline(snapshot, AllocationOptions()))


class TestAuth:
    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_missing_token(self, client):
        response = client.post("/api/v1/eca/terms/1/run-allocation")
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client):
        response = client.post(
            "/api/v1/eca/terms/1/run-allocation",
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401
        assert response.json()["error"] == "AUTHENTICATION_ERROR"

    def test_parent_cannot_run_allocation(self, client, runner):
        response = client.post("/api/v1/eca/terms/1/run-allocation", headers=PARENT)

        assert response.status_code == 403
        assert response.json()["error"] == "AUTHORIZATION_ERROR"
        runner.run.assert_not_awaited()

    def test_admin_cannot_use_parent_endpoints(self, client):
        response = client.get("/api/v1/eca/parent/terms", headers=ADMIN)
        assert response.status_code == 403


class TestAllocationEndpoints:
    def test_run_allocation(self, client, runner):
        runner.run.return_value = _result()

        response = client.post(
            "/api/v1/eca/terms/5/run-allocation",
            json={"selection_mode": "SMART_ALLOCATION", "override": True},
            headers=ADMIN,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["total_allocations"] == 1
        assert body["waitlisted"] == 1

        term_id, school_id, options = runner.run.await_args.args
        assert (term_id, school_id) == (5, 10)
        assert options.selection_mode == SelectionMode.SMART_ALLOCATION
        assert options.override is True
        assert runner.run.await_args.kwargs["actor_id"] == 1

    def test_run_without_body(self, client, runner):
        runner.run.return_value = _result()

        response = client.post("/api/v1/eca/terms/5/run-allocation", headers=ADMIN)

        assert response.status_code == 200
        assert runner.run.await_args.args[2] is None

    def test_state_conflict(self, client, runner):
        runner.run.side_effect = StateConflictError(
            "Allocation can only run once registration is closed",
            current_state=TermStatus.REGISTRATION_OPEN.value,
        )

        response = client.post("/api/v1/eca/terms/5/run-allocation", headers=ADMIN)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "STATE_CONFLICT"
        assert body["details"]["current_state"] == "REGISTRATION_OPEN"

    def test_lock_conflict_is_retryable(self, client, runner):
        runner.run.side_effect = LockConflictError(5)

        response = client.post("/api/v1/eca/terms/5/run-allocation", headers=ADMIN)

        assert response.status_code == 409
        assert response.json()["details"]["retryable"] is True

    def test_preview_options_from_query(self, client, runner):
        snapshot = make_snapshot([make_activity(1)], [make_student(1)], [make_selection(1, 1, 1)])
        runner.preview.return_value = build_preview(run_pipeline(snapshot, AllocationOptions()))

        response = client.get(
            "/api/v1/eca/terms/5/allocation-preview",
            params={"selection_mode": "FIRST_COME_FIRST_SERVED", "cancel_below_minimum": "false"},
            headers=ADMIN,
        )

        assert response.status_code == 200
        assert response.json()["total_allocations"] == 1
        options = runner.preview.await_args.args[2]
        assert options.selection_mode == SelectionMode.FIRST_COME_FIRST_SERVED
        assert options.cancel_below_minimum is False

    def test_preview_rejects_unknown_mode(self, client, runner):
        response = client.get(
            "/api/v1/eca/terms/5/allocation-preview",
            params={"selection_mode": "LOTTERY"},
            headers=ADMIN,
        )
        assert response.status_code == 422
        runner.preview.assert_not_awaited()


class TestParentEndpoints:
    def test_list_terms(self, client, monkeypatch):
        list_terms = AsyncMock(return_value=[])
        monkeypatch.setattr(parent_eca, "list_parent_terms", list_terms)

        response = client.get("/api/v1/eca/parent/terms", headers=PARENT)

        assert response.status_code == 200
        assert response.json() == []
        assert list_terms.await_args.args[1] == 10

    def test_duplicate_selection_rejected(self, client, monkeypatch):
        submit = AsyncMock()
        monkeypatch.setattr(parent_eca, "submit_selections", submit)

        response = client.put(
            "/api/v1/eca/parent/terms/1/selections",
            json={"student_id": 3, "selections": [{"activity_id": 1}, {"activity_id": 1}]},
            headers=PARENT,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"
        submit.assert_not_awaited()

    def test_pending_invitations(self, client, monkeypatch):
        list_invitations = AsyncMock(return_value=[])
        monkeypatch.setattr(parent_eca, "list_parent_invitations", list_invitations)

        response = client.get("/api/v1/eca/parent/invitations", headers=PARENT)

        assert response.status_code == 200
        assert response.json() == []
        assert list_invitations.await_args.args[1:] == (2, 10)

    def test_student_id_required_for_term_view(self, client):
        response = client.get("/api/v1/eca/parent/terms/1", headers=PARENT)
        assert response.status_code == 422
