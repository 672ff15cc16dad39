"""
Tests for jobs and workflow routers.

The lifecycle service singleton is replaced with an in-memory one, so the
app lifespan (settings, logging, SQLite) is not involved.
"""

import pytest
from fastapi.testclient import TestClient

from src.api._lifecycle_state import set_lifecycle_service
from src.lifecycle import InMemoryJobStore, JobLifecycleService, NotificationDispatcher
from src.lifecycle.notifications import LoggingNotificationGateway


PASSING_CHECKLIST = {
    "functionality_test": True,
    "visual_inspection": True,
    "customer_requirements": True,
    "documentation_complete": True,
}


@pytest.fixture
def lifecycle_service():
    """Install an in-memory lifecycle service for the duration of a test."""
    service = JobLifecycleService(
        InMemoryJobStore(),
        dispatcher=NotificationDispatcher(LoggingNotificationGateway(), sleep=lambda delay: None),
    )
    set_lifecycle_service(service)
    yield service
    set_lifecycle_service(None)


@pytest.fixture
def client(lifecycle_service):
    """Create test client for API."""
    from src.api.main import app
    return TestClient(app)


@pytest.fixture
def job_id(client) -> str:
    response = client.post(
        "/jobs",
        json={
            "customer_id": "cust-1",
            "organization_id": "org-1",
            "attributes": {"device": "Tablet Z", "issue": "Charging port loose"},
        },
    )
    assert response.status_code == 201
    return response.json()["job_id"]


def _transition(client, job_id, target, role, payload=None, actor_id=None, **extra):
    body = {
        "target_state": target,
        "actor": {"actor_id": actor_id or f"{role.lower()}-1", "role": role},
        "payload": payload or {},
    }
    headers = {}
    if "idempotency_key" in extra:
        headers["Idempotency-Key"] = extra.pop("idempotency_key")
    body.update(extra)
    return client.post(f"/jobs/{job_id}/transitions", json=body, headers=headers)


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestJobEndpoints:
    """Tests for /jobs CRUD endpoints."""

    def test_create_job(self, client):
        response = client.post("/jobs", json={"customer_id": "cust-1", "organization_id": "org-1"})

        assert response.status_code == 201
        data = response.json()
        assert data["state"] == "CREATED"
        assert data["version"] == 0
        assert data["history"] == []

    def test_create_job_requires_customer(self, client):
        response = client.post("/jobs", json={"organization_id": "org-1"})
        assert response.status_code == 422

    def test_get_job(self, client, job_id):
        response = client.get(f"/jobs/{job_id}")

        assert response.status_code == 200
        assert response.json()["attributes"]["device"] == "Tablet Z"

    def test_get_unknown_job(self, client):
        response = client.get("/jobs/does-not-exist")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "JOB_NOT_FOUND"

    def test_list_jobs_by_state(self, client, job_id):
        assert client.get("/jobs", params={"state": "CREATED"}).json()["total"] == 1
        assert client.get("/jobs", params={"state": "DELIVERED"}).json()["total"] == 0

    def test_list_jobs_unknown_state(self, client):
        response = client.get("/jobs", params={"state": "LIMBO"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "UNKNOWN_STATE"

    def test_history_and_report(self, client, job_id):
        _transition(client, job_id, "IN_DIAGNOSIS", "TECHNICIAN", {"technician_id": "tech-1"})

        history = client.get(f"/jobs/{job_id}/history").json()
        assert history["total"] == 1
        assert history["history"][0]["to_state"] == "IN_DIAGNOSIS"

        report = client.get(f"/jobs/{job_id}/report").json()
        assert report["current_state"]["state"] == "IN_DIAGNOSIS"
        assert "AWAITING_APPROVAL" in report["next_states"]


class TestTransitionEndpoints:
    """Tests for /jobs/{job_id}/transitions."""

    def test_available_transitions(self, client, job_id):
        response = client.get(f"/jobs/{job_id}/transitions", params={"role": "CUSTOMER"})

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "CREATED"
        assert data["available_states"] == ["CANCELLED", "DISPUTED"]

    def test_available_transitions_unknown_role(self, client, job_id):
        response = client.get(f"/jobs/{job_id}/transitions", params={"role": "INTERN"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "UNKNOWN_ROLE"

    def test_transition_success(self, client, job_id):
        response = _transition(client, job_id, "CANCELLED", "CUSTOMER", {"reason": "Fixed it myself"})

        assert response.status_code == 200
        data = response.json()
        assert data["job"]["state"] == "CANCELLED"
        assert data["job"]["version"] == 1
        assert data["replayed"] is False
        assert data["side_effects"][0]["recipient_role"] == "CUSTOMER"

    def test_permission_denied_is_403(self, client, job_id):
        response = _transition(client, job_id, "CANCELLED", "TECHNICIAN", {"reason": "Too busy"})

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "PERMISSION_DENIED"

    def test_illegal_edge_is_422(self, client, job_id):
        response = _transition(client, job_id, "COMPLETED", "ORG_MANAGER")

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "ILLEGAL_EDGE"
        assert detail["field"] == "state"

    def test_missing_field_is_422(self, client, job_id):
        response = _transition(client, job_id, "CANCELLED", "CUSTOMER")

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "reason"

    def test_incomplete_checklist(self, client, job_id):
        steps = [
            ("IN_DIAGNOSIS", "TECHNICIAN", {"technician_id": "tech-1"}),
            ("AWAITING_APPROVAL", "TECHNICIAN",
             {"diagnosis_notes": "Port worn", "estimated_hours": 1, "estimated_cost": 60}),
            ("APPROVED", "CUSTOMER", {}),
            ("IN_PROGRESS", "TECHNICIAN", {}),
            ("TESTING", "TECHNICIAN", {"actual_hours": 1}),
            ("QUALITY_CHECK", "TECHNICIAN", {"testing_results": "Charges at full speed"}),
        ]
        for target, role, payload in steps:
            assert _transition(client, job_id, target, role, payload).status_code == 200

        response = _transition(
            client, job_id, "COMPLETED", "ORG_MANAGER", {"quality_checklist": {"functionality_test": True}}
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INCOMPLETE_CHECKLIST"

        response = _transition(client, job_id, "COMPLETED", "ORG_MANAGER", {"quality_checklist": PASSING_CHECKLIST})
        assert response.status_code == 200
        assert response.json()["job"]["state"] == "COMPLETED"

    def test_stale_version_is_409(self, client, job_id):
        _transition(client, job_id, "IN_DIAGNOSIS", "TECHNICIAN", {"technician_id": "tech-1"})

        response = _transition(
            client, job_id, "CANCELLED", "ORG_OWNER", {"reason": "Duplicate"}, expected_version=0
        )

        assert response.status_code == 409
        assert response.json()["detail"]["actual_version"] == 1

    def test_unknown_job_is_404(self, client):
        response = _transition(client, "missing", "CANCELLED", "ORG_OWNER", {"reason": "x"})
        assert response.status_code == 404

    def test_idempotency_key_header(self, client, job_id):
        first = _transition(client, job_id, "CANCELLED", "CUSTOMER", {"reason": "Moving"}, idempotency_key="abc")
        second = _transition(client, job_id, "CANCELLED", "CUSTOMER", {"reason": "Moving"}, idempotency_key="abc")

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["replayed"] is True
        assert second.json()["job"] == first.json()["job"]

    def test_negative_expected_version_rejected(self, client, job_id):
        response = _transition(client, job_id, "CANCELLED", "CUSTOMER", {"reason": "x"}, expected_version=-1)
        assert response.status_code == 422

    def test_non_text_reason_is_422_and_not_committed(self, client, job_id):
        response = _transition(client, job_id, "CANCELLED", "CUSTOMER", {"reason": 42})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_FIELD"
        assert response.json()["detail"]["field"] == "reason"

        job = client.get(f"/jobs/{job_id}")
        assert job.status_code == 200
        assert job.json()["state"] == "CREATED"
        assert client.get(f"/jobs/{job_id}/history").json()["total"] == 0

    def test_non_text_technician_is_422(self, client, job_id):
        response = _transition(client, job_id, "IN_DIAGNOSIS", "TECHNICIAN", {"technician_id": ["tech-1"]})

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "technician_id"

    def test_dispute_cannot_reassign_technician(self, client, job_id):
        _transition(client, job_id, "IN_DIAGNOSIS", "TECHNICIAN", {"technician_id": "tech-1"})

        response = _transition(
            client, job_id, "DISPUTED", "CUSTOMER", {"reason": "Slow", "technician_id": "cust-pick"}
        )

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "technician_id"
        assert client.get(f"/jobs/{job_id}").json()["technician_id"] == "tech-1"

    def test_error_body_shapes(self, client, job_id):
        not_found = client.get("/jobs/does-not-exist").json()["detail"]
        _transition(client, job_id, "IN_DIAGNOSIS", "TECHNICIAN", {"technician_id": "tech-1"})
        conflict = _transition(
            client, job_id, "CANCELLED", "ORG_OWNER", {"reason": "Duplicate"}, expected_version=0
        ).json()["detail"]

        assert set(not_found) == {"error", "message"}
        assert conflict["error"] == "CONCURRENT_MODIFICATION"
        assert conflict["expected_version"] == 0
        assert conflict["actual_version"] == 1
        assert "code" not in conflict


class TestWorkflowEndpoints:

    def test_describe_workflow(self, client):
        response = client.get("/workflow")

        assert response.status_code == 200
        data = response.json()
        assert len(data["states"]) == 13
        assert any(t["gate"] == "dispute_reopen" for t in data["transitions"])

    def test_run_escalations_with_fresh_jobs(self, client, job_id):
        response = client.post("/workflow/escalations")

        assert response.status_code == 200
        assert response.json()["escalated"] == 0

    def test_analytics_counts_every_state(self, client, job_id):
        _transition(client, job_id, "CANCELLED", "CUSTOMER", {"reason": "Moving"})
        client.post("/jobs", json={"customer_id": "cust-2", "organization_id": "org-1"})

        response = client.get("/workflow/analytics")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["by_state"]["CANCELLED"] == 1
        assert data["by_state"]["CREATED"] == 1
        assert len(data["by_state"]) == 13

    def test_analytics_date_range(self, client, job_id):
        later = client.get("/workflow/analytics", params={"date_from": "2000-01-01T00:00:00Z"})
        earlier = client.get("/workflow/analytics", params={"date_to": "2000-01-01T00:00:00Z"})

        assert later.json()["total"] == 1
        assert later.json()["date_from"] == "2000-01-01T00:00:00Z"
        assert earlier.json()["total"] == 0

    def test_analytics_reversed_range_is_422(self, client):
        response = client.get(
            "/workflow/analytics",
            params={"date_from": "2026-02-01T00:00:00", "date_to": "2026-01-01T00:00:00"},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_DATE_RANGE"

    def test_analytics_bad_date_is_422(self, client):
        response = client.get("/workflow/analytics", params={"date_from": "yesterday-ish"})
        assert response.status_code == 422
