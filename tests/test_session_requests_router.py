# tests/test_session_requests_router.py
import pytest
from fastapi.testclient import TestClient

from tutor_sessions.core.exceptions import CalendarAuthError
from tutor_sessions.main import app
from tutor_sessions.models import SessionRequest
from tutor_sessions.models.user import UserRole
from tutor_sessions.services.calendar_service import get_calendar_service

client = TestClient(app)

NEW_REQUEST = {
    "subject": "PTE Speaking",
    "preferredDate": "2025-03-01",
    "preferredTime": "10:00",
    "duration": 60,
    "description": "Focus on read-aloud",
}


@pytest.fixture
def calendar(fake_calendar):
    app.dependency_overrides[get_calendar_service] = lambda: fake_calendar
    yield fake_calendar
    app.dependency_overrides.pop(get_calendar_service, None)


def _create(student, auth_headers) -> dict:
    resp = client.post("/session-requests", json=NEW_REQUEST, headers=auth_headers(student))
    assert resp.status_code == 201, resp.text
    return resp.json()["request"]


def _assign(request_id, admin, tutor, auth_headers, **extra) -> dict:
    body = {"tutorId": tutor.id, "scheduledDateTime": "2030-03-01T10:00:00Z"}
    body.update(extra)
    resp = client.put(
        f"/session-requests/{request_id}/assign", json=body, headers=auth_headers(admin)
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def _stored(db, request_id) -> SessionRequest:
    db.expire_all()
    return db.get(SessionRequest, request_id)


# ---------- create / read ----------


def test_student_creates_request(db, student, auth_headers):
    created = _create(student, auth_headers)

    assert created["status"] == "PENDING"
    assert created["studentId"] == student.id
    assert created["tutorId"] is None
    assert created["subject"] == "PTE Speaking"
    assert created["preferredDate"] == "2025-03-01"
    assert created["preferredTime"] == "10:00"
    assert created["duration"] == 60
    assert created["version"] == 1
    assert created["student"]["email"] == student.email

    resp = client.get(f"/session-requests/{created['id']}", headers=auth_headers(student))
    assert resp.status_code == 200
    assert resp.json()["request"]["subject"] == "PTE Speaking"


def test_create_requires_student_role(db, tutor, auth_headers):
    resp = client.post("/session-requests", json=NEW_REQUEST, headers=auth_headers(tutor))
    assert resp.status_code == 403


def test_create_requires_token(db):
    resp = client.post("/session-requests", json=NEW_REQUEST)
    assert resp.status_code == 401


@pytest.mark.parametrize(
    "bad_fields",
    [{"preferredTime": "9am"}, {"subject": ""}, {"duration": -5}, {"preferredDate": None}],
)
def test_create_with_invalid_fields_returns_400(db, student, auth_headers, bad_fields):
    body = {**NEW_REQUEST, **bad_fields}
    resp = client.post("/session-requests", json=body, headers=auth_headers(student))
    assert resp.status_code == 400


def test_unknown_request_returns_404(db, admin, auth_headers):
    resp = client.get("/session-requests/nope", headers=auth_headers(admin))
    assert resp.status_code == 404


def test_other_student_cannot_see_request(db, student, user_factory, auth_headers):
    other = user_factory(UserRole.STUDENT, "other@example.com")
    created = _create(student, auth_headers)

    resp = client.get(f"/session-requests/{created['id']}", headers=auth_headers(other))
    assert resp.status_code == 404


def test_listing_per_role(db, admin, tutor, student, user_factory, auth_headers, calendar):
    other_tutor = user_factory(UserRole.TUTOR, "other-tutor@example.com")
    first = _create(student, auth_headers)
    second = _create(student, auth_headers)
    _assign(first["id"], admin, tutor, auth_headers)

    resp = client.get("/session-requests", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert {r["id"] for r in resp.json()["requests"]} == {first["id"], second["id"]}

    resp = client.get("/session-requests?status=PENDING", headers=auth_headers(admin))
    assert [r["id"] for r in resp.json()["requests"]] == [second["id"]]

    resp = client.get("/session-requests", headers=auth_headers(tutor))
    assert [r["id"] for r in resp.json()["requests"]] == [first["id"]]

    resp = client.get("/tutor/session-requests", headers=auth_headers(tutor))
    assert [r["id"] for r in resp.json()["requests"]] == [first["id"]]

    resp = client.get("/tutor/session-requests", headers=auth_headers(other_tutor))
    assert resp.json()["requests"] == []

    resp = client.get("/session-requests/my-requests", headers=auth_headers(student))
    assert len(resp.json()["requests"]) == 2

    resp = client.get("/session-requests", headers=auth_headers(student))
    assert resp.status_code == 403


# ---------- assign ----------


def test_assign_creates_events_and_shapes_response(db, admin, tutor, student, auth_headers, calendar):
    created = _create(student, auth_headers)

    data = _assign(created["id"], admin, tutor, auth_headers, adminNotes="Bring past papers")

    assert data["success"] is True
    assert data["message"] == "Tutor assigned and calendar events created successfully"
    request = data["request"]
    assert request["status"] == "ASSIGNED"
    assert request["tutorId"] == tutor.id
    assert request["scheduledDateTime"] == "2030-03-01T10:00:00"
    assert request["tutorCalendarEventId"]
    assert request["studentCalendarEventId"]
    assert request["meetLink"].startswith("https://meet.google.com/")
    assert request["tutor"]["email"] == tutor.email
    assert data["calendar"]["degraded"] is False
    assert data["calendar"]["tutorEventCreated"] is True

    # the student sees admin notes but not the tutor's event id
    resp = client.get(f"/session-requests/{created['id']}", headers=auth_headers(student))
    seen = resp.json()["request"]
    assert seen["adminNotes"] == "Bring past papers"
    assert "tutorCalendarEventId" not in seen
    assert seen["studentCalendarEventId"] == request["studentCalendarEventId"]

    resp = client.get(f"/session-requests/{created['id']}", headers=auth_headers(tutor))
    seen = resp.json()["request"]
    assert "studentCalendarEventId" not in seen
    assert seen["tutorCalendarEventId"] == request["tutorCalendarEventId"]


def test_assign_with_broken_tutor_calendar(db, admin, tutor, student, auth_headers, calendar):
    calendar.fail_create[tutor.id] = CalendarAuthError("invalid_grant")
    created = _create(student, auth_headers)

    data = _assign(created["id"], admin, tutor, auth_headers)

    assert data["request"]["status"] == "ASSIGNED"
    assert data["request"]["tutorId"] == tutor.id
    assert data["request"]["tutorCalendarEventId"] is None
    assert data["calendar"]["degraded"] is True
    assert data["calendar"]["errors"] == [{"side": "tutor", "message": "invalid_grant"}]
    assert "could not be fully updated" in data["message"]

    stored = _stored(db, created["id"])
    assert stored.status == "ASSIGNED"
    assert stored.tutor_id == tutor.id
    assert stored.tutor_calendar_event_id is None


def test_assign_survives_calendar_timeout(db, admin, tutor, student, auth_headers, calendar):
    calendar.fail_create[tutor.id] = TimeoutError("timed out")
    created = _create(student, auth_headers)

    data = _assign(created["id"], admin, tutor, auth_headers)

    assert data["request"]["status"] == "ASSIGNED"
    assert data["request"]["tutorCalendarEventId"] is None
    assert data["request"]["studentCalendarEventId"]
    assert data["calendar"]["degraded"] is True
    assert [e["side"] for e in data["calendar"]["errors"]] == ["tutor"]
    assert _stored(db, created["id"]).student_calendar_event_id is not None


def test_assign_on_non_pending_returns_400(db, admin, tutor, student, auth_headers, calendar):
    created = _create(student, auth_headers)
    _assign(created["id"], admin, tutor, auth_headers)

    resp = client.put(
        f"/session-requests/{created['id']}/assign",
        json={"tutorId": tutor.id},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 400
    assert _stored(db, created["id"]).status == "ASSIGNED"


def test_assign_invalid_tutor_returns_400(db, admin, student, auth_headers, calendar):
    created = _create(student, auth_headers)
    resp = client.put(
        f"/session-requests/{created['id']}/assign",
        json={"tutorId": student.id},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid tutor selected"


def test_transition_with_stale_version_returns_409(db, admin, tutor, student, auth_headers, calendar):
    fresh = _create(student, auth_headers)
    _assign(fresh["id"], admin, tutor, auth_headers)
    resp = client.put(
        f"/session-requests/{fresh['id']}/status",
        json={"status": "REJECTED", "rejectionReason": "late", "version": fresh["version"]},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 409
    assert _stored(db, fresh["id"]).status == "ASSIGNED"


# ---------- status ----------


def test_tutor_approves_assigned_request(db, admin, tutor, student, auth_headers, calendar):
    created = _create(student, auth_headers)
    _assign(created["id"], admin, tutor, auth_headers)

    resp = client.put(
        f"/session-requests/{created['id']}/status",
        json={"status": "APPROVED"},
        headers=auth_headers(tutor),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["request"]["status"] == "APPROVED"


def test_reject_without_reason_returns_400(db, admin, student, auth_headers, calendar):
    created = _create(student, auth_headers)

    resp = client.put(
        f"/session-requests/{created['id']}/status",
        json={"status": "REJECTED"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 400
    stored = _stored(db, created["id"])
    assert stored.status == "PENDING"
    assert stored.rejection_reason is None


def test_status_endpoint_refuses_other_targets(db, admin, student, auth_headers, calendar):
    created = _create(student, auth_headers)
    for target in ("PENDING", "ASSIGNED", "CANCELLED"):
        resp = client.put(
            f"/session-requests/{created['id']}/status",
            json={"status": target},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 400


# ---------- cancel ----------


def test_student_cancel_without_body(db, student, auth_headers, calendar):
    created = _create(student, auth_headers)

    resp = client.put(f"/session-requests/{created['id']}/cancel", headers=auth_headers(student))
    assert resp.status_code == 200, resp.text
    assert resp.json()["request"]["status"] == "CANCELLED"


def test_student_cancel_assigned_with_reason(db, admin, tutor, student, auth_headers, calendar):
    created = _create(student, auth_headers)
    _assign(created["id"], admin, tutor, auth_headers)

    resp = client.put(
        f"/session-requests/{created['id']}/cancel",
        json={"cancellationReason": "Exam rescheduled"},
        headers=auth_headers(student),
    )
    assert resp.status_code == 200
    request = resp.json()["request"]
    assert request["status"] == "CANCELLED"
    assert request["cancellationReason"] == "Exam rescheduled"
    assert request["studentCalendarEventId"] is None
    assert len(calendar.delete_calls) == 2


def test_student_cannot_cancel_approved(db, admin, tutor, student, auth_headers, calendar):
    created = _create(student, auth_headers)
    _assign(created["id"], admin, tutor, auth_headers, approve=True)

    resp = client.put(f"/session-requests/{created['id']}/cancel", headers=auth_headers(student))
    assert resp.status_code == 403
    assert _stored(db, created["id"]).status == "APPROVED"


@pytest.mark.parametrize("terminal_via", ["reject", "admin-cancel"])
def test_student_cancel_terminal_returns_400(db, admin, student, auth_headers, calendar, terminal_via):
    created = _create(student, auth_headers)
    if terminal_via == "reject":
        client.put(
            f"/session-requests/{created['id']}/status",
            json={"status": "REJECTED", "rejectionReason": "No tutors"},
            headers=auth_headers(admin),
        )
    else:
        client.put(
            f"/session-requests/{created['id']}/admin-cancel",
            json={"cancellationReason": "duplicate"},
            headers=auth_headers(admin),
        )

    resp = client.put(f"/session-requests/{created['id']}/cancel", headers=auth_headers(student))
    assert resp.status_code == 400


def test_admin_cancel_approved_session(db, admin, tutor, student, auth_headers, calendar):
    created = _create(student, auth_headers)
    assigned = _assign(created["id"], admin, tutor, auth_headers, approve=True)["request"]

    resp = client.put(
        f"/session-requests/{created['id']}/admin-cancel",
        json={"cancellationReason": "schedule conflict"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["request"]["status"] == "CANCELLED"
    assert data["request"]["cancellationReason"] == "schedule conflict"
    assert calendar.delete_calls == [
        assigned["tutorCalendarEventId"],
        assigned["studentCalendarEventId"],
    ]
    assert data["calendar"]["tutorEventDeleted"] is True
    assert data["calendar"]["studentEventDeleted"] is True


def test_admin_cancel_requires_reason(db, admin, student, auth_headers, calendar):
    created = _create(student, auth_headers)
    resp = client.put(
        f"/session-requests/{created['id']}/admin-cancel",
        json={},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 400


# ---------- calendar sync ----------


def test_calendar_sync_fills_missing_side(db, admin, tutor, student, auth_headers, calendar):
    calendar.fail_create[tutor.id] = CalendarAuthError("invalid_grant")
    created = _create(student, auth_headers)
    _assign(created["id"], admin, tutor, auth_headers)
    calendar.fail_create.clear()

    resp = client.post(
        f"/session-requests/{created['id']}/calendar-sync", headers=auth_headers(admin)
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["request"]["tutorCalendarEventId"]
    assert data["calendar"]["tutorEventCreated"] is True
    assert data["calendar"]["studentEventCreated"] is False

    resp = client.post(
        f"/session-requests/{created['id']}/calendar-sync", headers=auth_headers(admin)
    )
    assert resp.json()["message"] == "Calendar already in sync"
    assert resp.json()["calendar"] is None
