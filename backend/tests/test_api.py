"""API integration tests."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from prepmint.api import dependencies as deps
from prepmint.app import app
from prepmint.models.entities import JobStatus


@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin(client: TestClient) -> str:
    record = asyncio.run(deps.get_backend().insert("users", {"email": "admin@x.io", "name": "Admin", "role": "admin"}))
    return record.id


def _create_user(client: TestClient, admin: str, **fields) -> str:
    resp = client.post("/records/users", json=fields, headers={"X-User-Id": admin})
    assert resp.status_code == 201
    return resp.json()["id"]


def test_health_and_backend_info(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True

    info = client.get("/backend").json()
    assert info["name"] == "sqlite"
    assert info["exact_count"] is True


def test_metrics_endpoint(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "pmnt_requests_total" in resp.text


def test_records_crud_and_paging(client: TestClient, admin: str) -> None:
    headers = {"X-User-Id": admin}
    ids = [
        _create_user(client, admin, email=f"u{i}@x.io", name=f"User {i}", role="student", xp=i * 10) for i in range(3)
    ]
    students = {"filter": ["role:eq:student"], "page_size": 2, "order_by": "xp", "direction": "desc"}

    page = client.get("/records/users", params=students).json()
    assert [item["fields"]["xp"] for item in page["items"]] == [20, 10]
    assert page["has_more"] is True
    assert page["total"] == 3

    rest = client.get("/records/users", params={**students, "cursor": page["next_cursor"]}).json()
    assert [item["fields"]["xp"] for item in rest["items"]] == [0]
    assert rest["has_more"] is False

    patched = client.patch(f"/records/users/{ids[0]}", json={"name": "Renamed"}, headers=headers)
    assert patched.status_code == 200
    assert patched.json()["fields"]["name"] == "Renamed"

    searched = client.get("/records/users", params={"search": "renamed", "search_fields": ["name"]}).json()
    assert [item["id"] for item in searched["items"]] == [ids[0]]

    filtered = client.get("/records/users", params={"filter": ["xp:gte:10"]}).json()
    assert filtered["total"] == 2

    assert client.delete(f"/records/users/{ids[0]}", headers=headers).status_code == 204
    missing = client.get(f"/records/users/{ids[0]}")
    assert missing.status_code == 404
    assert "message" in missing.json()


def test_bulk_delete_reports_each_id(client: TestClient, admin: str) -> None:
    keep = _create_user(client, admin, email="a@x.io")
    resp = client.post("/records/users/bulk-delete", json={"ids": [keep, "ghost"]}, headers={"X-User-Id": admin})
    assert resp.status_code == 200
    body = resp.json()
    assert body["succeeded"] == [keep]
    assert body["failed"] == ["ghost"]
    assert body["summary"] == "1 of 2 succeeded"


def test_bad_requests_return_message_json(client: TestClient, admin: str) -> None:
    missing_field = client.post("/records/users", json={"name": "No email"}, headers={"X-User-Id": admin})
    assert missing_field.status_code == 422
    assert "email" in missing_field.json()["message"]

    bad_filter = client.get("/records/users", params={"filter": ["xp-between-1"]})
    assert bad_filter.status_code == 400
    assert bad_filter.json()["message"]


def test_evaluate_upload_and_status(client: TestClient) -> None:
    resp = client.post(
        "/evaluate",
        data={"userId": "student-1", "testId": "test-1"},
        files={"file": ("sheet.pdf", b"%PDF-1.7 answers", "application/pdf")},
    )
    assert resp.status_code == 202
    job_id = resp.json()["jobId"]

    status = client.get(f"/evaluate/{job_id}/status").json()
    assert status["status"] == "queued"

    jobs = deps.get_job_store()
    asyncio.run(jobs.update_status(job_id, JobStatus.DONE, progress=100, result={"score": 100}))
    done = client.get(f"/evaluate/{job_id}/status").json()
    assert done["status"] == "done"
    assert done["result"] == {"score": 100}

    assert client.get("/evaluate/job-missing/status").status_code == 404


def test_evaluate_rejects_bad_uploads(client: TestClient) -> None:
    empty = client.post(
        "/evaluate",
        data={"userId": "student-1"},
        files={"file": ("sheet.pdf", b"", "application/pdf")},
    )
    assert empty.status_code == 422
    assert empty.json()["message"] == "File is empty. Please select a valid file."

    text = client.post(
        "/evaluate",
        data={"userId": "student-1"},
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert text.json()["message"] == "Only PDF, JPG, and PNG files are allowed"


def test_award_xp_requires_capability(client: TestClient, admin: str) -> None:
    student = _create_user(client, admin, email="s@x.io", role="student", xp=90)
    teacher = _create_user(client, admin, email="t@x.io", role="teacher")
    payload = {"userId": student, "amount": 20, "reason": "Great answers"}

    anonymous = client.post("/gamify/xp", json=payload)
    assert anonymous.status_code == 403

    denied = client.post("/gamify/xp", json=payload, headers={"X-User-Id": student})
    assert denied.status_code == 403

    unknown = client.post("/gamify/xp", json=payload, headers={"X-User-Id": "ghost"})
    assert unknown.status_code == 403

    granted = client.post("/gamify/xp", json=payload, headers={"X-User-Id": teacher})
    assert granted.status_code == 200
    data = granted.json()["data"]
    assert data["newXp"] == 110
    assert data["newLevel"] == 2

    too_much = client.post(
        "/gamify/xp", json={**payload, "amount": 5000}, headers={"X-User-Id": teacher}
    )
    assert too_much.status_code == 422


def test_badges_and_leaderboard(client: TestClient, admin: str) -> None:
    teacher = _create_user(client, admin, email="t@x.io", role="teacher", xp=999)
    top = _create_user(client, admin, email="top@x.io", role="student", name="Top", xp=500)
    _create_user(client, admin, email="low@x.io", role="student", name="Low", xp=50)
    headers = {"X-User-Id": teacher}

    first = client.post("/gamify/badges", json={"userId": top, "badgeId": "perfect-score"}, headers=headers)
    assert first.json()["awarded"] is True
    again = client.post("/gamify/badges", json={"userId": top, "badgeId": "perfect-score"}, headers=headers)
    assert again.json()["awarded"] is False
    assert client.get(f"/gamify/badges/{top}").json() == ["perfect-score"]

    board = client.get("/gamify/leaderboard", params={"limit": 5}).json()
    assert [(entry["rank"], entry["name"]) for entry in board] == [(1, "Top"), (2, "Low")]
    assert board[0]["badges"] == 1


def test_record_writes_require_a_capable_caller(client: TestClient, admin: str) -> None:
    student = _create_user(client, admin, email="s@x.io", role="student")
    teacher = _create_user(client, admin, email="t@x.io", role="teacher")

    anonymous = client.patch(f"/records/users/{student}", json={"role": "admin"})
    assert anonymous.status_code == 403
    assert client.post("/records/users", json={"email": "x@x.io"}).status_code == 403
    assert client.delete(f"/records/users/{student}").status_code == 403

    self_promotion = client.patch(
        f"/records/users/{student}", json={"role": "admin"}, headers={"X-User-Id": student}
    )
    assert self_promotion.status_code == 403
    assert client.get(f"/records/users/{student}").json()["fields"]["role"] == "student"

    staff_only = client.post("/records/institutions", json={"name": "North High"}, headers={"X-User-Id": teacher})
    assert staff_only.status_code == 403
    assert client.post("/records/tests", json={"title": "Quiz"}, headers={"X-User-Id": teacher}).status_code == 201


def test_institution_manages_students_but_cannot_grant_admin(client: TestClient, admin: str) -> None:
    institution = _create_user(client, admin, email="i@x.io", role="institution")
    headers = {"X-User-Id": institution}

    created = client.post("/records/users", json={"email": "new@x.io", "role": "student"}, headers=headers)
    assert created.status_code == 201
    student = created.json()["id"]

    assert client.patch(f"/records/users/{student}", json={"name": "Renamed"}, headers=headers).status_code == 200
    promoted = client.patch(f"/records/users/{student}", json={"role": "admin"}, headers=headers)
    assert promoted.status_code == 403
    assert "admin profiles" in promoted.json()["message"]

    assert client.delete(f"/records/users/{admin}", headers=headers).status_code == 403
    bulk = client.post("/records/users/bulk-delete", json={"ids": [student, admin]}, headers=headers).json()
    assert bulk["succeeded"] == [student]
    assert bulk["failed"] == [admin]


def test_role_change_invalidates_cached_profile(client: TestClient, admin: str) -> None:
    teacher = _create_user(client, admin, email="t@x.io", role="teacher")
    student = _create_user(client, admin, email="s@x.io", role="student", xp=0)
    award = {"userId": student, "amount": 10, "reason": "Homework"}

    assert client.post("/gamify/xp", json=award, headers={"X-User-Id": teacher}).status_code == 200

    demoted = client.patch(f"/records/users/{teacher}", json={"role": "student"}, headers={"X-User-Id": admin})
    assert demoted.status_code == 200
    assert client.post("/gamify/xp", json=award, headers={"X-User-Id": teacher}).status_code == 403

    assert client.delete(f"/records/users/{teacher}", headers={"X-User-Id": admin}).status_code == 204
    assert client.post("/gamify/xp", json=award, headers={"X-User-Id": teacher}).status_code == 403


def test_notifications_for_the_signed_in_caller(client: TestClient, admin: str) -> None:
    teacher = _create_user(client, admin, email="t@x.io", role="teacher", name="Ms T")
    student = _create_user(client, admin, email="s@x.io", role="student")
    other = _create_user(client, admin, email="o@x.io", role="student")
    as_student = {"X-User-Id": student}

    denied = client.post(
        "/notifications", json={"userId": other, "title": "Hi", "message": "Hello"}, headers=as_student
    )
    assert denied.status_code == 403

    sent = client.post(
        "/notifications",
        json={"userId": student, "type": "evaluation", "title": "Graded", "message": "Score ready"},
        headers={"X-User-Id": teacher},
    )
    assert sent.status_code == 201
    first = sent.json()["id"]
    client.post(
        "/notifications",
        json={"userId": student, "title": "Reminder", "message": "Practice"},
        headers={"X-User-Id": teacher},
    )

    assert client.get("/notifications").status_code == 403
    listed = client.get("/notifications", headers=as_student).json()
    assert {item["fields"]["title"] for item in listed} == {"Graded", "Reminder"}
    graded = next(item for item in listed if item["id"] == first)
    assert graded["fields"]["senderName"] == "Ms T"
    assert client.get("/notifications/unread-count", headers=as_student).json() == {"unread": 2}

    assert client.post(f"/notifications/{first}/read", headers={"X-User-Id": other}).status_code == 403
    marked = client.post(f"/notifications/{first}/read", headers=as_student)
    assert marked.json()["fields"]["read"] is True
    assert client.post("/notifications/read-all", headers=as_student).json() == {"marked": 1}
    assert client.get("/notifications/unread-count", headers=as_student).json() == {"unread": 0}
