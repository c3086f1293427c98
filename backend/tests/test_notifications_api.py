from __future__ import annotations

from fastapi.testclient import TestClient
import pytest

from academy.core.deps import get_alimtalk_gateway
from academy.core.security import create_access_token
from academy.core.settings import settings
from academy.db.session import get_db, get_session_factory
from academy.main import app
from academy.models.academy import User
from academy.models.audit import AuditLog
from academy.models.enums import NotificationQueueStatus, Role
from academy.models.notification import NotificationQueue


@pytest.fixture()
def client(db, session_factory, tenant, gateway):
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_alimtalk_gateway] = lambda: gateway

    client_instance = TestClient(app)
    try:
        yield client_instance
    finally:
        client_instance.close()
        app.dependency_overrides.clear()


@pytest.fixture()
def super_admin(db):
    user = User(academy_id=None, role=Role.SUPER_ADMIN, name="Platform Ops", email="ops@example.com")
    db.add(user)
    db.commit()
    return user


def _auth_headers(user: User) -> dict[str, str]:
    token = create_access_token({"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def test_requires_bearer_token(client, tenant):
    response = client.post(f"/api/academy/attendance/{tenant.attendance.id}/notify")
    assert response.status_code == 401


def test_rejects_invalid_token(client, tenant):
    response = client.post(
        f"/api/academy/attendance/{tenant.attendance.id}/notify",
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


def test_rejects_token_for_another_academy(client, tenant, other_tenant):
    token = create_access_token({"sub": str(tenant.admin.id), "academy_id": other_tenant.academy.id})
    response = client.get("/api/academy/notification-queue", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_rejects_inactive_user(client, db, tenant):
    tenant.admin.is_active = False
    db.commit()

    response = client.get("/api/academy/notification-queue", headers=_auth_headers(tenant.admin))
    assert response.status_code == 401


def test_teacher_triggers_attendance_notification(client, db, tenant):
    response = client.post(
        f"/api/academy/attendance/{tenant.attendance.id}/notify",
        headers=_auth_headers(tenant.teacher),
    )
    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["skipped"] is False
    assert len(payload["queue_ids"]) == 2
    assert db.query(NotificationQueue).count() == 2

    repeat = client.post(
        f"/api/academy/attendance/{tenant.attendance.id}/notify",
        headers=_auth_headers(tenant.teacher),
    )
    assert repeat.json()["skipped"] is True
    assert repeat.json()["reason"] == "dedup_skip"


def test_student_cannot_trigger_notification(client, tenant):
    response = client.post(
        f"/api/academy/attendance/{tenant.attendance.id}/notify",
        headers=_auth_headers(tenant.student),
    )
    assert response.status_code == 403


def test_attendance_of_other_academy_is_not_found(client, db, tenant, other_tenant):
    response = client.post(
        f"/api/academy/attendance/{other_tenant.attendance.id}/notify",
        headers=_auth_headers(tenant.admin),
    )
    assert response.status_code == 200
    assert response.json()["reason"] == "source_not_found"
    assert db.query(NotificationQueue).count() == 0


def test_queue_listing_is_tenant_scoped(client, tenant, other_tenant):
    for owner in (tenant, other_tenant):
        client.post(
            f"/api/academy/attendance/{owner.attendance.id}/notify",
            headers=_auth_headers(owner.teacher),
        )

    response = client.get("/api/academy/notification-queue", headers=_auth_headers(tenant.admin))
    assert response.status_code == 200, response.text
    rows = response.json()
    assert len(rows) == 2
    assert {row["academy_id"] for row in rows} == {tenant.academy.id}
    assert all(row["status"] == "PENDING" for row in rows)

    filtered = client.get(
        "/api/academy/notification-queue",
        params={"status": "SENT"},
        headers=_auth_headers(tenant.admin),
    )
    assert filtered.json() == []


def test_queue_listing_requires_admin(client, tenant):
    response = client.get("/api/academy/notification-queue", headers=_auth_headers(tenant.teacher))
    assert response.status_code == 403


def test_admin_sends_adhoc_message(client, db, tenant, gateway):
    response = client.post(
        "/api/notifications/send",
        json={
            "phone": "010-1234-5678",
            "template_code": "NOTICE_01",
            "params": {"academyName": "Bright Math Academy"},
            "recipient_id": tenant.student.id,
        },
        headers=_auth_headers(tenant.admin),
    )
    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["success"] is True
    assert payload["status"] == "SENT"
    assert gateway.calls[0]["phone"] == "01012345678"

    audit = db.query(AuditLog).one()
    assert audit.action == "notification.send"
    assert audit.actor_user_id == tenant.admin.id
    assert audit.academy_id == tenant.academy.id


def test_adhoc_message_rejects_invalid_phone(client, tenant, gateway):
    response = client.post(
        "/api/notifications/send",
        json={"phone": "02-123-4567", "template_code": "NOTICE_01", "params": {}},
        headers=_auth_headers(tenant.admin),
    )
    assert response.status_code == 422
    assert gateway.calls == []


def test_adhoc_message_requires_elevated_role(client, tenant):
    response = client.post(
        "/api/notifications/send",
        json={"phone": "01012345678", "template_code": "NOTICE_01", "params": {}},
        headers=_auth_headers(tenant.teacher),
    )
    assert response.status_code == 403


def test_adhoc_message_needs_academy_context(client, super_admin):
    response = client.post(
        "/api/notifications/send",
        json={"phone": "01012345678", "template_code": "NOTICE_01", "params": {}},
        headers=_auth_headers(super_admin),
    )
    assert response.status_code == 400


def test_retry_sweep_returns_summary(client, db, tenant, super_admin, gateway, monkeypatch):
    # One in-memory connection is shared by every session, so deliver sequentially.
    monkeypatch.setattr(settings, "alimtalk_worker_concurrency", 1)
    client.post(
        f"/api/academy/attendance/{tenant.attendance.id}/notify",
        headers=_auth_headers(tenant.teacher),
    )

    response = client.post("/api/notifications/retry", headers=_auth_headers(super_admin))
    assert response.status_code == 200, response.text
    assert response.json() == {
        "processed": 2,
        "succeeded": 2,
        "failed": 0,
        "retried": 0,
        "skipped": 0,
        "reclaimed": 0,
    }
    db.expire_all()
    statuses = {row.status for row in db.query(NotificationQueue).all()}
    assert statuses == {NotificationQueueStatus.SENT}
    assert len(gateway.calls) == 2


def test_retry_sweep_requires_super_admin(client, tenant):
    response = client.post("/api/notifications/retry", headers=_auth_headers(tenant.admin))
    assert response.status_code == 403


def test_healthz_reports_queue_counts(client, tenant):
    client.post(
        f"/api/academy/attendance/{tenant.attendance.id}/notify",
        headers=_auth_headers(tenant.teacher),
    )

    response = client.get("/healthz")
    assert response.status_code == 200
    payload = response.json()
    assert payload["database"] == "ok"
    assert payload["alimtalk_queue_pending"] == 2
    assert payload["alimtalk_queue_failed"] == 0


def test_metrics_endpoint(client):
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "alimtalk_queue_pending" in response.text
