"""Tests for the attendance trigger: policy gate, dedup and queue fan-out."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from conftest import NOW, build_tenant
from academy.models.audit import AuditLog
from academy.models.enums import (
    AttendanceStatus,
    ContactStatus,
    NotificationEventType,
    NotificationQueueStatus,
    SessionStatus,
)
from academy.models.notification import NotificationQueue
from academy.services.attendance_notifier import SkipReason, enqueue_attendance_notification


def _enqueue(db: Session, tenant, **kwargs):
    result = enqueue_attendance_notification(
        db,
        academy_id=tenant.academy.id,
        attendance_id=tenant.attendance.id,
        actor_user_id=tenant.teacher.id,
        now=kwargs.pop("now", NOW),
        **kwargs,
    )
    db.commit()
    return result


def _queue_rows(db: Session, tenant):
    return (
        db.query(NotificationQueue)
        .filter(NotificationQueue.academy_id == tenant.academy.id)
        .order_by(NotificationQueue.id)
        .all()
    )


def test_absent_fans_out_one_row_per_opted_in_contact(db, tenant):
    result = _enqueue(db, tenant)

    assert result.skipped is False
    assert result.reason is None
    rows = _queue_rows(db, tenant)
    assert [row.id for row in rows] == result.queue_ids
    assert len(rows) == 2
    assert {row.recipient_phone for row in rows} == {"01012345678", "01098765432"}
    assert {row.parent_contact_id for row in rows} == {tenant.contacts[0].id, tenant.contacts[1].id}
    for row in rows:
        assert row.status == NotificationQueueStatus.PENDING
        assert row.event_type == NotificationEventType.ATTENDANCE
        assert row.attendance_status == AttendanceStatus.ABSENT
        assert row.attempts == 0
        assert row.max_attempts == 3
        assert row.template_code == "ATT_ABSENT_A001"
        assert row.sender_key == "sender-A001"
    assert rows[0].template_vars == rows[1].template_vars


def test_rendered_variables(db, tenant):
    _enqueue(db, tenant)
    row = _queue_rows(db, tenant)[0]
    assert row.template_vars == {
        "academyName": "Bright Math Academy",
        "studentName": "Lee Minjun",
        "className": "Algebra 2",
        "sessionDate": "2026-03-02",
        "sessionTime": "18:30",
        "statusText": "결석",
        "teacherName": "Park Teacher",
    }


def test_missing_teacher_falls_back_to_default_name(db, tenant):
    tenant.academy_class.teacher_user_id = None
    db.commit()

    _enqueue(db, tenant)
    assert _queue_rows(db, tenant)[0].template_vars["teacherName"] == "선생님"


def test_row_is_due_immediately_outside_quiet_hours(db, tenant):
    tenant.settings.quiet_hours_enabled = True
    db.commit()

    _enqueue(db, tenant)
    row = _queue_rows(db, tenant)[0]
    assert row.scheduled_at.replace(tzinfo=timezone.utc) == NOW
    assert row.next_retry_at.replace(tzinfo=timezone.utc) == NOW


def test_quiet_hours_defer_to_window_end(db, tenant):
    tenant.settings.quiet_hours_enabled = True
    db.commit()

    # 23:00 KST; the window ends at 08:00 KST the next day (23:00 UTC).
    late_night = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)
    _enqueue(db, tenant, now=late_night)

    expected = datetime(2026, 3, 2, 23, 0, tzinfo=timezone.utc)
    for row in _queue_rows(db, tenant):
        assert row.scheduled_at.replace(tzinfo=timezone.utc) == expected
        assert row.next_retry_at.replace(tzinfo=timezone.utc) == expected


def test_disabled_academy_skips(db, tenant):
    tenant.settings.alimtalk_enabled = False
    db.commit()

    result = _enqueue(db, tenant)
    assert result.skipped is True
    assert result.reason == SkipReason.DISABLED
    assert result.detail == "alimtalk_enabled=false for academy"
    assert _queue_rows(db, tenant) == []


def test_policy_off_for_status_skips(db):
    tenant = build_tenant(db, code="EXC1", status=AttendanceStatus.EXCUSED)

    result = _enqueue(db, tenant)
    assert result.reason == SkipReason.POLICY_OFF_FOR_STATUS
    assert result.detail == "send_on_excused=false"


def test_present_is_never_notified(db):
    tenant = build_tenant(db, code="PRE1", status=AttendanceStatus.PRESENT)

    result = _enqueue(db, tenant)
    assert result.reason == SkipReason.STATUS_NOT_NOTIFIABLE
    assert _queue_rows(db, tenant) == []


def test_cancelled_session_is_never_notified(db):
    tenant = build_tenant(db, code="CAN1", session_status=SessionStatus.CANCELLED)

    result = _enqueue(db, tenant)
    assert result.reason == SkipReason.SESSION_NOT_NOTIFIABLE


def test_completed_session_is_notified(db):
    tenant = build_tenant(db, code="CMP1", session_status=SessionStatus.COMPLETED)

    result = _enqueue(db, tenant)
    assert result.skipped is False
    assert len(result.queue_ids) == 2


def test_no_opted_in_contacts_skips(db, tenant):
    tenant.contacts[0].notification_opt_in = False
    tenant.contacts[1].status = ContactStatus.INACTIVE
    db.commit()

    result = _enqueue(db, tenant)
    assert result.reason == SkipReason.NO_OPTED_IN_CONTACTS


def test_inactive_template_skips(db, tenant):
    for template in tenant.templates.values():
        template.is_active = False
    db.commit()

    result = _enqueue(db, tenant)
    assert result.reason == SkipReason.NO_ACTIVE_TEMPLATE


def test_repeat_trigger_is_deduplicated(db, tenant):
    first = _enqueue(db, tenant)
    second = _enqueue(db, tenant)

    assert first.skipped is False
    assert second.skipped is True
    assert second.reason == SkipReason.DEDUP_SKIP
    assert len(_queue_rows(db, tenant)) == 2


def test_dedup_ignores_failed_rows(db, tenant):
    _enqueue(db, tenant)
    for row in _queue_rows(db, tenant):
        row.status = NotificationQueueStatus.FAILED
    db.commit()

    result = _enqueue(db, tenant)
    assert result.skipped is False
    assert len(_queue_rows(db, tenant)) == 4


def test_status_change_enqueues_for_new_status(db, tenant):
    _enqueue(db, tenant)
    tenant.attendance.status = AttendanceStatus.LATE
    db.commit()

    result = _enqueue(db, tenant)
    assert result.skipped is False
    late_rows = [row for row in _queue_rows(db, tenant) if row.attendance_status == AttendanceStatus.LATE]
    assert len(late_rows) == 2
    assert late_rows[0].template_vars["statusText"] == "지각"


def test_resend_allowed_bypasses_dedup(db, tenant):
    tenant.settings.allow_resend_on_status_change = True
    db.commit()

    _enqueue(db, tenant)
    result = _enqueue(db, tenant)
    assert result.skipped is False
    assert len(_queue_rows(db, tenant)) == 4


def test_other_academy_attendance_is_not_found(db, tenant, other_tenant):
    result = enqueue_attendance_notification(
        db,
        academy_id=tenant.academy.id,
        attendance_id=other_tenant.attendance.id,
        now=NOW,
    )
    db.commit()

    assert result.reason == SkipReason.SOURCE_NOT_FOUND
    assert db.query(NotificationQueue).count() == 0


def test_queued_audit_entry(db, tenant):
    result = _enqueue(db, tenant)

    audit = db.query(AuditLog).filter(AuditLog.action == "attendance.notification.queued").one()
    assert audit.academy_id == tenant.academy.id
    assert audit.actor_user_id == tenant.teacher.id
    assert audit.target_type == "Attendance"
    assert audit.target_id == str(tenant.attendance.id)
    assert audit.meta_json["queue_ids"] == result.queue_ids
    assert audit.meta_json["contact_count"] == 2
    assert audit.meta_json["attendance_status"] == "ABSENT"


def test_skip_writes_no_audit_entry(db, tenant):
    tenant.settings.alimtalk_enabled = False
    db.commit()

    _enqueue(db, tenant)
    assert db.query(AuditLog).count() == 0
