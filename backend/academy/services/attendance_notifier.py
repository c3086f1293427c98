"""
Enqueue AlimTalk notifications for parents when attendance is marked.

Checks run cheapest first and stop at the first one that fails:

 1. attendance exists in this academy
 2. its session is SCHEDULED or COMPLETED
 3. the status maps to a template type (PRESENT never does)
 4. the academy has AlimTalk enabled and the per-status toggle on
 5. no active queue row exists for (attendance, status) unless resend is allowed
 6. at least one active, opted-in parent contact
 7. an active template for the type

Then one PENDING queue row is written per contact, scheduled now or at the
end of quiet hours. Skips are results, not errors.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from academy.core.settings import settings
from academy.db.base import as_utc, utcnow
from academy.models.enums import (
    AlimtalkTemplateType,
    AttendanceStatus,
    NotificationChannel,
    NotificationEventType,
    NotificationQueueStatus,
    SessionStatus,
)
from academy.models.notification import (
    AcademyNotificationSettings,
    AlimtalkTemplate,
    NotificationQueue,
    ParentContact,
)
from academy.repositories.tenant import TenantRepository
from academy.services.alimtalk_templates import (
    DEFAULT_TEACHER_NAME,
    AttendanceTemplateContext,
    build_attendance_vars,
    status_label,
    to_local_date_string,
    to_local_time_string,
)
from academy.services.audit import write_audit_log
from academy.services.quiet_hours import resolve_scheduled_at

logger = logging.getLogger(__name__)

NOTIFIABLE_SESSION_STATUSES = {SessionStatus.SCHEDULED, SessionStatus.COMPLETED}

STATUS_TO_TEMPLATE_TYPE: dict[AttendanceStatus, Optional[AlimtalkTemplateType]] = {
    AttendanceStatus.ABSENT: AlimtalkTemplateType.ABSENT,
    AttendanceStatus.LATE: AlimtalkTemplateType.LATE,
    AttendanceStatus.EXCUSED: AlimtalkTemplateType.EXCUSED,
    AttendanceStatus.PRESENT: None,
}

_POLICY_FLAGS = {
    AlimtalkTemplateType.ABSENT: "send_on_absent",
    AlimtalkTemplateType.LATE: "send_on_late",
    AlimtalkTemplateType.EXCUSED: "send_on_excused",
}


class SkipReason(str, enum.Enum):
    SOURCE_NOT_FOUND = "source_not_found"
    SESSION_NOT_NOTIFIABLE = "session_not_notifiable"
    STATUS_NOT_NOTIFIABLE = "status_not_notifiable"
    DISABLED = "disabled"
    POLICY_OFF_FOR_STATUS = "policy_off_for_status"
    DEDUP_SKIP = "dedup_skip"
    NO_OPTED_IN_CONTACTS = "no_opted_in_contacts"
    NO_ACTIVE_TEMPLATE = "no_active_template"


@dataclass
class EnqueueResult:
    skipped: bool
    reason: Optional[SkipReason] = None
    detail: Optional[str] = None
    queue_ids: List[int] = field(default_factory=list)

    @classmethod
    def skip(cls, reason: SkipReason, detail: str) -> "EnqueueResult":
        return cls(skipped=True, reason=reason, detail=detail)


@dataclass
class GateDecision:
    """Everything the fan-out needs once the gate has said yes."""

    attendance_id: int
    attendance_status: AttendanceStatus
    student_user_id: int
    template_type: AlimtalkTemplateType
    settings: AcademyNotificationSettings
    contacts: List[ParentContact]
    template: AlimtalkTemplate
    session_starts_at: datetime
    class_name: str
    teacher_user_id: Optional[int]


def evaluate_attendance_gate(repo: TenantRepository, attendance_id: int) -> GateDecision | EnqueueResult:
    attendance = repo.get_attendance(attendance_id)
    if attendance is None:
        return EnqueueResult.skip(SkipReason.SOURCE_NOT_FOUND, "Attendance not found")

    session = repo.get_session(attendance.session_id)
    if session is None:
        return EnqueueResult.skip(SkipReason.SOURCE_NOT_FOUND, "Class session not found")
    if session.status not in NOTIFIABLE_SESSION_STATUSES:
        return EnqueueResult.skip(
            SkipReason.SESSION_NOT_NOTIFIABLE,
            f"Session status is {session.status.value}; no notification",
        )

    attendance_status = attendance.status
    template_type = STATUS_TO_TEMPLATE_TYPE.get(attendance_status)
    if template_type is None:
        return EnqueueResult.skip(
            SkipReason.STATUS_NOT_NOTIFIABLE,
            f"Status {attendance_status.value} does not trigger notification",
        )

    notification_settings = repo.get_notification_settings()
    if notification_settings is None or not notification_settings.alimtalk_enabled:
        return EnqueueResult.skip(SkipReason.DISABLED, "alimtalk_enabled=false for academy")

    policy_flag = _POLICY_FLAGS[template_type]
    if not getattr(notification_settings, policy_flag):
        return EnqueueResult.skip(SkipReason.POLICY_OFF_FOR_STATUS, f"{policy_flag}=false")

    existing = repo.find_active_queue_entry(
        attendance_id=attendance.id,
        attendance_status=attendance_status,
    )
    if existing is not None and not notification_settings.allow_resend_on_status_change:
        return EnqueueResult.skip(
            SkipReason.DEDUP_SKIP,
            f"Already queued/sent (id={existing.id}); dedup skip",
        )

    contacts = repo.list_eligible_contacts(attendance.student_user_id)
    if not contacts:
        return EnqueueResult.skip(SkipReason.NO_OPTED_IN_CONTACTS, "No opted-in parent contacts")

    template = repo.get_active_template(template_type)
    if template is None:
        return EnqueueResult.skip(
            SkipReason.NO_ACTIVE_TEMPLATE,
            f"No active {template_type.value} template for academy",
        )

    academy_class = repo.get_class(session.class_id)
    return GateDecision(
        attendance_id=attendance.id,
        attendance_status=attendance_status,
        student_user_id=attendance.student_user_id,
        template_type=template_type,
        settings=notification_settings,
        contacts=contacts,
        template=template,
        session_starts_at=as_utc(session.starts_at),
        class_name=academy_class.name if academy_class else "",
        teacher_user_id=academy_class.teacher_user_id if academy_class else None,
    )


def render_attendance_vars(repo: TenantRepository, decision: GateDecision) -> dict[str, str]:
    academy = repo.get_academy()
    student = repo.get_user(decision.student_user_id)
    teacher = repo.get_user(decision.teacher_user_id)
    context = AttendanceTemplateContext(
        academy_name=academy.name if academy else "",
        student_name=student.name if student else "",
        class_name=decision.class_name,
        session_date=to_local_date_string(decision.session_starts_at),
        session_time=to_local_time_string(decision.session_starts_at),
        status_text=status_label(decision.attendance_status),
        teacher_name=teacher.name if teacher else DEFAULT_TEACHER_NAME,
    )
    return build_attendance_vars(context)


def fan_out_queue_entries(
    repo: TenantRepository,
    decision: GateDecision,
    template_vars: dict[str, str],
    *,
    now: datetime,
    scheduled_at: Optional[datetime] = None,
) -> List[NotificationQueue]:
    """Write one PENDING row per contact. The gate's dedup check is the only duplicate guard."""
    if scheduled_at is None:
        scheduled_at = resolve_scheduled_at(
            quiet_hours_enabled=decision.settings.quiet_hours_enabled,
            start=decision.settings.quiet_hours_start,
            end=decision.settings.quiet_hours_end,
            now=now,
        )
    scheduled_at = as_utc(scheduled_at)

    entries: List[NotificationQueue] = []
    for contact in decision.contacts:
        entry = NotificationQueue(
            channel=NotificationChannel.KAKAO_ALIMTALK,
            event_type=NotificationEventType.ATTENDANCE,
            attendance_id=decision.attendance_id,
            attendance_status=decision.attendance_status,
            student_user_id=decision.student_user_id,
            parent_contact_id=contact.id,
            recipient_phone=contact.phone,
            template_code=decision.template.template_code,
            sender_key=decision.template.sender_key,
            template_vars=dict(template_vars),
            status=NotificationQueueStatus.PENDING,
            scheduled_at=scheduled_at,
            next_retry_at=scheduled_at,
            attempts=0,
            max_attempts=settings.alimtalk_max_attempts,
        )
        entries.append(repo.add_queue_entry(entry))
    repo.db.flush()
    return entries


def enqueue_attendance_notification(
    db: Session,
    *,
    academy_id: int,
    attendance_id: int,
    actor_user_id: Optional[int] = None,
    now: Optional[datetime] = None,
    scheduled_at: Optional[datetime] = None,
) -> EnqueueResult:
    """Entry point called after an attendance row is upserted.

    Safe to call repeatedly for the same attendance. The caller owns the commit.
    """
    timestamp = as_utc(now) if now else utcnow()
    repo = TenantRepository(db, academy_id)

    decision = evaluate_attendance_gate(repo, attendance_id)
    if isinstance(decision, EnqueueResult):
        logger.info(
            "attendance_notification_skipped reason=%s detail=%s",
            decision.reason.value if decision.reason else None,
            decision.detail,
            extra={"academy_id": academy_id, "attendance_id": attendance_id},
        )
        return decision

    template_vars = render_attendance_vars(repo, decision)
    entries = fan_out_queue_entries(
        repo,
        decision,
        template_vars,
        now=timestamp,
        scheduled_at=scheduled_at,
    )
    queue_ids = [entry.id for entry in entries]

    write_audit_log(
        db,
        academy_id=academy_id,
        actor_user_id=actor_user_id,
        action="attendance.notification.queued",
        target_type="Attendance",
        target_id=attendance_id,
        meta={
            "attendance_status": decision.attendance_status.value,
            "template_type": decision.template_type.value,
            "queue_ids": queue_ids,
            "contact_count": len(decision.contacts),
        },
    )
    logger.info(
        "attendance_notification_queued count=%s",
        len(queue_ids),
        extra={"academy_id": academy_id, "attendance_id": attendance_id},
    )
    return EnqueueResult(skipped=False, queue_ids=queue_ids)
