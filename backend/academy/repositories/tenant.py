"""
Tenant-scoped data access for the notification pipeline.

Every method filters on (or stamps) the repository's ``academy_id``; there is
no way to reach another academy's rows through this class.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session

from academy.models.academy import Academy, User
from academy.models.attendance import AcademyClass, Attendance, ClassSession
from academy.models.enums import (
    ACTIVE_QUEUE_STATUSES,
    AlimtalkTemplateType,
    AttendanceStatus,
    ContactStatus,
    NotificationQueueStatus,
)
from academy.models.notification import (
    AcademyNotificationSettings,
    AlimtalkTemplate,
    NotificationQueue,
    ParentContact,
)


class TenantRepository:
    def __init__(self, db: Session, academy_id: int) -> None:
        if academy_id is None:
            raise ValueError("academy_id is required for tenant-scoped access")
        self.db = db
        self.academy_id = academy_id

    # Collaborator reads
    def get_academy(self) -> Optional[Academy]:
        return self.db.query(Academy).filter(Academy.id == self.academy_id).first()

    def get_user(self, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        return (
            self.db.query(User)
            .filter(User.id == user_id, User.academy_id == self.academy_id)
            .first()
        )

    def get_attendance(self, attendance_id: int) -> Optional[Attendance]:
        return (
            self.db.query(Attendance)
            .filter(Attendance.id == attendance_id, Attendance.academy_id == self.academy_id)
            .first()
        )

    def get_session(self, session_id: int) -> Optional[ClassSession]:
        return (
            self.db.query(ClassSession)
            .filter(ClassSession.id == session_id, ClassSession.academy_id == self.academy_id)
            .first()
        )

    def get_class(self, class_id: int) -> Optional[AcademyClass]:
        return (
            self.db.query(AcademyClass)
            .filter(AcademyClass.id == class_id, AcademyClass.academy_id == self.academy_id)
            .first()
        )

    def get_notification_settings(self) -> Optional[AcademyNotificationSettings]:
        return (
            self.db.query(AcademyNotificationSettings)
            .filter(AcademyNotificationSettings.academy_id == self.academy_id)
            .first()
        )

    def list_eligible_contacts(self, student_user_id: int) -> List[ParentContact]:
        return (
            self.db.query(ParentContact)
            .filter(
                ParentContact.academy_id == self.academy_id,
                ParentContact.student_user_id == student_user_id,
                ParentContact.notification_opt_in.is_(True),
                ParentContact.status == ContactStatus.ACTIVE,
            )
            .order_by(ParentContact.id.asc())
            .all()
        )

    def get_active_template(self, template_type: AlimtalkTemplateType) -> Optional[AlimtalkTemplate]:
        return (
            self.db.query(AlimtalkTemplate)
            .filter(
                AlimtalkTemplate.academy_id == self.academy_id,
                AlimtalkTemplate.type == template_type,
                AlimtalkTemplate.is_active.is_(True),
            )
            .order_by(AlimtalkTemplate.updated_at.desc())
            .first()
        )

    # Queue
    def find_active_queue_entry(
        self,
        *,
        attendance_id: int,
        attendance_status: AttendanceStatus,
    ) -> Optional[NotificationQueue]:
        return (
            self.db.query(NotificationQueue)
            .filter(
                NotificationQueue.academy_id == self.academy_id,
                NotificationQueue.attendance_id == attendance_id,
                NotificationQueue.attendance_status == attendance_status,
                NotificationQueue.status.in_(ACTIVE_QUEUE_STATUSES),
            )
            .first()
        )

    def add_queue_entry(self, entry: NotificationQueue) -> NotificationQueue:
        entry.academy_id = self.academy_id
        self.db.add(entry)
        return entry

    def get_queue_entry(self, entry_id: int) -> Optional[NotificationQueue]:
        return (
            self.db.query(NotificationQueue)
            .filter(NotificationQueue.id == entry_id, NotificationQueue.academy_id == self.academy_id)
            .first()
        )

    def list_queue_entries(
        self,
        *,
        status: Optional[NotificationQueueStatus] = None,
        attendance_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[NotificationQueue]:
        query = self.db.query(NotificationQueue).filter(NotificationQueue.academy_id == self.academy_id)
        if status:
            query = query.filter(NotificationQueue.status == status)
        if attendance_id is not None:
            query = query.filter(NotificationQueue.attendance_id == attendance_id)
        return query.order_by(NotificationQueue.created_at.desc(), NotificationQueue.id.desc()).limit(limit).all()
