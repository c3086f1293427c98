"""Import all models so SQLAlchemy metadata is fully registered."""

from academy.db.base import Base

from academy.models.academy import Academy, User
from academy.models.attendance import AcademyClass, Attendance, ClassSession
from academy.models.audit import AuditLog
from academy.models.enums import (
    AlimtalkTemplateType,
    AttendanceStatus,
    ContactStatus,
    NotificationChannel,
    NotificationEventType,
    NotificationQueueStatus,
    ParentRelationship,
    Role,
    SessionStatus,
)
from academy.models.notification import (
    AcademyNotificationSettings,
    AlimtalkTemplate,
    NotificationQueue,
    ParentContact,
    RateLimitCounter,
)

__all__ = [
    "Base",
    "Academy",
    "User",
    "AcademyClass",
    "ClassSession",
    "Attendance",
    "AuditLog",
    "AcademyNotificationSettings",
    "AlimtalkTemplate",
    "NotificationQueue",
    "ParentContact",
    "RateLimitCounter",
    "AlimtalkTemplateType",
    "AttendanceStatus",
    "ContactStatus",
    "NotificationChannel",
    "NotificationEventType",
    "NotificationQueueStatus",
    "ParentRelationship",
    "Role",
    "SessionStatus",
]
