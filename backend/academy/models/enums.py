from __future__ import annotations

import enum


class Role(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"


class SessionStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"


class ContactStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ParentRelationship(str, enum.Enum):
    MOTHER = "MOTHER"
    FATHER = "FATHER"
    GUARDIAN = "GUARDIAN"
    ETC = "ETC"


class AlimtalkTemplateType(str, enum.Enum):
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"


class NotificationChannel(str, enum.Enum):
    KAKAO_ALIMTALK = "KAKAO_ALIMTALK"


class NotificationEventType(str, enum.Enum):
    ATTENDANCE = "ATTENDANCE"
    MANUAL = "MANUAL"


class NotificationQueueStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    FAILED = "FAILED"


ACTIVE_QUEUE_STATUSES = (
    NotificationQueueStatus.PENDING,
    NotificationQueueStatus.PROCESSING,
    NotificationQueueStatus.SENT,
)
