"""Variable maps for attendance AlimTalk templates.

Templates registered with the Kakao BizMessage portal reference these keys
as ``#{academyName}``, ``#{studentName}`` and so on.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from academy.core.settings import settings
from academy.models.enums import AttendanceStatus

DEFAULT_TEACHER_NAME = "선생님"

STATUS_LABEL: dict[AttendanceStatus, str] = {
    AttendanceStatus.ABSENT: "결석",
    AttendanceStatus.LATE: "지각",
    AttendanceStatus.EXCUSED: "공결",
    AttendanceStatus.PRESENT: "출석",
}


@dataclass(frozen=True)
class AttendanceTemplateContext:
    academy_name: str
    student_name: str
    class_name: str
    session_date: str  # YYYY-MM-DD, local
    session_time: str  # HH:mm, local
    status_text: str
    teacher_name: str


def build_attendance_vars(context: AttendanceTemplateContext) -> dict[str, str]:
    return {
        "academyName": context.academy_name or "",
        "studentName": context.student_name or "",
        "className": context.class_name or "",
        "sessionDate": context.session_date or "",
        "sessionTime": context.session_time or "",
        "statusText": context.status_text or "",
        "teacherName": context.teacher_name or "",
    }


def status_label(status: AttendanceStatus) -> str:
    return STATUS_LABEL.get(status, status.value)


def to_local_date_string(value: datetime, tz: Optional[str] = None) -> str:
    return value.astimezone(ZoneInfo(tz or settings.academy_timezone)).strftime("%Y-%m-%d")


def to_local_time_string(value: datetime, tz: Optional[str] = None) -> str:
    return value.astimezone(ZoneInfo(tz or settings.academy_timezone)).strftime("%H:%M")
