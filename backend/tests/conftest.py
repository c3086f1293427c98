from __future__ import annotations

import os

# Settings are read at import time; point them at an in-memory database first.
os.environ["DATABASE_URL"] = "sqlite+pysqlite://"
os.environ["KAKAO_API_KEY"] = "test-api-key"
os.environ["KAKAO_USER_ID"] = "test-user"
os.environ["KAKAO_SENDER_KEY"] = "default-sender-key"
os.environ["ACADEMY_TIMEZONE"] = "Asia/Seoul"

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from academy.models import (
    Academy,
    AcademyClass,
    AcademyNotificationSettings,
    AlimtalkTemplate,
    AlimtalkTemplateType,
    Attendance,
    AttendanceStatus,
    Base,
    ClassSession,
    ContactStatus,
    ParentContact,
    ParentRelationship,
    Role,
    SessionStatus,
    User,
)
from academy.services.alimtalk_client import AlimtalkSendResult

# 2026-03-02 14:00 KST, outside the default 21:00-08:00 quiet window.
NOW = datetime(2026, 3, 2, 5, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture()
def threaded_session_factory(tmp_path):
    """File-backed database; each worker thread gets its own connection."""
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'queue.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    finally:
        engine.dispose()


@pytest.fixture()
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@dataclass
class Tenant:
    academy: Academy
    settings: AcademyNotificationSettings
    admin: User
    teacher: User
    student: User
    academy_class: AcademyClass
    session: ClassSession
    attendance: Attendance
    contacts: List[ParentContact] = field(default_factory=list)
    templates: dict = field(default_factory=dict)


def build_tenant(
    db: Session,
    *,
    code: str,
    name: str = "Bright Math Academy",
    status: AttendanceStatus = AttendanceStatus.ABSENT,
    session_status: SessionStatus = SessionStatus.SCHEDULED,
    starts_at: Optional[datetime] = None,
) -> Tenant:
    academy = Academy(name=name, code=code)
    db.add(academy)
    db.flush()

    settings_row = AcademyNotificationSettings(
        academy_id=academy.id,
        alimtalk_enabled=True,
        send_on_absent=True,
        send_on_late=True,
        send_on_excused=False,
        allow_resend_on_status_change=False,
        quiet_hours_enabled=False,
        quiet_hours_start="21:00",
        quiet_hours_end="08:00",
    )
    admin = User(academy_id=academy.id, role=Role.ADMIN, name="Admin Kim", email=f"admin-{code}@example.com")
    teacher = User(academy_id=academy.id, role=Role.TEACHER, name="Park Teacher", email=f"teacher-{code}@example.com")
    student = User(academy_id=academy.id, role=Role.STUDENT, name="Lee Minjun", email=f"student-{code}@example.com")
    db.add_all([settings_row, admin, teacher, student])
    db.flush()

    academy_class = AcademyClass(academy_id=academy.id, name="Algebra 2", teacher_user_id=teacher.id)
    db.add(academy_class)
    db.flush()

    # 2026-03-02 18:30 KST
    starts = starts_at or datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
    session = ClassSession(
        academy_id=academy.id,
        class_id=academy_class.id,
        starts_at=starts,
        ends_at=starts + timedelta(hours=2),
        status=session_status,
    )
    db.add(session)
    db.flush()

    attendance = Attendance(
        academy_id=academy.id,
        session_id=session.id,
        student_user_id=student.id,
        status=status,
        marked_at=NOW,
        marked_by_user_id=teacher.id,
    )
    contacts = [
        ParentContact(
            academy_id=academy.id,
            student_user_id=student.id,
            name="Mother",
            phone="01012345678",
            relationship_type=ParentRelationship.MOTHER,
            notification_opt_in=True,
            status=ContactStatus.ACTIVE,
            consent_recorded_at=NOW,
        ),
        ParentContact(
            academy_id=academy.id,
            student_user_id=student.id,
            name="Father",
            phone="01098765432",
            relationship_type=ParentRelationship.FATHER,
            notification_opt_in=True,
            status=ContactStatus.ACTIVE,
            consent_recorded_at=NOW,
        ),
        ParentContact(
            academy_id=academy.id,
            student_user_id=student.id,
            name="Guardian",
            phone="01055550000",
            relationship_type=ParentRelationship.GUARDIAN,
            notification_opt_in=False,
            status=ContactStatus.ACTIVE,
        ),
    ]
    templates = {
        template_type: AlimtalkTemplate(
            academy_id=academy.id,
            type=template_type,
            template_code=f"ATT_{template_type.value}_{code}",
            sender_key=f"sender-{code}",
            is_active=True,
        )
        for template_type in AlimtalkTemplateType
    }
    db.add(attendance)
    db.add_all(contacts)
    db.add_all(list(templates.values()))
    db.commit()

    return Tenant(
        academy=academy,
        settings=settings_row,
        admin=admin,
        teacher=teacher,
        student=student,
        academy_class=academy_class,
        session=session,
        attendance=attendance,
        contacts=contacts,
        templates=templates,
    )


@pytest.fixture()
def tenant(db) -> Tenant:
    return build_tenant(db, code="A001")


@pytest.fixture()
def other_tenant(db) -> Tenant:
    return build_tenant(db, code="B002", name="Other Academy")


class FakeGateway:
    """Records every send and replays queued results (success by default)."""

    def __init__(self, results: Optional[List[AlimtalkSendResult]] = None) -> None:
        self.results = list(results or [])
        self.calls: List[dict] = []

    def send(self, *, sender_key, template_code, phone, variables):
        self.calls.append(
            {
                "sender_key": sender_key,
                "template_code": template_code,
                "phone": phone,
                "variables": dict(variables),
            }
        )
        if self.results:
            return self.results.pop(0)
        return AlimtalkSendResult.ok(f"mid-{len(self.calls)}")


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()
