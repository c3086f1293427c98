"""Create academy core tables and the AlimTalk notification queue.

Revision ID: 0001_attendance_notifications
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_attendance_notifications"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "user_role": ("SUPER_ADMIN", "ADMIN", "TEACHER", "STUDENT"),
    "session_status": ("SCHEDULED", "COMPLETED", "CANCELLED"),
    "attendance_status": ("PRESENT", "ABSENT", "LATE", "EXCUSED"),
    "contact_status": ("ACTIVE", "INACTIVE"),
    "parent_relationship": ("MOTHER", "FATHER", "GUARDIAN", "ETC"),
    "alimtalk_template_type": ("ABSENT", "LATE", "EXCUSED"),
    "notification_channel": ("KAKAO_ALIMTALK",),
    "notification_event_type": ("ATTENDANCE", "MANUAL"),
    "notification_queue_status": ("PENDING", "PROCESSING", "SENT", "FAILED"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def _academy_fk() -> sa.Column:
    return sa.Column(
        "academy_id",
        sa.Integer(),
        sa.ForeignKey("academies.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "academies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_academies_code", "academies", ["code"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("academy_id", sa.Integer(), sa.ForeignKey("academies.id", ondelete="CASCADE"), nullable=True),
        sa.Column("role", _enum("user_role"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_academy_id", "users", ["academy_id"], unique=False)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "classes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _academy_fk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("teacher_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_classes_academy_id", "classes", ["academy_id"], unique=False)
    op.create_index("ix_classes_teacher_user_id", "classes", ["teacher_user_id"], unique=False)

    op.create_table(
        "class_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _academy_fk(),
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("classes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", _enum("session_status"), nullable=False, server_default="SCHEDULED"),
        *_timestamps(),
    )
    op.create_index("ix_class_sessions_academy_id", "class_sessions", ["academy_id"], unique=False)
    op.create_index("ix_class_sessions_class_id", "class_sessions", ["class_id"], unique=False)
    op.create_index("ix_class_sessions_starts_at", "class_sessions", ["starts_at"], unique=False)
    op.create_index("ix_class_sessions_status", "class_sessions", ["status"], unique=False)

    op.create_table(
        "attendances",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _academy_fk(),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", _enum("attendance_status"), nullable=False),
        sa.Column("marked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("marked_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("session_id", "student_user_id", name="uq_attendance_session_student"),
    )
    op.create_index("ix_attendances_academy_id", "attendances", ["academy_id"], unique=False)
    op.create_index("ix_attendances_session_id", "attendances", ["session_id"], unique=False)
    op.create_index("ix_attendances_student_user_id", "attendances", ["student_user_id"], unique=False)

    op.create_table(
        "academy_notification_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _academy_fk(),
        sa.Column("alimtalk_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("send_on_absent", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("send_on_late", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("send_on_excused", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("allow_resend_on_status_change", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("quiet_hours_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("quiet_hours_start", sa.String(length=5), nullable=False, server_default="21:00"),
        sa.Column("quiet_hours_end", sa.String(length=5), nullable=False, server_default="08:00"),
        *_timestamps(),
    )
    op.create_index(
        "ix_academy_notification_settings_academy_id",
        "academy_notification_settings",
        ["academy_id"],
        unique=True,
    )

    op.create_table(
        "parent_contacts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _academy_fk(),
        sa.Column("student_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=False),
        sa.Column("relationship_type", _enum("parent_relationship"), nullable=False, server_default="ETC"),
        sa.Column("notification_opt_in", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", _enum("contact_status"), nullable=False, server_default="ACTIVE"),
        sa.Column("consent_recorded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_parent_contacts_academy_id", "parent_contacts", ["academy_id"], unique=False)
    op.create_index("ix_parent_contacts_student_user_id", "parent_contacts", ["student_user_id"], unique=False)
    op.create_index("ix_parent_contacts_status", "parent_contacts", ["status"], unique=False)

    op.create_table(
        "alimtalk_templates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _academy_fk(),
        sa.Column("type", _enum("alimtalk_template_type"), nullable=False),
        sa.Column("template_code", sa.String(length=100), nullable=False),
        sa.Column("sender_key", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_alimtalk_templates_academy_id", "alimtalk_templates", ["academy_id"], unique=False)
    op.create_index("ix_alimtalk_templates_type", "alimtalk_templates", ["type"], unique=False)

    op.create_table(
        "notification_queue",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _academy_fk(),
        sa.Column("channel", _enum("notification_channel"), nullable=False, server_default="KAKAO_ALIMTALK"),
        sa.Column("event_type", _enum("notification_event_type"), nullable=False),
        sa.Column("attendance_id", sa.Integer(), sa.ForeignKey("attendances.id", ondelete="SET NULL"), nullable=True),
        sa.Column("attendance_status", _enum("attendance_status"), nullable=True),
        sa.Column("student_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "parent_contact_id",
            sa.Integer(),
            sa.ForeignKey("parent_contacts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("recipient_phone", sa.String(length=20), nullable=False),
        sa.Column("template_code", sa.String(length=100), nullable=False),
        sa.Column("sender_key", sa.String(length=200), nullable=False),
        sa.Column("template_vars", sa.JSON(), nullable=False),
        sa.Column("status", _enum("notification_queue_status"), nullable=False, server_default="PENDING"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("error_code", sa.String(length=50), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_notification_queue_academy_id", "notification_queue", ["academy_id"], unique=False)
    op.create_index("ix_notification_queue_event_type", "notification_queue", ["event_type"], unique=False)
    op.create_index("ix_notification_queue_attendance_id", "notification_queue", ["attendance_id"], unique=False)
    op.create_index("ix_notification_queue_student_user_id", "notification_queue", ["student_user_id"], unique=False)
    op.create_index(
        "ix_notification_queue_parent_contact_id",
        "notification_queue",
        ["parent_contact_id"],
        unique=False,
    )
    op.create_index("ix_notification_queue_status", "notification_queue", ["status"], unique=False)
    op.create_index("ix_notification_queue_next_retry_at", "notification_queue", ["next_retry_at"], unique=False)

    op.create_table(
        "rate_limit_counters",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=120), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("key", "window_start", name="uq_rate_limit_counters_key_window"),
    )
    op.create_index("ix_rate_limit_counters_key", "rate_limit_counters", ["key"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("academy_id", sa.Integer(), sa.ForeignKey("academies.id", ondelete="CASCADE"), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=True),
        sa.Column("target_id", sa.String(length=64), nullable=True),
        sa.Column("meta_json", sa.JSON(), nullable=True),
        sa.Column("ip", sa.String(length=64), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_academy_id", "audit_logs", ["academy_id"], unique=False)
    op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"], unique=False)


def downgrade() -> None:
    for table in (
        "audit_logs",
        "rate_limit_counters",
        "notification_queue",
        "alimtalk_templates",
        "parent_contacts",
        "academy_notification_settings",
        "attendances",
        "class_sessions",
        "classes",
        "users",
        "academies",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
