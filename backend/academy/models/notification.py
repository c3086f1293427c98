from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from academy.db.base import AcademyScopedMixin, Base, IDMixin, TimestampMixin
from academy.models.enums import (
    AlimtalkTemplateType,
    AttendanceStatus,
    ContactStatus,
    NotificationChannel,
    NotificationEventType,
    NotificationQueueStatus,
    ParentRelationship,
)


class AcademyNotificationSettings(IDMixin, TimestampMixin, Base):
    __tablename__ = "academy_notification_settings"

    academy_id: Mapped[int] = mapped_column(
        ForeignKey("academies.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    alimtalk_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    send_on_absent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    send_on_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    send_on_excused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allow_resend_on_status_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quiet_hours_start: Mapped[str] = mapped_column(String(5), nullable=False, default="21:00")
    quiet_hours_end: Mapped[str] = mapped_column(String(5), nullable=False, default="08:00")


class ParentContact(IDMixin, AcademyScopedMixin, TimestampMixin, Base):
    __tablename__ = "parent_contacts"

    student_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    relationship_type: Mapped[ParentRelationship] = mapped_column(
        Enum(ParentRelationship, name="parent_relationship"),
        nullable=False,
        default=ParentRelationship.ETC,
    )
    notification_opt_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[ContactStatus] = mapped_column(
        Enum(ContactStatus, name="contact_status"),
        nullable=False,
        default=ContactStatus.ACTIVE,
        index=True,
    )
    consent_recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class AlimtalkTemplate(IDMixin, AcademyScopedMixin, TimestampMixin, Base):
    __tablename__ = "alimtalk_templates"

    type: Mapped[AlimtalkTemplateType] = mapped_column(
        Enum(AlimtalkTemplateType, name="alimtalk_template_type"), nullable=False, index=True
    )
    template_code: Mapped[str] = mapped_column(String(100), nullable=False)
    sender_key: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class NotificationQueue(IDMixin, AcademyScopedMixin, TimestampMixin, Base):
    """One outbound AlimTalk message and its delivery lifecycle.

    Rows are never deleted: SENT and FAILED are terminal.
    """

    __tablename__ = "notification_queue"

    channel: Mapped[NotificationChannel] = mapped_column(
        Enum(NotificationChannel, name="notification_channel"),
        nullable=False,
        default=NotificationChannel.KAKAO_ALIMTALK,
    )
    event_type: Mapped[NotificationEventType] = mapped_column(
        Enum(NotificationEventType, name="notification_event_type"),
        nullable=False,
        index=True,
    )
    attendance_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("attendances.id", ondelete="SET NULL"), nullable=True, index=True
    )
    attendance_status: Mapped[Optional[AttendanceStatus]] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"), nullable=True
    )
    student_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    parent_contact_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("parent_contacts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    recipient_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    template_code: Mapped[str] = mapped_column(String(100), nullable=False)
    sender_key: Mapped[str] = mapped_column(String(200), nullable=False)
    template_vars: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[NotificationQueueStatus] = mapped_column(
        Enum(NotificationQueueStatus, name="notification_queue_status"),
        nullable=False,
        default=NotificationQueueStatus.PENDING,
        index=True,
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in (NotificationQueueStatus.SENT, NotificationQueueStatus.FAILED)


class RateLimitCounter(IDMixin, Base):
    """Fixed-window counters shared by every delivery worker."""

    __tablename__ = "rate_limit_counters"
    __table_args__ = (
        UniqueConstraint("key", "window_start", name="uq_rate_limit_counters_key_window"),
    )

    key: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
