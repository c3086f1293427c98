from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from academy.models.enums import (
    AttendanceStatus,
    NotificationChannel,
    NotificationEventType,
    NotificationQueueStatus,
)
from academy.services.alimtalk_client import is_valid_phone, normalize_phone


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class EnqueueResultRead(BaseModel):
    skipped: bool
    reason: Optional[str] = None
    detail: Optional[str] = None
    queue_ids: List[int] = Field(default_factory=list)


class NotificationQueueRead(ORMModel):
    id: int
    academy_id: int
    channel: NotificationChannel
    event_type: NotificationEventType
    attendance_id: Optional[int] = None
    attendance_status: Optional[AttendanceStatus] = None
    student_user_id: Optional[int] = None
    parent_contact_id: Optional[int] = None
    recipient_phone: str
    template_code: str
    template_vars: Dict[str, str] = Field(default_factory=dict)
    status: NotificationQueueStatus
    scheduled_at: datetime
    next_retry_at: Optional[datetime] = None
    attempts: int
    max_attempts: int
    processed_at: Optional[datetime] = None
    provider_message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime


class AdhocSendRequest(BaseModel):
    phone: str = Field(..., min_length=1, max_length=20)
    template_code: str = Field(..., min_length=1, max_length=100)
    params: Dict[str, str] = Field(default_factory=dict)
    recipient_id: Optional[int] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        phone = normalize_phone(value)
        if not is_valid_phone(phone):
            raise ValueError("phone must be a Korean mobile number (01X-XXXX-XXXX)")
        return phone


class AdhocSendResponse(BaseModel):
    queue_id: int
    success: bool
    status: NotificationQueueStatus
    error_code: Optional[str] = None
    error: Optional[str] = None


class SweepSummary(BaseModel):
    processed: int
    succeeded: int
    failed: int
    retried: int
    skipped: int
    reclaimed: int
