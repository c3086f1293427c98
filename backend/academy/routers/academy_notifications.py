from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from academy.core import rbac
from academy.core.deps import get_current_user
from academy.db.session import get_db
from academy.models.academy import User
from academy.models.enums import NotificationQueueStatus, Role
from academy.repositories.tenant import TenantRepository
from academy.schemas.notification import EnqueueResultRead, NotificationQueueRead
from academy.services.attendance_notifier import enqueue_attendance_notification

router = APIRouter(prefix="/api/academy", tags=["academy-notifications"])


@router.post("/attendance/{attendance_id}/notify", response_model=EnqueueResultRead)
def notify_attendance(
    attendance_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EnqueueResultRead:
    rbac.require_roles(current_user, {Role.ADMIN, Role.TEACHER})
    academy_id = rbac.require_academy_id(current_user)
    result = enqueue_attendance_notification(
        db,
        academy_id=academy_id,
        attendance_id=attendance_id,
        actor_user_id=current_user.id,
    )
    db.commit()
    return EnqueueResultRead(
        skipped=result.skipped,
        reason=result.reason.value if result.reason else None,
        detail=result.detail,
        queue_ids=result.queue_ids,
    )


@router.get("/notification-queue", response_model=List[NotificationQueueRead])
def list_notification_queue(
    status_filter: Optional[NotificationQueueStatus] = Query(None, alias="status"),
    attendance_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[NotificationQueueRead]:
    rbac.require_roles(current_user, {Role.ADMIN})
    repo = TenantRepository(db, rbac.require_academy_id(current_user))
    entries = repo.list_queue_entries(status=status_filter, attendance_id=attendance_id, limit=limit)
    return [NotificationQueueRead.model_validate(entry) for entry in entries]
