from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from academy.core import rbac
from academy.core.deps import get_alimtalk_gateway, get_current_user, get_rate_limiter
from academy.db.session import get_db, get_session_factory
from academy.models.academy import User
from academy.models.enums import Role
from academy.schemas.notification import AdhocSendRequest, AdhocSendResponse, SweepSummary
from academy.services.alimtalk_client import AlimtalkGateway
from academy.services.queue_worker import process_notification_queue, send_adhoc_notification
from academy.services.rate_limit import GatewayRateLimiter

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.post("/send", response_model=AdhocSendResponse)
def send_notification(
    payload: AdhocSendRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: AlimtalkGateway = Depends(get_alimtalk_gateway),
) -> AdhocSendResponse:
    rbac.require_roles(current_user, {Role.ADMIN, Role.SUPER_ADMIN})
    academy_id = rbac.require_academy_id(current_user)
    result = send_adhoc_notification(
        db,
        academy_id=academy_id,
        phone=payload.phone,
        template_code=payload.template_code,
        params=payload.params,
        recipient_id=payload.recipient_id,
        actor_user_id=current_user.id,
        ip=request.client.host if request.client else None,
        gateway=gateway,
    )
    db.commit()
    return AdhocSendResponse(
        queue_id=result.queue_id,
        success=result.success,
        status=result.status,
        error_code=result.error_code,
        error=result.error,
    )


@router.post("/retry", response_model=SweepSummary)
def retry_notifications(
    current_user: User = Depends(get_current_user),
    session_factory: sessionmaker = Depends(get_session_factory),
    gateway: AlimtalkGateway = Depends(get_alimtalk_gateway),
    rate_limiter: GatewayRateLimiter = Depends(get_rate_limiter),
) -> SweepSummary:
    rbac.require_roles(current_user, {Role.SUPER_ADMIN})
    result = process_notification_queue(
        session_factory,
        gateway=gateway,
        rate_limiter=rate_limiter,
    )
    return SweepSummary(**result.as_dict())
