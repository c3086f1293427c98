"""
Delivery worker for the AlimTalk notification queue.

Per entry:

  PENDING --claim--> PROCESSING --success--> SENT
                                --transient, attempts left--> PENDING (next_retry_at += backoff)
                                --permanent or attempts exhausted--> FAILED

The claim is a conditional UPDATE that only matches a PENDING row, so two
overlapping sweeps can never both call the gateway for the same entry. A row
left in PROCESSING by a crashed worker is reclaimed once its lease expires;
the post-send write is conditional on the same claim, so a worker that
outlived its lease cannot overwrite the reclaimed state.

Called from the worker CLI loop and from the manual retry endpoint.
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from academy.core.observability import record_delivery_outcome
from academy.core.settings import settings
from academy.db.base import as_utc, utcnow
from academy.models.enums import NotificationChannel, NotificationEventType, NotificationQueueStatus
from academy.models.notification import NotificationQueue
from academy.repositories.tenant import TenantRepository
from academy.services.alimtalk_client import AlimtalkClient, AlimtalkGateway, AlimtalkSendResult
from academy.services.audit import write_audit_log
from academy.services.rate_limit import GatewayRateLimiter

logger = logging.getLogger("notification_worker")

CLAIM_EXPIRED = "CLAIM_EXPIRED"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class DeliveryOutcome(str, enum.Enum):
    SENT = "sent"
    RETRY = "retry"
    FAILED = "failed"
    SKIPPED = "skipped"
    CLAIM_LOST = "claim_lost"


@dataclass
class WorkerResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    reclaimed: int = 0

    def add(self, outcome: DeliveryOutcome) -> None:
        if outcome == DeliveryOutcome.SENT:
            self.succeeded += 1
        elif outcome == DeliveryOutcome.FAILED:
            self.failed += 1
        elif outcome == DeliveryOutcome.RETRY:
            self.retried += 1
        else:
            self.skipped += 1

    def as_dict(self) -> dict:
        return asdict(self)


def backoff_delay(attempts: int) -> timedelta:
    """Delay before the next try after ``attempts`` failed attempts; the last step repeats."""
    steps = settings.alimtalk_backoff_minutes or [5]
    index = min(max(attempts, 1), len(steps)) - 1
    return timedelta(minutes=steps[index])


def get_due_entries(db: Session, *, now: datetime, limit: int) -> List[tuple[int, int]]:
    """(id, academy_id) of PENDING rows whose next_retry_at has passed, across all academies."""
    rows = (
        db.query(NotificationQueue.id, NotificationQueue.academy_id)
        .filter(
            NotificationQueue.status == NotificationQueueStatus.PENDING,
            NotificationQueue.next_retry_at.is_not(None),
            NotificationQueue.next_retry_at <= now,
        )
        .order_by(NotificationQueue.next_retry_at.asc(), NotificationQueue.id.asc())
        .limit(limit)
        .all()
    )
    return [(row.id, row.academy_id) for row in rows]


def claim_entry(db: Session, *, entry_id: int, academy_id: int, now: datetime) -> bool:
    claimed = (
        db.query(NotificationQueue)
        .filter(
            NotificationQueue.id == entry_id,
            NotificationQueue.academy_id == academy_id,
            NotificationQueue.status == NotificationQueueStatus.PENDING,
        )
        .update(
            {
                NotificationQueue.status: NotificationQueueStatus.PROCESSING,
                NotificationQueue.claimed_at: now,
            },
            synchronize_session=False,
        )
    )
    return claimed == 1


def release_claim(db: Session, *, entry_id: int, academy_id: int) -> bool:
    """Hand a claimed row back untouched (no attempt consumed)."""
    released = (
        db.query(NotificationQueue)
        .filter(
            NotificationQueue.id == entry_id,
            NotificationQueue.academy_id == academy_id,
            NotificationQueue.status == NotificationQueueStatus.PROCESSING,
        )
        .update(
            {
                NotificationQueue.status: NotificationQueueStatus.PENDING,
                NotificationQueue.claimed_at: None,
            },
            synchronize_session=False,
        )
    )
    return released == 1


def delivery_transition(
    entry: NotificationQueue, result: AlimtalkSendResult, *, now: datetime
) -> tuple[DeliveryOutcome, dict]:
    """Outcome and column values that move a PROCESSING entry to its next state."""
    attempts = (entry.attempts or 0) + 1
    values = {
        NotificationQueue.attempts: attempts,
        NotificationQueue.claimed_at: None,
    }

    if result.success:
        values.update(
            {
                NotificationQueue.status: NotificationQueueStatus.SENT,
                NotificationQueue.processed_at: now,
                NotificationQueue.provider_message_id: result.provider_message_id,
                NotificationQueue.error_code: None,
                NotificationQueue.error_message: None,
            }
        )
        return DeliveryOutcome.SENT, values

    values[NotificationQueue.error_code] = result.error_code
    values[NotificationQueue.error_message] = result.error_message
    if not result.retryable or attempts >= entry.max_attempts:
        values.update(
            {
                NotificationQueue.status: NotificationQueueStatus.FAILED,
                NotificationQueue.processed_at: now,
                NotificationQueue.next_retry_at: None,
            }
        )
        return DeliveryOutcome.FAILED, values

    values[NotificationQueue.status] = NotificationQueueStatus.PENDING
    values[NotificationQueue.next_retry_at] = now + backoff_delay(attempts)
    return DeliveryOutcome.RETRY, values


def finish_claim(db: Session, entry: NotificationQueue, values: dict) -> bool:
    """Write the post-send state only while this worker still holds the claim.

    A reclaim clears ``claimed_at`` and a later claim stamps a new one, so a
    worker whose lease expired matches no row and its result is dropped.
    """
    updated = (
        db.query(NotificationQueue)
        .filter(
            NotificationQueue.id == entry.id,
            NotificationQueue.academy_id == entry.academy_id,
            NotificationQueue.status == NotificationQueueStatus.PROCESSING,
            NotificationQueue.claimed_at == entry.claimed_at,
        )
        .update(values, synchronize_session=False)
    )
    db.refresh(entry)
    return updated == 1


def _send(gateway: AlimtalkGateway, entry: NotificationQueue) -> AlimtalkSendResult:
    try:
        return gateway.send(
            sender_key=entry.sender_key,
            template_code=entry.template_code,
            phone=entry.recipient_phone,
            variables=dict(entry.template_vars or {}),
        )
    except Exception as exc:
        logger.exception("gateway_unexpected_error", extra={"queue_id": entry.id, "academy_id": entry.academy_id})
        return AlimtalkSendResult.transient(UNEXPECTED_ERROR, f"Unexpected error: {exc}")


def deliver_claimed_entry(
    db: Session,
    entry: NotificationQueue,
    *,
    gateway: AlimtalkGateway,
    now: datetime,
    audit: bool = True,
) -> DeliveryOutcome:
    result = _send(gateway, entry)
    outcome, values = delivery_transition(entry, result, now=now)

    log_extra = {"queue_id": entry.id, "academy_id": entry.academy_id}
    if not finish_claim(db, entry, values):
        logger.warning(
            "alimtalk_claim_lost status=%s result_success=%s",
            entry.status.value,
            result.success,
            extra=log_extra,
        )
        record_delivery_outcome(DeliveryOutcome.CLAIM_LOST.value)
        return DeliveryOutcome.CLAIM_LOST

    if outcome == DeliveryOutcome.SENT:
        if audit:
            write_audit_log(
                db,
                academy_id=entry.academy_id,
                action="alimtalk.sent",
                target_type="NotificationQueue",
                target_id=entry.id,
                meta={
                    "phone": entry.recipient_phone,
                    "provider_message_id": entry.provider_message_id,
                    "attempts": entry.attempts,
                },
            )
        logger.info("alimtalk_sent attempts=%s", entry.attempts, extra=log_extra)
    elif outcome == DeliveryOutcome.FAILED:
        if audit:
            write_audit_log(
                db,
                academy_id=entry.academy_id,
                action="alimtalk.failed",
                target_type="NotificationQueue",
                target_id=entry.id,
                meta={
                    "phone": entry.recipient_phone,
                    "error_code": entry.error_code,
                    "error": entry.error_message,
                    "attempts": entry.attempts,
                },
            )
        logger.warning(
            "alimtalk_failed code=%s attempts=%s",
            entry.error_code,
            entry.attempts,
            extra=log_extra,
        )
    else:
        logger.warning(
            "alimtalk_retry_scheduled code=%s attempts=%s next_retry_at=%s",
            entry.error_code,
            entry.attempts,
            entry.next_retry_at,
            extra=log_extra,
        )
    record_delivery_outcome(outcome.value)
    return outcome


def process_entry(
    session_factory: Callable[[], Session],
    *,
    entry_id: int,
    academy_id: int,
    gateway: AlimtalkGateway,
    rate_limiter: Optional[GatewayRateLimiter],
    now: datetime,
) -> DeliveryOutcome:
    with session_factory() as db:
        if not claim_entry(db, entry_id=entry_id, academy_id=academy_id, now=now):
            db.rollback()
            return DeliveryOutcome.SKIPPED
        db.commit()

        if rate_limiter is not None and not rate_limiter.acquire(now):
            release_claim(db, entry_id=entry_id, academy_id=academy_id)
            db.commit()
            logger.info("alimtalk_rate_limited", extra={"queue_id": entry_id, "academy_id": academy_id})
            return DeliveryOutcome.SKIPPED

        entry = TenantRepository(db, academy_id).get_queue_entry(entry_id)
        if entry is None or entry.status != NotificationQueueStatus.PROCESSING:
            db.rollback()
            return DeliveryOutcome.SKIPPED

        outcome = deliver_claimed_entry(db, entry, gateway=gateway, now=now)
        db.commit()
        return outcome


def reclaim_stale_claims(db: Session, *, now: datetime, lease: Optional[timedelta] = None) -> int:
    """Resolve PROCESSING rows abandoned by a crashed worker; the lost attempt counts."""
    lease = lease or timedelta(minutes=settings.alimtalk_claim_lease_minutes)
    cutoff = now - lease
    stale = (
        db.query(NotificationQueue)
        .filter(
            NotificationQueue.status == NotificationQueueStatus.PROCESSING,
            NotificationQueue.claimed_at.is_not(None),
            NotificationQueue.claimed_at <= cutoff,
        )
        .all()
    )
    reclaimed = 0
    for entry in stale:
        attempts = (entry.attempts or 0) + 1
        exhausted = attempts >= entry.max_attempts
        values = {
            NotificationQueue.status: (
                NotificationQueueStatus.FAILED if exhausted else NotificationQueueStatus.PENDING
            ),
            NotificationQueue.attempts: attempts,
            NotificationQueue.claimed_at: None,
            NotificationQueue.next_retry_at: None if exhausted else now,
            NotificationQueue.error_code: CLAIM_EXPIRED,
            NotificationQueue.error_message: "Claim lease expired before delivery finished",
        }
        if exhausted:
            values[NotificationQueue.processed_at] = now
        # Guarded on claimed_at so a worker that finishes meanwhile wins.
        updated = (
            db.query(NotificationQueue)
            .filter(
                NotificationQueue.id == entry.id,
                NotificationQueue.academy_id == entry.academy_id,
                NotificationQueue.status == NotificationQueueStatus.PROCESSING,
                NotificationQueue.claimed_at == entry.claimed_at,
            )
            .update(values, synchronize_session=False)
        )
        if updated:
            reclaimed += 1
            logger.warning(
                "alimtalk_claim_reclaimed exhausted=%s",
                exhausted,
                extra={"queue_id": entry.id, "academy_id": entry.academy_id},
            )
    return reclaimed


def process_notification_queue(
    session_factory: Callable[[], Session],
    *,
    gateway: Optional[AlimtalkGateway] = None,
    rate_limiter: Optional[GatewayRateLimiter] = None,
    now: Optional[datetime] = None,
    batch_size: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> WorkerResult:
    """Run one sweep: reclaim stale claims, then claim and deliver due entries."""
    timestamp = as_utc(now) if now else utcnow()
    gateway = gateway or AlimtalkClient()
    limit = batch_size or settings.alimtalk_batch_size
    workers = max(1, max_workers or settings.alimtalk_worker_concurrency)

    with session_factory() as db:
        reclaimed = reclaim_stale_claims(db, now=timestamp)
        db.commit()
        due = get_due_entries(db, now=timestamp, limit=limit)

    result = WorkerResult(processed=len(due), reclaimed=reclaimed)

    def _run(item: tuple[int, int]) -> DeliveryOutcome:
        entry_id, academy_id = item
        return process_entry(
            session_factory,
            entry_id=entry_id,
            academy_id=academy_id,
            gateway=gateway,
            rate_limiter=rate_limiter,
            now=timestamp,
        )

    if workers == 1 or len(due) <= 1:
        outcomes = [_run(item) for item in due]
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(due))) as pool:
            outcomes = list(pool.map(_run, due))

    for outcome in outcomes:
        result.add(outcome)

    if result.processed or result.reclaimed:
        logger.info(
            "notification_sweep processed=%s succeeded=%s failed=%s retried=%s skipped=%s reclaimed=%s",
            result.processed,
            result.succeeded,
            result.failed,
            result.retried,
            result.skipped,
            result.reclaimed,
        )
    return result


@dataclass
class AdhocSendResult:
    queue_id: int
    success: bool
    status: NotificationQueueStatus
    error_code: Optional[str] = None
    error: Optional[str] = None


def send_adhoc_notification(
    db: Session,
    *,
    academy_id: int,
    phone: str,
    template_code: str,
    params: dict[str, str],
    recipient_id: Optional[int] = None,
    actor_user_id: Optional[int] = None,
    ip: Optional[str] = None,
    gateway: Optional[AlimtalkGateway] = None,
    now: Optional[datetime] = None,
) -> AdhocSendResult:
    """Queue one MANUAL message and deliver it immediately through the normal claim path.

    A transient failure leaves the row PENDING for the sweeper. The caller owns the commit.
    """
    timestamp = as_utc(now) if now else utcnow()
    gateway = gateway or AlimtalkClient()
    repo = TenantRepository(db, academy_id)

    entry = repo.add_queue_entry(
        NotificationQueue(
            channel=NotificationChannel.KAKAO_ALIMTALK,
            event_type=NotificationEventType.MANUAL,
            student_user_id=recipient_id,
            recipient_phone=phone,
            template_code=template_code,
            sender_key=settings.kakao_default_sender_key or "",
            template_vars={str(k): str(v) for k, v in (params or {}).items()},
            status=NotificationQueueStatus.PENDING,
            scheduled_at=timestamp,
            next_retry_at=timestamp,
            attempts=0,
            max_attempts=settings.alimtalk_max_attempts,
        )
    )
    db.flush()

    if claim_entry(db, entry_id=entry.id, academy_id=academy_id, now=timestamp):
        db.refresh(entry)
        deliver_claimed_entry(db, entry, gateway=gateway, now=timestamp, audit=False)

    write_audit_log(
        db,
        academy_id=academy_id,
        actor_user_id=actor_user_id,
        action="notification.send",
        target_type="NotificationQueue",
        target_id=entry.id,
        meta={
            "phone": phone,
            "template_code": template_code,
            "success": entry.status == NotificationQueueStatus.SENT,
            "status": entry.status.value,
            "attempts": entry.attempts,
            "provider_message_id": entry.provider_message_id,
            "error_code": entry.error_code,
        },
        ip=ip,
    )
    return AdhocSendResult(
        queue_id=entry.id,
        success=entry.status == NotificationQueueStatus.SENT,
        status=entry.status,
        error_code=entry.error_code,
        error=entry.error_message,
    )
