from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from academy.models.audit import AuditLog

logger = logging.getLogger(__name__)


def write_audit_log(
    db: Session,
    *,
    action: str,
    academy_id: Optional[int] = None,
    actor_user_id: Optional[int] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int | str] = None,
    meta: Optional[dict] = None,
    ip: Optional[str] = None,
) -> Optional[AuditLog]:
    """Best-effort audit write; a failure is logged and never breaks the caller."""
    entry = AuditLog(
        academy_id=academy_id,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        meta_json=meta,
        ip=ip,
    )
    # Flush the caller's pending work first so a failed savepoint only drops the audit row.
    db.flush()
    try:
        with db.begin_nested():
            db.add(entry)
    except SQLAlchemyError:
        logger.warning("audit_write_failed", exc_info=True, extra={"academy_id": academy_id})
        return None
    return entry
