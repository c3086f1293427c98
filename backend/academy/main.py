from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from academy.core.logging import RequestLoggingMiddleware, configure_logging
from academy.core.observability import PrometheusMiddleware, metrics_endpoint, update_queue_metrics
from academy.core.settings import settings
from academy.db.session import get_db
from academy.models.enums import NotificationQueueStatus
from academy.models.notification import NotificationQueue
from academy.routers.router_registry import include_all_routers

configure_logging(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.project_name, version=settings.project_version)

if settings.environment.lower() in ("production", "prod") and settings.jwt_secret.startswith("change_me"):
    raise RuntimeError("JWT_SECRET must be set in production")

# Observability middleware
app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], tags=["observability"], include_in_schema=False)

include_all_routers(app)


@app.get("/healthz", tags=["health"])
def healthcheck(db: Session = Depends(get_db)) -> dict[str, str | int]:
    """
    Health check endpoint with DB and AlimTalk queue status.
    Returns 503 if the database is unreachable.
    """
    try:
        db.execute(text("SELECT 1"))
        pending_count = (
            db.query(NotificationQueue)
            .filter(NotificationQueue.status == NotificationQueueStatus.PENDING)
            .count()
        )
        failed_count = (
            db.query(NotificationQueue)
            .filter(NotificationQueue.status == NotificationQueueStatus.FAILED)
            .count()
        )
    except SQLAlchemyError as exc:
        logger.error("Healthcheck failed: %s", exc, exc_info=True)
        raise HTTPException(status_code=503, detail="Service unavailable") from exc

    update_queue_metrics(pending_count, failed_count)

    status = "ok"
    if pending_count > 500:
        status = "degraded"
    return {
        "status": status,
        "database": "ok",
        "alimtalk_queue_pending": pending_count,
        "alimtalk_queue_failed": failed_count,
    }
