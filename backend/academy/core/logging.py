from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request, Response
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from academy.core.security import decode_token

SERVICE_NAME = "academy-notify"

# Attributes passed through ``extra=`` that end up as top-level JSON keys.
CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "role",
    "academy_id",
    "queue_id",
    "attendance_id",
    "path",
    "method",
    "status_code",
    "latency_ms",
)

# httpx logs every provider request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str = SERVICE_NAME) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)})

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(level: str = "INFO", *, service: str = SERVICE_NAME) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(service=service))
    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _token_claims(request: Request) -> dict[str, Any]:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return {}
    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        return {}
    try:
        return decode_token(token)
    except JWTError:
        return {}


def _user_id(claims: dict[str, Any]) -> Optional[int]:
    try:
        return int(claims["sub"])
    except (KeyError, ValueError, TypeError):
        return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request; assigns or echoes ``X-Request-Id``."""

    def __init__(self, app, logger_name: str = "request") -> None:
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        claims = _token_claims(request)
        context = {
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "user_id": _user_id(claims),
            "role": claims.get("role"),
        }
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            context["latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
            self.logger.exception("unhandled_exception", extra=context)
            raise

        context["status_code"] = response.status_code
        context["latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
        self.logger.info("request", extra=context)

        if response.status_code == 403 and context["user_id"]:
            logging.getLogger("security").info("forbidden", extra=context)

        response.headers["X-Request-Id"] = request_id
        return response
