"""Kakao AlimTalk client for the Aligo BizMessage REST API.

``POST {base}/akv10/alimtalk/send/`` with a form-encoded body. Credentials
(``KAKAO_API_KEY`` / ``KAKAO_USER_ID``) are read from settings on every call,
so a missing key shows up as ``CONFIG_MISSING`` per attempt rather than at
startup. The sender key and template code come from the queue row.

``alimtalk_timeout_seconds`` is an overall deadline for the exchange: httpx
applies it to each phase, and the body is streamed so a response that trickles
in past the deadline is abandoned as ``TIMEOUT``.
"""
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import httpx

from academy.core.settings import settings

logger = logging.getLogger(__name__)

SEND_PATH = "/akv10/alimtalk/send/"
PHONE_PATTERN = re.compile(r"^01[016789]\d{7,8}$")

CONFIG_MISSING = "CONFIG_MISSING"
INVALID_RECIPIENT = "INVALID_RECIPIENT"
TIMEOUT = "TIMEOUT"
FETCH_ERROR = "FETCH_ERROR"
INVALID_RESPONSE = "INVALID_RESPONSE"

_RETRYABLE_HTTP_STATUSES = {408, 425, 429}


@dataclass(frozen=True)
class AlimtalkSendResult:
    success: bool
    provider_message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False

    @classmethod
    def ok(cls, provider_message_id: Optional[str]) -> "AlimtalkSendResult":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def transient(cls, code: str, message: str) -> "AlimtalkSendResult":
        return cls(success=False, error_code=code, error_message=message, retryable=True)

    @classmethod
    def permanent(cls, code: str, message: str) -> "AlimtalkSendResult":
        return cls(success=False, error_code=code, error_message=message, retryable=False)


class AlimtalkGateway(Protocol):
    def send(
        self,
        *,
        sender_key: str,
        template_code: str,
        phone: str,
        variables: Mapping[str, str],
    ) -> AlimtalkSendResult:
        ...


def _read_within(resp: httpx.Response, deadline: float) -> Optional[bytes]:
    """Body bytes, or None once the deadline passes before the body is complete."""
    if time.monotonic() > deadline:
        return None
    chunks = []
    for chunk in resp.iter_bytes():
        chunks.append(chunk)
        if time.monotonic() > deadline:
            return None
    return b"".join(chunks)


def normalize_phone(raw: str) -> str:
    return re.sub(r"[\s\-]", "", raw or "")


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_PATTERN.match(phone or ""))


class AlimtalkClient:
    """Stateless: one HTTP request per ``send`` call, never raises for expected failures."""

    def __init__(self, *, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._transport = transport

    def _url(self) -> str:
        return (settings.alimtalk_base_url or "").rstrip("/") + SEND_PATH

    def send(
        self,
        *,
        sender_key: str,
        template_code: str,
        phone: str,
        variables: Mapping[str, str],
    ) -> AlimtalkSendResult:
        api_key = settings.kakao_api_key
        user_id = settings.kakao_user_id
        if not api_key or not user_id:
            logger.warning("KAKAO_API_KEY or KAKAO_USER_ID not set; message not sent")
            return AlimtalkSendResult.permanent(CONFIG_MISSING, "Kakao credentials not configured")
        if not sender_key:
            return AlimtalkSendResult.permanent(CONFIG_MISSING, "Kakao sender key not configured")
        if not is_valid_phone(phone):
            return AlimtalkSendResult.permanent(INVALID_RECIPIENT, f"Invalid recipient phone: {phone!r}")

        form = {
            "apikey": api_key,
            "userid": user_id,
            "senderkey": sender_key,
            "tpl_code": template_code,
            "receiver_1": phone,
            # Provider substitutes #{var} placeholders from this JSON map.
            "tpl_vars": json.dumps(dict(variables), ensure_ascii=False),
            "failover": "0",  # AlimTalk only, no SMS fallback
        }

        timeout = settings.alimtalk_timeout_seconds
        deadline = time.monotonic() + timeout
        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                with client.stream("POST", self._url(), data=form) as resp:
                    body = _read_within(resp, deadline)
        except httpx.TimeoutException as exc:
            return AlimtalkSendResult.transient(TIMEOUT, f"Provider timeout: {exc}")
        except httpx.HTTPError as exc:
            return AlimtalkSendResult.transient(FETCH_ERROR, str(exc) or type(exc).__name__)

        if body is None:
            return AlimtalkSendResult.transient(TIMEOUT, f"Provider response exceeded {timeout}s")

        if resp.status_code < 200 or resp.status_code >= 300:
            code = f"HTTP_{resp.status_code}"
            message = f"HTTP error {resp.status_code}"
            if resp.status_code >= 500 or resp.status_code in _RETRYABLE_HTTP_STATUSES:
                return AlimtalkSendResult.transient(code, message)
            return AlimtalkSendResult.permanent(code, message)

        try:
            data = json.loads(body)
            provider_code = int(data.get("code"))
        except (ValueError, TypeError, AttributeError):
            snippet = body[:200].decode(errors="replace")
            return AlimtalkSendResult.transient(INVALID_RESPONSE, f"Unparseable provider response: {snippet}")

        if provider_code != 0:
            code = str(provider_code)
            message = str(data.get("message") or "")
            if code in settings.alimtalk_permanent_error_codes:
                return AlimtalkSendResult.permanent(code, message)
            return AlimtalkSendResult.transient(code, message)

        info = data.get("info") or {}
        mid = info.get("mid") if isinstance(info, dict) else None
        return AlimtalkSendResult.ok(str(mid) if mid is not None else None)
