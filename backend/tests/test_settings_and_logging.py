from __future__ import annotations

import json
import logging

from fastapi.testclient import TestClient

from academy.core.logging import JsonFormatter
from academy.core.settings import Settings
from academy.main import app


def test_list_settings_accept_comma_separated_values(monkeypatch):
    monkeypatch.setenv("ALIMTALK_BACKOFF_MINUTES", "1, 10, 60")
    monkeypatch.setenv("ALIMTALK_PERMANENT_ERROR_CODES", "-101,-102")

    loaded = Settings(_env_file=None)

    assert loaded.alimtalk_backoff_minutes == [1, 10, 60]
    assert loaded.alimtalk_permanent_error_codes == ["-101", "-102"]


def test_list_settings_accept_json(monkeypatch):
    monkeypatch.setenv("ALIMTALK_BACKOFF_MINUTES", "[2, 4]")

    assert Settings(_env_file=None).alimtalk_backoff_minutes == [2, 4]


def test_alimtalk_configured_requires_both_credentials(monkeypatch):
    monkeypatch.delenv("KAKAO_USER_ID", raising=False)

    loaded = Settings(_env_file=None)

    assert loaded.kakao_api_key == "test-api-key"
    assert loaded.alimtalk_configured is False


def test_json_formatter_includes_context_fields():
    record = logging.LogRecord(
        name="notification_worker",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="alimtalk_failed code=%s",
        args=("HTTP_400",),
        exc_info=None,
    )
    record.academy_id = 7
    record.queue_id = 42

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "alimtalk_failed code=HTTP_400"
    assert payload["level"] == "WARNING"
    assert payload["academy_id"] == 7
    assert payload["queue_id"] == 42
    assert "request_id" not in payload


def test_request_id_is_echoed():
    with TestClient(app) as client:
        response = client.get("/metrics", headers={"X-Request-Id": "req-123"})
    assert response.headers["X-Request-Id"] == "req-123"
