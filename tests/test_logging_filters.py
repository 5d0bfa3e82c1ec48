"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from marketplace.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    set_request_id,
)


@pytest.fixture
def log_stream():
    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    yield logger, stream
    logger.handlers.clear()
    clear_request_id()


def test_sensitive_filter_redacts_api_keys(log_stream):
    logger, stream = log_stream

    logger.info(
        "test_event",
        extra={
            "api_key": "alice-key",
            "x-api-key": "another-secret",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "alice-key" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_allows_safe_fields(log_stream):
    logger, stream = log_stream

    logger.info(
        "rate_limit.rejected",
        extra={
            "policy": "authentication",
            "key_hash": "0123456789abcdef",
            "limit": 5,
            "retry_after_s": 600,
        },
    )

    payload = json.loads(stream.getvalue())

    assert payload["message"] == "rate_limit.rejected"
    assert payload["policy"] == "authentication"
    assert payload["retry_after_s"] == 600
    assert "[REDACTED]" not in stream.getvalue()


def test_sensitive_filter_redacts_nested_dicts(log_stream):
    logger, stream = log_stream

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "Authorization": "Bearer secret-token",
                "user-agent": "pytest",
            },
            "safe_data": {"count": 5, "type": "test"},
        },
    )

    output = stream.getvalue()

    assert "secret-token" not in output
    assert "[REDACTED]" in output
    assert "pytest" in output


def test_request_id_from_context(log_stream):
    logger, stream = log_stream
    set_request_id("req-123")

    logger.warning("ownership.denied", extra={"resource": "extension"})

    payload = json.loads(stream.getvalue())
    assert payload["request_id"] == "req-123"
    assert payload["level"] == "warning"


def test_exception_info_is_rendered(log_stream):
    logger, stream = log_stream

    try:
        raise RuntimeError("hook blew up")
    except RuntimeError:
        logger.exception("rate_limit.hook_failed")

    payload = json.loads(stream.getvalue())
    assert "RuntimeError: hook blew up" in payload["exc_info"]
