"""
Unit tests for structured logging and request correlation.
"""

import json
import logging
import sys

from fastapi.testclient import TestClient

from app.core.observability import StructuredFormatter, set_correlation_id, set_user_subject
from app.main import create_app


def _record(msg: str, level: int = logging.INFO, exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord("app.test", level, __file__, 10, msg, (), exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_standard_fields(self):
        entry = json.loads(StructuredFormatter().format(_record("hello")))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "app.test"
        assert entry["message"] == "hello"
        assert entry["line"] == 10
        assert "extra" not in entry

    def test_correlation_and_subject(self):
        set_correlation_id("req-123")
        set_user_subject("alice-sub")
        try:
            entry = json.loads(StructuredFormatter().format(_record("hello")))
        finally:
            set_correlation_id("")
            set_user_subject("")

        assert entry["request_id"] == "req-123"
        assert entry["user"] == "alice-sub"

    def test_extra_fields_are_nested(self):
        record = _record("call", rpc_method="x.v1.Svc/Do", code="OK")

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["extra"] == {"rpc_method": "x.v1.Svc/Do", "code": "OK"}

    def test_exception_summary(self):
        try:
            raise ValueError("bad input")
        except ValueError:
            record = _record("failed", logging.ERROR, exc_info=sys.exc_info())

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["exception"] == {"type": "ValueError", "message": "bad input"}


class TestRequestId:
    def test_gateway_echoes_the_request_id(self, store, publisher, validator):
        client = TestClient(create_app(store, publisher, validator))

        response = client.get("/api/v1/health", headers={"X-Request-ID": "trace-42"})

        assert response.headers["X-Request-ID"] == "trace-42"

    def test_gateway_generates_a_request_id(self, store, publisher, validator):
        client = TestClient(create_app(store, publisher, validator))

        response = client.get("/api/v1/health")

        assert len(response.headers["X-Request-ID"]) == 36
