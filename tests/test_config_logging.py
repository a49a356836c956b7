import json
import logging

import pytest
from pydantic import ValidationError

from app.config import Settings
from app.logging import RequestIdFilter, json_formatter, request_id_var


def test_settings_reject_non_positive_chunk_size():
    with pytest.raises(ValidationError):
        Settings(stream_chunk_size=0)


def test_settings_are_frozen():
    settings = Settings()
    with pytest.raises(ValidationError):
        settings.video_storage_dir = "/tmp"


def test_gateway_config_requires_api_key():
    with pytest.raises(ValueError, match="PAYMENT_GATEWAY_API_KEY"):
        Settings(payment_gateway_api_key=None).validate_gateway_config()
    Settings(payment_gateway_api_key="sk_live").validate_gateway_config()


def _record(message: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("app.test", logging.INFO, __file__, 1, message, (), None)


def test_request_id_filter_uses_context():
    token = request_id_var.set("rid-42")
    try:
        record = _record()
        assert RequestIdFilter().filter(record) is True
        assert record.request_id == "rid-42"
    finally:
        request_id_var.reset(token)


def test_request_id_filter_defaults_to_dash():
    record = _record()
    RequestIdFilter().filter(record)
    assert record.request_id == "-"


def test_json_formatter_includes_request_id():
    record = _record("streamed %s bytes")
    record.args = (10,)
    record.request_id = "rid-7"

    payload = json.loads(json_formatter().format(record))

    assert payload["event"] == "streamed 10 bytes"
    assert payload["request_id"] == "rid-7"
    assert payload["level"] == "info"
    assert payload["logger"] == "app.test"
    assert "timestamp" in payload


def test_json_formatter_falls_back_to_context_request_id():
    token = request_id_var.set("rid-ctx")
    try:
        payload = json.loads(json_formatter().format(_record()))
    finally:
        request_id_var.reset(token)

    assert payload["event"] == "hello"
    assert payload["request_id"] == "rid-ctx"
