import json
import logging

from core.logging_config import JsonFormatter
from core.request_context import set_request_id

FAKE_KEY = "AIza" + "x" * 35


def make_record(msg, **extra):
    record = logging.LogRecord("story.test", logging.WARNING, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_log_line_carries_request_id_and_extra():
    set_request_id("req-123")
    line = json.loads(JsonFormatter().format(make_record("Marked key as exhausted.", next_slot=2)))

    assert line["message"] == "Marked key as exhausted."
    assert line["request_id"] == "req-123"
    assert line["next_slot"] == 2
    set_request_id(None)


def test_api_keys_are_redacted():
    record = make_record(f"[400 Bad Request] API key not valid: {FAKE_KEY}", error=f"key={FAKE_KEY}")
    line = JsonFormatter().format(record)

    assert FAKE_KEY not in line
    assert "AIza***" in line


def test_unserializable_extra_is_repr():
    line = json.loads(JsonFormatter().format(make_record("x", payload={1, 2})))
    assert line["payload"] == repr({1, 2})
