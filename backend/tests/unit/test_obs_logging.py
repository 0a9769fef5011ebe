import json
import logging

from filmweekly.obs.logging import JSONLogFormatter, bind_context, current_context, reset_context


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("filmweekly.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_bound_context_is_included_and_reset():
    tokens = bind_context(message_id="1-0", task_type="content-moderation", submission_id=7)
    try:
        payload = json.loads(JSONLogFormatter().format(_record("task started")))
    finally:
        reset_context(tokens)

    assert payload["msg"] == "task started"
    assert payload["message_id"] == "1-0"
    assert payload["task_type"] == "content-moderation"
    assert payload["submission_id"] == 7
    assert current_context() == {}


def test_sensitive_and_binary_fields_are_sanitized():
    record = _record("posting", api_token="abc", body="raw", payload=b"\x00" * 12)

    payload = json.loads(JSONLogFormatter().format(record))

    assert payload["api_token"] == "[redacted]"
    assert payload["body"] == "[redacted]"
    assert payload["payload"] == "<12 bytes>"
