import json
import logging

from kinnect.obs import logging as obs_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("kinnect.test", logging.INFO, __file__, 1, "chat message sent", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_includes_bound_context():
    token = obs_logging.bind_context(request_id="req-1", sid="sid-9", user_id="u1")
    try:
        line = json.loads(obs_logging.JSONLogFormatter().format(_record(conversation_id="c1")))
    finally:
        obs_logging.reset_context(token)

    assert line["msg"] == "chat message sent"
    assert line["request_id"] == "req-1"
    assert line["sid"] == "sid-9"
    assert line["conversation_id"] == "c1"
    assert obs_logging.current_request_id() is None


def test_user_content_is_redacted():
    record = _record(content="private words", message_id="m1", token="abc", nested={"preview": "hi", "seq": 3})

    line = json.loads(obs_logging.JSONLogFormatter().format(record))

    assert line["content"] == "[redacted]"
    assert line["token"] == "[redacted]"
    assert line["message_id"] == "m1"
    assert line["nested"] == {"preview": "[redacted]", "seq": 3}


def test_get_logger_namespaces_under_kinnect():
    assert obs_logging.get_logger().name == "kinnect"
    assert obs_logging.get_logger("http").name == "kinnect.http"
    assert obs_logging.get_logger("kinnect.chat").name == "kinnect.chat"
