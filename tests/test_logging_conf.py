import json
import logging
import sys
from datetime import UTC, datetime

from jwtlab.logging_conf import JsonFormatter, get_logger, set_level, setup_logging


def _record(msg, *, extra=None, exc_info=None):
    logger = logging.getLogger("jwtlab.test")
    rec = logger.makeRecord("jwtlab.test", logging.INFO, __file__, 1, msg, (), exc_info, extra=extra)
    return json.loads(JsonFormatter().format(rec))


def test_formatter_merges_extras():
    out = _record("token.issue", extra={"event": "token_issue", "token_id": "abc"})
    assert out["message"] == "token.issue"
    assert out["level"] == "INFO"
    assert out["logger"] == "jwtlab.test"
    assert out["event"] == "token_issue"
    assert out["token_id"] == "abc"
    assert "lineno" not in out


def test_formatter_accepts_dict_messages_and_datetimes():
    moment = datetime(2024, 1, 2, tzinfo=UTC)
    out = _record({"event": "summary", "requests": 3}, extra={"at": moment})
    assert out["requests"] == 3
    assert out["at"] == str(moment)


def test_formatter_includes_traceback():
    try:
        raise ValueError("boom")
    except ValueError:
        out = _record("failed", exc_info=sys.exc_info())
    assert "ValueError: boom" in out["exc_info"]


def test_get_logger_namespace():
    assert get_logger("store").name == "jwtlab.store"
    assert get_logger().name == "jwtlab"


def test_setup_logging_applies_explicit_level_after_first_call():
    root = logging.getLogger()
    previous = root.level
    try:
        setup_logging()
        setup_logging("error")
        assert root.level == logging.ERROR
        assert logging.getLogger("uvicorn.error").level == logging.ERROR

        setup_logging()
        assert root.level == logging.ERROR
    finally:
        set_level(previous)
