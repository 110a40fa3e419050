"""Tests for structured JSON logging."""

import json
import logging
import sys

from mediaforge.core.logging import CloudLoggingFormatter, session_token_context


def make_record(msg="Assembly complete", level=logging.INFO, extra=None, exc_info=None):
    record = logging.LogRecord(
        name="mediaforge.services.assembly.assembler",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in (extra or {}).items():
        setattr(record, key, value)
    return record


def test_formats_single_line_json_with_extras():
    formatter = CloudLoggingFormatter()

    line = formatter.format(make_record(extra={"file_id": 10, "elapsed_seconds": 1.5}))

    assert "\n" not in line
    entry = json.loads(line)
    assert entry["severity"] == "INFO"
    assert entry["message"] == "Assembly complete"
    assert entry["logger"] == "mediaforge.services.assembly.assembler"
    assert entry["file_id"] == 10
    assert entry["elapsed_seconds"] == 1.5
    assert entry["timestamp"].endswith("Z")
    assert "session_token" not in entry


def test_includes_session_token_from_context():
    formatter = CloudLoggingFormatter()
    token = session_token_context.set("tok-123")
    try:
        entry = json.loads(formatter.format(make_record()))
    finally:
        session_token_context.reset(token)

    assert entry["session_token"] == "tok-123"


def test_includes_exception_details():
    formatter = CloudLoggingFormatter()
    try:
        raise RuntimeError("spool write failed")
    except RuntimeError:
        record = make_record(level=logging.ERROR, exc_info=sys.exc_info())

    entry = json.loads(formatter.format(record))

    assert entry["severity"] == "ERROR"
    assert entry["exception_type"] == "RuntimeError"
    assert entry["exception_message"] == "spool write failed"
    assert "Traceback" in entry["exception"]
