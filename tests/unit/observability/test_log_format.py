"""Tests for log formatters."""

import json
import logging
import sys

from beacon.core.context import RequestContext
from beacon.observability.logging import ConsoleFormatter, JsonFormatter


def make_record(**extra) -> logging.LogRecord:
    logger = logging.getLogger("beacon.test")
    return logger.makeRecord(
        "beacon.test", logging.INFO, __file__, 10, "Event created", (), None, extra=extra
    )


class TestJsonFormatter:
    """Test JSON log lines."""

    def test_context_fields_included(self) -> None:
        """Fields passed with extra= appear at the top level."""
        ctx = RequestContext(request_id="req-1", organization_id="org_1")

        line = json.loads(JsonFormatter().format(make_record(**ctx.log_extra(event_id="e1"))))

        assert line["message"] == "Event created"
        assert line["level"] == "INFO"
        assert line["request_id"] == "req-1"
        assert line["organization_id"] == "org_1"
        assert line["event_id"] == "e1"

    def test_unserializable_values_stringified(self) -> None:
        """Values json cannot encode are rendered with str()."""
        line = json.loads(JsonFormatter().format(make_record(tags={"a"})))
        assert line["tags"] == "{'a'}"

    def test_exception_info(self) -> None:
        """Exceptions are structured."""
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.getLogger("beacon.test").makeRecord(
                "beacon.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        line = json.loads(JsonFormatter().format(record))

        assert line["exception"]["type"] == "ValueError"
        assert line["exception"]["message"] == "bad"


class TestConsoleFormatter:
    """Test development log lines."""

    def test_request_id_shortened(self) -> None:
        """The request id is cut to eight characters."""
        output = ConsoleFormatter(use_colors=False).format(
            make_record(request_id="0123456789abcdef", organization_id="org_1")
        )

        assert "Event created" in output
        assert "req=01234567" in output
        assert "org=org_1" in output
