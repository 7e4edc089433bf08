"""
Unit tests for the logging abstraction.
"""

import json
import logging

from lumina_home.correlation import intent_context
from lumina_home.logging_abstraction import HumanReadableFormatter, JSONFormatter, get_logger


def _record(msg="hello %s", args=("world",), extra_data=None):
    record = logging.LogRecord("lumina_home.test", logging.INFO, __file__, 10, msg, args, None)
    if extra_data is not None:
        record.extra_data = extra_data
    return record


class TestFormatters:
    def test_json_formatter_includes_intent_and_context(self):
        with intent_context("ui", "ui-0000abcd"):
            line = JSONFormatter().format(_record(extra_data={"device_id": "l1"}))

        data = json.loads(line)
        assert data["message"] == "hello world"
        assert data["level"] == "INFO"
        assert data["intent_id"] == "ui-0000abcd"
        assert data["context"] == {"device_id": "l1"}

    def test_human_formatter(self):
        with intent_context("cloud", "cloud-1"):
            line = HumanReadableFormatter().format(_record(extra_data={"value": 128}))

        assert "[cloud-1]" in line
        assert "> hello world" in line
        assert line.endswith("| value=128")

    def test_human_formatter_without_intent(self):
        line = HumanReadableFormatter().format(_record())
        assert "[-]" in line


class TestGetLogger:
    def test_cached_per_name(self):
        first = get_logger("lumina_home.test_cache")
        second = get_logger("lumina_home.test_cache")

        assert first is second

    def test_extra_reaches_record(self, caplog):
        logger = get_logger("lumina_home.test_extra")

        with caplog.at_level(logging.INFO, logger="lumina_home.test_extra"):
            logger.info("report %s", "ok", extra={"property_id": "dengguang"})

        record = caplog.records[-1]
        assert record.getMessage() == "report ok"
        assert record.extra_data == {"property_id": "dengguang"}
