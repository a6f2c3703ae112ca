"""Tests for structured logging helpers."""

import json
import logging

import pytest

from kafka_resilience.common.exceptions import PublishError
from kafka_resilience.common.logging import (
    ConsoleFormatter,
    JSONFormatter,
    KafkaContextFilter,
    KafkaLogContext,
    get_kafka_context,
    log_exception,
    log_with_context,
    setup_logging,
)


@pytest.fixture
def restore_root_logging():
    """Drop the handlers setup_logging() installed on the root logger."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.WARNING)


def make_record(msg="hello", **extra):
    record = logging.LogRecord("kafka_resilience.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogHelpers:
    def test_log_with_context_sets_extra_fields(self, caplog):
        logger = logging.getLogger("kafka_resilience.test")

        with caplog.at_level(logging.INFO, logger="kafka_resilience.test"):
            log_with_context(logger, logging.INFO, "Message published", topic="orders", offset=4)

        record = caplog.records[-1]
        assert record.topic == "orders"
        assert record.offset == 4

    def test_log_exception_adds_error_fields(self, caplog):
        logger = logging.getLogger("kafka_resilience.test")
        error = PublishError("orders", "Broker rejected message enqueue", cause=ValueError("x"))

        with caplog.at_level(logging.ERROR, logger="kafka_resilience.test"):
            log_exception(logger, error, "Publish aborted", topic="orders")

        record = caplog.records[-1]
        assert record.error_type == "PublishError"
        assert record.error_category == "permanent"
        assert "Caused by: x" in record.error_message
        assert record.exc_info is not None

    def test_log_exception_truncates_long_messages(self, caplog):
        logger = logging.getLogger("kafka_resilience.test")

        with caplog.at_level(logging.WARNING, logger="kafka_resilience.test"):
            log_exception(
                logger,
                RuntimeError("x" * 1000),
                "Failed",
                level=logging.WARNING,
                include_traceback=False,
            )

        record = caplog.records[-1]
        assert len(record.error_message) == 503
        assert record.exc_info is None
        assert record.levelno == logging.WARNING


class TestKafkaLogContext:
    def test_fields_applied_and_restored(self):
        with KafkaLogContext(topic="orders", partition=1, key=None):
            assert get_kafka_context() == {"topic": "orders", "partition": 1}
            with KafkaLogContext(offset=9):
                assert get_kafka_context()["offset"] == 9
            assert "offset" not in get_kafka_context()

        assert get_kafka_context() == {}

    def test_filter_copies_fields_without_overwriting(self):
        record = make_record(topic="explicit")

        with KafkaLogContext(topic="orders", offset=3):
            assert KafkaContextFilter().filter(record) is True

        assert record.topic == "explicit"
        assert record.offset == 3


class TestFormatters:
    def test_json_formatter(self):
        line = JSONFormatter().format(make_record(topic="orders", offset=3))
        entry = json.loads(line)

        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "kafka_resilience.test"
        assert entry["topic"] == "orders"
        assert entry["offset"] == 3

    def test_json_formatter_includes_exception(self):
        try:
            raise ValueError("bad payload")
        except ValueError as e:
            record = logging.LogRecord(
                "t", logging.ERROR, __file__, 1, "failed", (), (type(e), e, e.__traceback__)
            )

        entry = json.loads(JSONFormatter().format(record))

        assert "ValueError: bad payload" in entry["exception"]

    def test_console_formatter_appends_context(self):
        line = ConsoleFormatter().format(make_record(topic="orders", offset=3))

        assert line.endswith("hello [offset=3 topic=orders]")


class TestSetupLogging:
    def test_console_handler_only(self, restore_root_logging):
        setup_logging(verbose=True)

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, ConsoleFormatter)
        assert logging.getLogger("aiokafka").level == logging.WARNING

    def test_json_console_and_file(self, restore_root_logging, tmp_path):
        log_file = tmp_path / "logs" / "consumer.log"

        setup_logging(json_format=True, log_file=log_file)
        logging.getLogger("kafka_resilience.test").info("written", extra={"topic": "orders"})
        for handler in logging.getLogger().handlers:
            handler.flush()

        root = logging.getLogger()
        assert len(root.handlers) == 2
        assert root.handlers[0].level == logging.INFO
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        lines = log_file.read_text(encoding="utf-8").splitlines()
        entry = json.loads(lines[-1])
        assert entry["message"] == "written"
        assert entry["topic"] == "orders"
