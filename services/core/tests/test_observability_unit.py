"""Unit tests for structured logging."""

import json
import logging
import sys

import pytest

from harvester_core.observability.logging import (
    JsonFormatter,
    RunContext,
    StructuredLogger,
    configure_logging,
    get_logger,
)


def make_record(level=logging.INFO, msg="hello", exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="harvester.test",
        level=level,
        pathname="/app/module.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
        func="do_work",
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_core_fields(self):
        formatter = JsonFormatter(service_name="harvester-core")

        entry = json.loads(formatter.format(make_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "harvester.test"
        assert entry["message"] == "hello"
        assert entry["service"] == "harvester-core"
        assert "timestamp" in entry
        assert "source" not in entry

    def test_warning_includes_source(self):
        entry = json.loads(JsonFormatter().format(make_record(level=logging.WARNING)))

        assert entry["source"] == {"file": "/app/module.py", "line": 42, "function": "do_work"}

    def test_run_fields_are_grouped(self):
        entry = json.loads(
            JsonFormatter().format(make_record(run_id=7, batch=2, accepted=3, obj=object()))
        )

        assert entry["run"] == {"run_id": 7, "batch": 2}
        assert entry["accepted"] == 3
        assert entry["obj"].startswith("<object object")
        assert "run_id" not in entry

    def test_no_run_key_without_run_fields(self):
        entry = json.loads(JsonFormatter().format(make_record()))

        assert "run" not in entry

    def test_exception(self):
        try:
            raise ValueError("bad batch")
        except ValueError:
            record = make_record(level=logging.ERROR, exc_info=sys.exc_info())

        entry = json.loads(JsonFormatter().format(record))

        assert "ValueError: bad batch" in entry["exception"]


class TestRunContext:
    """Tests for RunContext."""

    def test_to_dict_skips_empty(self):
        assert RunContext().to_dict() == {}
        assert RunContext(run_id=3, owner_id="owner-1").to_dict() == {
            "run_id": 3,
            "owner_id": "owner-1",
        }

    def test_for_batch(self):
        context = RunContext(run_id=3, provider="apify_apollo_domain", extra={"attempt": 1})

        scoped = context.for_batch(2)

        assert scoped.to_dict() == {
            "run_id": 3,
            "batch": 2,
            "provider": "apify_apollo_domain",
            "attempt": 1,
        }
        assert context.batch is None


class TestStructuredLogger:
    """Tests for StructuredLogger."""

    def test_context_becomes_extra(self, caplog):
        logger = StructuredLogger("harvester.test.structured")

        with caplog.at_level(logging.INFO, logger="harvester.test.structured"):
            logger.info("Batch done", context=RunContext(run_id=5, batch=1), accepted=3)

        record = caplog.records[-1]
        assert record.getMessage() == "Batch done"
        assert record.run_id == 5
        assert record.batch == 1
        assert record.accepted == 3

    def test_bound_context_layers_under_call_context(self, caplog):
        logger = StructuredLogger("harvester.test.bound").bind(
            RunContext(run_id=5, owner_id="owner-1").for_batch(3)
        )

        with caplog.at_level(logging.INFO, logger="harvester.test.bound"):
            logger.warning("Batch failed", context=RunContext(batch=4))

        record = caplog.records[-1]
        assert record.run_id == 5
        assert record.owner_id == "owner-1"
        assert record.batch == 4

    def test_disabled_level_is_skipped(self, caplog):
        logger = StructuredLogger("harvester.test.quiet")

        with caplog.at_level(logging.WARNING, logger="harvester.test.quiet"):
            logger.debug("noise", context=RunContext(run_id=1))

        assert caplog.records == []

    def test_get_logger_is_cached(self):
        assert get_logger("harvester.cached") is get_logger("harvester.cached")


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_handler(self, restore_root_logger):
        configure_logging(level="debug", json_format=True, service_name="harvester-worker")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        formatter = restore_root_logger.handlers[0].formatter
        assert isinstance(formatter, JsonFormatter)
        assert formatter.service_name == "harvester-worker"

    def test_plain_handler(self, restore_root_logger):
        configure_logging(level="WARNING", json_format=False)

        assert restore_root_logger.level == logging.WARNING
        assert not isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)

    def test_quiets_chatty_libraries(self, restore_root_logger):
        configure_logging(level="INFO")

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

        configure_logging(level="DEBUG")

        assert logging.getLogger("httpx").level == logging.DEBUG
