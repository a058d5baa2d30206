"""Tests for the logging infrastructure."""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler

import pytest

from company_finder.core.logging_setup import (
    AuditLogger,
    JSONFormatter,
    PerformanceLogger,
    configure_comprehensive_logging,
    configure_logging,
    log_performance,
)


def read_events(path):
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


def make_record(**extra):
    record = logging.LogRecord(
        name="company_finder.test",
        level=logging.INFO,
        pathname="test.py",
        lineno=42,
        msg="Searched %s",
        args=("acme",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def clean_root_logger():
    """Root logger whose handlers installed by the test are removed afterwards.

    Tests clear the root handlers themselves since pytest attaches its own
    capture handlers for the duration of the test body.
    """
    root = logging.getLogger()
    saved_level = root.level
    yield root
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, RotatingFileHandler):
            handler.close()
            root.removeHandler(handler)
    root.setLevel(saved_level)


@pytest.fixture
def detach_named_loggers():
    yield
    for name in ("company_finder.audit", "company_finder.performance"):
        logger = logging.getLogger(name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)


class TestJSONFormatter:
    """Tests for JSON structured logging formatter."""

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "company_finder.test"
        assert data["message"] == "Searched acme"
        assert data["line"] == 42
        assert data["timestamp"].endswith("+00:00")

    def test_extra_fields_merged(self):
        record = make_record(extra_fields={"event_type": "search", "total": 15})
        data = json.loads(JSONFormatter().format(record))
        assert data["event_type"] == "search"
        assert data["total"] == 15

    def test_exception_included(self):
        try:
            raise ValueError("registry down")
        except ValueError:
            record = make_record(exc_info=sys.exc_info())
        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: registry down" in data["exception"]


class TestAuditLogger:
    """Tests for audit events."""

    def test_search_lookup_and_export(self, tmp_path, detach_named_loggers):
        log_file = tmp_path / "audit.log"
        audit = AuditLogger(log_file)

        audit.log_search("127.0.0.1", {"q": "acme", "state": "NSW"}, results_count=12, total=15)
        audit.log_lookup("127.0.0.1", "acme-01", found=False)
        audit.log_export("cli_user", "csv", {"state": "VIC"}, record_count=3)

        search, lookup, export = read_events(log_file)
        assert search["event_type"] == "search"
        assert search["filters"] == {"q": "acme", "state": "NSW"}
        assert (search["results_count"], search["total"]) == (12, 15)
        assert lookup["company_id"] == "acme-01"
        assert lookup["found"] is False
        assert export["export_format"] == "csv"
        assert export["record_count"] == 3
        assert export["client"] == "cli_user"

    def test_does_not_propagate(self, caplog, detach_named_loggers):
        audit = AuditLogger()
        with caplog.at_level(logging.INFO):
            audit.log_lookup("x", "1", found=True)
        assert caplog.records == []


class TestPerformance:
    """Tests for PerformanceLogger and log_performance."""

    def test_log_operation(self, tmp_path, detach_named_loggers):
        log_file = tmp_path / "performance.log"
        PerformanceLogger(log_file).log_operation(
            "registry_search", 12.5, True, metadata={"rows": 3}
        )
        (event,) = read_events(log_file)
        assert event["operation"] == "registry_search"
        assert event["duration_ms"] == 12.5
        assert event["success"] is True
        assert event["rows"] == 3

    def test_log_performance_success(self, caplog):
        logger = logging.getLogger("company_finder.test.perf")
        with caplog.at_level(logging.INFO, logger="company_finder.test.perf"):
            with log_performance("registry_search", logger=logger):
                pass
        assert "registry_search completed" in caplog.text
        assert "success=True" in caplog.text

    def test_log_performance_failure_reraises(self, tmp_path, detach_named_loggers):
        perf = PerformanceLogger(tmp_path / "performance.log")
        with pytest.raises(RuntimeError):
            with log_performance("registry_export", performance_logger=perf):
                raise RuntimeError("boom")
        (event,) = read_events(tmp_path / "performance.log")
        assert event["operation"] == "registry_export"
        assert event["success"] is False


class TestConfigureLogging:
    """Tests for root logger configuration."""

    def test_file_and_console(self, tmp_path, clean_root_logger):
        clean_root_logger.handlers.clear()
        log_file = tmp_path / "nested" / "app.log"
        configure_logging(log_file=log_file, level=logging.DEBUG)

        assert clean_root_logger.level == logging.DEBUG
        assert len(clean_root_logger.handlers) == 2
        logging.getLogger("company_finder.test").debug("hello")
        assert "hello" in log_file.read_text()

    def test_idempotent(self, tmp_path, clean_root_logger):
        clean_root_logger.handlers.clear()
        configure_logging(log_file=tmp_path / "app.log", console_output=False)
        configure_logging(log_file=tmp_path / "other.log", console_output=False)
        assert len(clean_root_logger.handlers) == 1
        assert not (tmp_path / "other.log").exists()

    def test_json_format(self, tmp_path, clean_root_logger):
        clean_root_logger.handlers.clear()
        log_file = tmp_path / "app.log"
        configure_logging(log_file=log_file, use_json=True, console_output=False)
        logging.getLogger("company_finder.test").info("structured")
        (event,) = read_events(log_file)
        assert event["message"] == "structured"

    def test_comprehensive(self, tmp_path, clean_root_logger, detach_named_loggers):
        clean_root_logger.handlers.clear()
        audit, perf = configure_comprehensive_logging(tmp_path, console_output=False)

        assert isinstance(audit, AuditLogger)
        assert isinstance(perf, PerformanceLogger)
        audit.log_lookup("cli_user", "1", found=True)
        assert (tmp_path / "company_finder.log").exists()
        assert read_events(tmp_path / "audit.log")[0]["event_type"] == "lookup"
