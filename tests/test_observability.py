"""Tests for logging configuration and operation metrics."""
import logging

import pytest

from canvasnote.observability import (MetricsCollector, configure_logging,
                                      timed_operation, traced)


class TestMetricsCollector:
    """Tests for the metrics collector."""

    def test_records_success_and_error(self):
        collector = MetricsCollector()
        collector.record_operation("search_query", 2.0, True)
        collector.record_operation("search_query", 4.0, False, error="boom")

        m = collector.get_metrics()["search_query"]
        assert m["count"] == 2
        assert m["error_count"] == 1
        assert m["avg_duration_ms"] == 3.0
        assert m["last_error"] == "boom"

        summary = collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["operations_tracked"] == ["search_query"]

    def test_failure_without_message_is_still_recorded(self):
        collector = MetricsCollector()
        collector.record_operation("asset_delete", 1.0, False)
        assert collector.get_metrics()["asset_delete"]["last_error"] == "unknown error"

    def test_reset_clears_everything(self):
        collector = MetricsCollector()
        collector.record_operation("search_query", 1.0, True)
        collector.reset()
        assert collector.get_metrics() == {}
        assert collector.get_summary()["total_operations"] == 0


class TestTiming:
    """Tests for timed_operation and traced."""

    def test_timed_operation_records_failures(self, fresh_metrics):
        with pytest.raises(ValueError):
            with timed_operation("flaky"):
                raise ValueError("nope")
        assert fresh_metrics.get_metrics()["flaky"]["error_count"] == 1

    def test_traced_records_calls(self, fresh_metrics):
        @traced("listing")
        def listing():
            return [1, 2, 3]

        assert listing() == [1, 2, 3]
        assert fresh_metrics.get_metrics()["listing"]["success_count"] == 1

    def test_index_operations_are_traced(self, fresh_metrics, search_index):
        list(search_index.query("anything"))
        search_index.rebuild([])
        tracked = fresh_metrics.get_summary()["operations_tracked"]
        assert "search_query" in tracked
        assert "search_rebuild" in tracked


@pytest.fixture
def package_logger():
    """Detach handlers added to the package logger during a test."""
    logger = logging.getLogger("canvasnote")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


class TestConfigureLogging:
    def test_writes_to_rotating_file(self, tmp_path, package_logger):
        log_dir = configure_logging(log_dir=tmp_path / "logs", level=logging.INFO, console=False)
        logging.getLogger("canvasnote.test").info("hello from test")
        for handler in logging.getLogger("canvasnote").handlers:
            handler.flush()
        assert "hello from test" in (log_dir / "canvasnote.log").read_text()

        # A second call does not attach a duplicate file handler
        before = len(logging.getLogger("canvasnote").handlers)
        configure_logging(log_dir=tmp_path / "logs", console=False)
        assert len(logging.getLogger("canvasnote").handlers) == before
