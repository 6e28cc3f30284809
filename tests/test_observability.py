"""Tests for the observability module.

Covers the metrics collector, tracing helpers and logging setup.
"""
import logging
from logging.handlers import RotatingFileHandler

import pytest

from dashtext_sync.observability import (
    ROOT_LOGGER_NAME,
    MetricsCollector,
    configure_logging,
    get_logger,
    metrics,
    timed_operation,
    traced,
)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    @pytest.fixture
    def metrics_collector(self):
        return MetricsCollector()

    def test_record_successful_operation(self, metrics_collector):
        """Test recording a successful operation."""
        metrics_collector.record_operation("test_op", 100.0, True)

        result = metrics_collector.get_metrics()
        assert result["test_op"]["calls"] == 1
        assert result["test_op"]["failures"] == 0
        assert result["test_op"]["mean_ms"] == 100.0
        assert result["test_op"]["p95_ms"] == 100.0

    def test_record_failed_operation(self, metrics_collector):
        """Test recording a failed operation with error."""
        metrics_collector.record_operation("test_op", 50.0, False, "Test error")

        result = metrics_collector.get_metrics()
        assert result["test_op"]["failures"] == 1
        assert result["test_op"]["last_error"] == "Test error"
        assert result["test_op"]["last_error_at"] is not None

    def test_multiple_operations_aggregated(self, metrics_collector):
        metrics_collector.record_operation("test_op", 100.0, True)
        metrics_collector.record_operation("test_op", 200.0, True)
        metrics_collector.record_operation("test_op", 300.0, False, "Error")

        result = metrics_collector.get_metrics()
        assert result["test_op"]["calls"] == 3
        assert result["test_op"]["failures"] == 1
        assert result["test_op"]["mean_ms"] == 200.0
        assert result["test_op"]["max_ms"] == 300.0

    def test_get_summary(self, metrics_collector):
        metrics_collector.record_operation("op1", 100.0, True)
        metrics_collector.record_operation("op2", 200.0, False, "Error")

        summary = metrics_collector.get_summary()
        assert summary["calls"] == 2
        assert summary["failures"] == 1
        assert summary["operations"] == ["op1", "op2"]

    def test_p95_uses_recent_durations(self, metrics_collector):
        for ms in range(1, 101):
            metrics_collector.record_operation("load", float(ms), True)
        assert metrics_collector.get_metrics()["load"]["p95_ms"] == 95.0

    def test_reset_metrics(self, metrics_collector):
        metrics_collector.record_operation("test_op", 100.0, True)
        metrics_collector.reset()
        assert metrics_collector.get_metrics() == {}


class TestTracing:
    """Tests for timed_operation and the traced decorator."""

    @pytest.fixture(autouse=True)
    def _reset_metrics(self):
        metrics.reset()
        yield
        metrics.reset()

    def test_timed_operation_records_success(self):
        with timed_operation("timed_ok", doc_id="d1") as op:
            op["chunk_count"] = 3
        assert metrics.get_metrics()["timed_ok"]["failures"] == 0

    def test_timed_operation_records_failure(self):
        with pytest.raises(ValueError):
            with timed_operation("timed_fail"):
                raise ValueError("boom")
        assert metrics.get_metrics()["timed_fail"]["last_error"] == "boom"

    def test_traced_sync_function(self):
        @traced("sync_op")
        def add(a, b):
            return a + b

        assert add(1, 2) == 3
        assert metrics.get_metrics()["sync_op"]["calls"] == 1

    @pytest.mark.anyio
    async def test_traced_async_function(self):
        @traced()
        async def fetch(uuid=None):
            return [uuid]

        assert await fetch(uuid="u1") == ["u1"]
        assert fetch.__name__ == "fetch"
        assert metrics.get_metrics()["fetch"]["calls"] == 1

    @pytest.mark.anyio
    async def test_traced_async_failure(self):
        @traced("async_fail")
        async def explode():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            await explode()
        assert metrics.get_metrics()["async_fail"]["failures"] == 1


class TestLogging:
    """Tests for logging configuration and structured loggers."""

    @pytest.fixture
    def clean_root_logger(self):
        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        saved = list(root_logger.handlers)
        root_logger.handlers = []
        yield root_logger
        for handler in root_logger.handlers:
            handler.close()
        root_logger.handlers = saved

    def test_configure_logging_creates_log_file(self, tmp_path, clean_root_logger):
        log_dir = configure_logging(log_dir=tmp_path / "logs", console=False)
        assert log_dir == tmp_path / "logs"
        assert (log_dir / "dashtext-sync.log").exists()

    def test_configure_logging_is_idempotent(self, tmp_path, clean_root_logger):
        configure_logging(log_dir=tmp_path, console=True)
        configure_logging(log_dir=tmp_path, console=True)

        file_handlers = [h for h in clean_root_logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert len(clean_root_logger.handlers) == 2

    def test_level_by_name(self, tmp_path, clean_root_logger):
        configure_logging(log_dir=tmp_path, level="debug")
        assert clean_root_logger.level == logging.DEBUG

    def test_unknown_level_name(self, tmp_path, clean_root_logger):
        with pytest.raises(ValueError):
            configure_logging(log_dir=tmp_path, level="chatty")

    def test_structured_logger_formats_context(self, caplog):
        log = get_logger("migration")
        log.set_context(run="r1")
        with caplog.at_level(logging.INFO, logger=f"{ROOT_LOGGER_NAME}.migration"):
            log.info("Migrated", total=3)
        assert "[migration] Migrated | run=r1 total=3" in caplog.text

        log.clear_context()
        with caplog.at_level(logging.INFO, logger=f"{ROOT_LOGGER_NAME}.migration"):
            log.info("Done")
        assert "[migration] Done\n" in caplog.text
