"""
Tests for the structured logger and its session metrics.
"""

import pytest
from linksweep.logger import StructuredLogger, configure_logger, get_logger, reset_logger


@pytest.fixture
def file_logger(tmp_path):
    return StructuredLogger(name="linksweep.test", log_dir=tmp_path, enable_console=False)


def _log_text(tmp_path) -> str:
    return next(tmp_path.glob("linksweep_*.log")).read_text()


class TestStructuredLogger:
    def test_levels_written_to_daily_file(self, file_logger, tmp_path):
        file_logger.debug("below console level")
        file_logger.warning("lock taken over")

        text = _log_text(tmp_path)
        assert "below console level" in text
        assert "WARNING  | linksweep.test" in text

    def test_context_appended_as_json(self, file_logger, tmp_path):
        file_logger.info("Batch processed", job_id="abc", urls=5)

        assert 'Batch processed | Context: {"job_id": "abc", "urls": 5}' in _log_text(tmp_path)

    def test_context_with_unserializable_values(self, file_logger, tmp_path):
        file_logger.info("Backup written", path=tmp_path)
        assert str(tmp_path) in _log_text(tmp_path)

    def test_console_goes_to_stderr(self, tmp_path, capsys):
        logger = StructuredLogger(name="linksweep.console", log_dir=tmp_path, enable_file=False)
        logger.info("to the console")

        captured = capsys.readouterr()
        assert "to the console" in captured.err
        assert captured.out == ""

    def test_configure_replaces_handlers(self, tmp_path):
        first, second = tmp_path / "first", tmp_path / "second"
        logger = StructuredLogger(name="linksweep.reconf", log_dir=first, enable_console=False)
        logger.record_batch(items_scanned=1, urls_replaced=1)

        logger.configure(level="DEBUG", log_dir=second, enable_console=False)
        logger.debug("After reconfigure")

        assert len(logger.logger.handlers) == 1
        assert "After reconfigure" in _log_text(second)
        assert logger.metrics["batches_processed"] == 1


class TestMetrics:
    def test_counters(self, file_logger):
        file_logger.record_batch(items_scanned=10, urls_replaced=3)
        file_logger.record_batch(items_scanned=5, urls_replaced=0)
        file_logger.record_item_update("posts")
        file_logger.record_item_update("posts")
        file_logger.record_item_update("options")
        file_logger.record_write_failure("postmeta", "OperationalError")

        metrics = file_logger.get_metrics()

        assert metrics["batches_processed"] == 2
        assert metrics["items_scanned"] == 15
        assert metrics["urls_replaced"] == 3
        assert metrics["items_updated"] == 3
        assert metrics["write_failures"] == 1
        assert metrics["errors_by_type"] == {"OperationalError": 1}
        assert metrics["updates_by_content_type"] == {"posts": 2, "options": 1}
        assert metrics["failures_by_content_type"] == {"postmeta": 1}

    @pytest.mark.parametrize(
        "scanned,updated,rate",
        [(3, 2, 0.667), (4, 4, 1.0), (0, 0, 0)],
    )
    def test_update_rate(self, file_logger, scanned, updated, rate):
        file_logger.record_batch(items_scanned=scanned, urls_replaced=0)
        for _ in range(updated):
            file_logger.record_item_update("posts")

        assert file_logger.get_metrics()["update_rate"] == pytest.approx(rate, rel=0.01)

    def test_reset_metrics(self, file_logger):
        file_logger.record_write_failure("posts", "RuntimeError")
        file_logger.reset_metrics()
        assert file_logger.get_metrics()["write_failures"] == 0

    def test_summary_logged(self, file_logger, tmp_path):
        file_logger.record_batch(items_scanned=2, urls_replaced=1)
        file_logger.record_item_update("posts")
        file_logger.record_write_failure("posts", "RuntimeError")

        file_logger.log_metrics_summary()

        text = _log_text(tmp_path)
        assert "1 batches, 1/2 items updated (50.0%), 1 URLs replaced" in text
        assert "posts: 1 updated, 1 failed" in text
        assert '"RuntimeError": 1' in text


class TestGlobalLogger:
    def test_get_logger_singleton(self, tmp_path):
        reset_logger()

        first = get_logger(log_dir=tmp_path, enable_console=False)

        assert get_logger() is first

    def test_reset_logger_gives_fresh_metrics(self, tmp_path):
        reset_logger()
        first = get_logger(log_dir=tmp_path, enable_console=False)
        first.record_batch(items_scanned=4, urls_replaced=1)

        reset_logger()
        second = get_logger(log_dir=tmp_path, enable_console=False)

        assert second is not first
        assert second.metrics["batches_processed"] == 0

    def test_configure_logger_changes_level(self, tmp_path):
        logger = configure_logger(level="WARNING", log_dir=tmp_path, enable_console=False)
        assert logger is get_logger()
        assert logger.logger.level == 30
