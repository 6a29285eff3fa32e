"""
Structured logging system for linksweep.

One shared stdlib logger ("linksweep") with a console handler on stderr and a
daily log file, plus counters describing the current cleanup session. Context
passed as keyword arguments is appended to the message as JSON so the file log
stays greppable by job id.

stdout is left to the CLI, which prints job ids and reports there.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json

DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
CONSOLE_FORMAT = '%(asctime)s | %(levelname)-8s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s'


def _new_metrics() -> dict:
    return {
        "batches_processed": 0,
        "items_scanned": 0,
        "items_updated": 0,
        "urls_replaced": 0,
        "write_failures": 0,
        "errors_by_type": {},
        "updates_by_content_type": {},
        "failures_by_content_type": {},
    }


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=DATE_FORMAT))
    return handler


def _bump(counter: dict, key: str) -> None:
    counter[key] = counter.get(key, 0) + 1


class StructuredLogger:
    """
    Logger facade with keyword context and session metrics.

    Handlers can be rebuilt at any time with :meth:`configure`; metrics survive
    reconfiguration and are only cleared by :meth:`reset_metrics`.
    """

    def __init__(
        self,
        name: str = "linksweep",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to a daily file
            enable_console: Write logs to stderr
        """
        self.logger = logging.getLogger(name)
        self.metrics = _new_metrics()
        self.configure(level, log_dir, enable_file, enable_console)

    def configure(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """Replace the handlers of the underlying logger."""
        numeric_level = getattr(logging, level.upper())
        self.logger.setLevel(numeric_level)
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        if enable_console:
            self.logger.addHandler(_handler(logging.StreamHandler(sys.stderr), numeric_level, CONSOLE_FORMAT))

        if enable_file:
            log_dir = log_dir or Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / f"linksweep_{datetime.now().strftime('%Y%m%d')}.log"
            # The file keeps DEBUG lines whatever the console level is
            self.logger.addHandler(_handler(logging.FileHandler(log_file, encoding='utf-8'), logging.DEBUG, FILE_FORMAT))

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message, stacklevel=3)

    # Metrics

    def record_batch(self, items_scanned: int, urls_replaced: int):
        self.metrics["batches_processed"] += 1
        self.metrics["items_scanned"] += items_scanned
        self.metrics["urls_replaced"] += urls_replaced

    def record_item_update(self, content_type: str):
        """Count an updated item (in a dry run, one that would be updated)."""
        self.metrics["items_updated"] += 1
        _bump(self.metrics["updates_by_content_type"], content_type)

    def record_write_failure(self, content_type: str, error_type: str):
        self.metrics["write_failures"] += 1
        _bump(self.metrics["failures_by_content_type"], content_type)
        _bump(self.metrics["errors_by_type"], error_type)

    def reset_metrics(self):
        self.metrics = _new_metrics()

    def get_metrics(self) -> dict:
        """Copy of the metrics with ``update_rate`` (updated / scanned) added."""
        metrics = dict(self.metrics)
        scanned = metrics["items_scanned"]
        metrics["update_rate"] = round(metrics["items_updated"] / scanned, 3) if scanned else 0
        return metrics

    def log_metrics_summary(self):
        metrics = self.get_metrics()
        self.info(
            f"Session: {metrics['batches_processed']} batches, "
            f"{metrics['items_updated']}/{metrics['items_scanned']} items updated "
            f"({metrics['update_rate'] * 100:.1f}%), {metrics['urls_replaced']} URLs replaced"
        )
        for content_type, count in metrics["updates_by_content_type"].items():
            failed = metrics["failures_by_content_type"].get(content_type, 0)
            self.info(f"  {content_type}: {count} updated, {failed} failed")
        if metrics["errors_by_type"]:
            self.warning("Write failures by error", **metrics["errors_by_type"])


_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "linksweep",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Arguments only apply when the instance is created; use
    :func:`configure_logger` to change an existing one.
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def configure_logger(level: str = "INFO", **kwargs) -> StructuredLogger:
    """Apply level and output settings to the global logger."""
    logger = get_logger(level=level, **kwargs)
    logger.configure(level=level, **kwargs)
    return logger


def reset_logger():
    """Drop the global instance (tests)."""
    global _global_logger
    _global_logger = None
