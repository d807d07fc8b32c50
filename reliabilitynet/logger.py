"""
Structured logging for reliabilitynet.

Provides centralized logging with console and file output plus counters for
monitoring identity sync health. Context values are rendered as JSON; callers
pass hash prefixes and ids, never raw contact details.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


def short_hash(value: Optional[str]) -> Optional[str]:
    """Truncate a hash for log context."""
    if not value:
        return None
    return value[:12]


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks counters for identity resolution and batch sync runs.
    """

    def __init__(
        self,
        name: str = "reliabilitynet",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.metrics = self._empty_metrics()
        self.configure(level, log_dir, enable_file, enable_console)

    def configure(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """Replace handlers and level in place. Metrics are kept."""
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"reliabilitynet_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "identities_created": 0,
            "identities_matched": 0,
            "links_created": 0,
            "rows_synced": 0,
            "rows_skipped": 0,
            "rows_failed": 0,
            "errors_by_type": {},
        }

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_identity_created(self):
        self.metrics["identities_created"] += 1

    def record_identity_matched(self):
        self.metrics["identities_matched"] += 1

    def record_link_created(self):
        self.metrics["links_created"] += 1

    def record_row_synced(self):
        self.metrics["rows_synced"] += 1

    def record_row_skipped(self):
        self.metrics["rows_skipped"] += 1

    def record_row_failure(self, error_type: str):
        """Record a failed batch row, bucketed by exception class name."""
        self.metrics["rows_failed"] += 1
        errors = self.metrics["errors_by_type"]
        errors[error_type] = errors.get(error_type, 0) + 1

    def get_metrics(self) -> dict:
        """Return current metrics with a derived success rate."""
        metrics_copy = dict(self.metrics)
        metrics_copy["errors_by_type"] = dict(self.metrics["errors_by_type"])
        attempted = (
            metrics_copy["rows_synced"]
            + metrics_copy["rows_skipped"]
            + metrics_copy["rows_failed"]
        )
        metrics_copy["success_rate"] = (
            round(metrics_copy["rows_synced"] / attempted, 3) if attempted else 0
        )
        return metrics_copy

    def reset_metrics(self):
        self.metrics = self._empty_metrics()

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Network Sync Metrics ===")
        self.info(
            f"Identities: {metrics['identities_created']} created, "
            f"{metrics['identities_matched']} matched"
        )
        self.info(f"Links created: {metrics['links_created']}")
        self.info(
            f"Rows: {metrics['rows_synced']} synced, {metrics['rows_skipped']} skipped, "
            f"{metrics['rows_failed']} failed ({metrics['success_rate'] * 100:.1f}% success)"
        )

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "reliabilitynet",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
