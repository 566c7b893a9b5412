# portfolio_tracker/utils/logging.py
"""
Logging configuration for the Portfolio Tracker.

One stdout handler for the whole process:
- text (default): time | level | correlation_id | portfolio | logger | message
- json (LOG_FORMAT=json): one object per line for log aggregation

Every record carries the request correlation ID and, while a portfolio
write lock is held, the id of the portfolio being mutated.

Log Levels:
    DEBUG   - Cache hits/misses, replay details, raw provider data
    INFO    - Business events (lot created, sale allocated, action applied, batch committed)
    WARNING - Recoverable issues (retries, price fallbacks, approved-but-not-applied actions)
    ERROR   - Failures requiring attention, logged with exc_info

Usage:
    from portfolio_tracker.utils import setup_logging

    # In main.py, before creating the FastAPI app
    setup_logging()
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from portfolio_tracker.config import settings
from portfolio_tracker.utils.context import get_correlation_id, get_portfolio_scope

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_TEXT_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(portfolio_id)s | %(name)s | %(message)s"
)
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_CORRELATION_ID = "no-correlation-id"
NO_PORTFOLIO = "-"

NOISY_LOGGERS = [
    "yfinance",
    "urllib3",
    "urllib3.connectionpool",
    "requests",
    "httpx",
    "httpcore",
    "peewee",
    "asyncio",
    "apscheduler",
    "apscheduler.scheduler",
    "apscheduler.executors.default",
]

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "correlation_id", "portfolio_id", "message", "taskName",
}


# =============================================================================
# FILTER AND FORMATTER
# =============================================================================

class CorrelationIdFilter(logging.Filter):
    """
    Adds `correlation_id` and `portfolio_id` to every record.

    Access in format strings as %(correlation_id)s and %(portfolio_id)s.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        portfolio_id = get_portfolio_scope()
        record.portfolio_id = portfolio_id if portfolio_id is not None else NO_PORTFOLIO
        return True


class JsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging in production.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.123456+00:00",
        "level": "INFO",
        "logger": "portfolio_tracker.services.events",
        "correlation_id": "abc-123-def",
        "portfolio_id": 7,
        "message": "Recorded BUY #42 (AAPL 10) in portfolio 7",
        "extra": { ... }
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        portfolio_id = getattr(record, "portfolio_id", NO_PORTFOLIO)
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "portfolio_id": None if portfolio_id == NO_PORTFOLIO else portfolio_id,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            try:
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)
        if extra:
            log_entry["extra"] = extra

        return json.dumps(log_entry)


# =============================================================================
# SETUP FUNCTION
# =============================================================================

def setup_logging(
        level: str | None = None,
        log_format: str | None = None,
        suppress_noisy_loggers: bool = True,
) -> None:
    """
    Configure application-wide logging. Call once at startup.

    Args:
        level: Log level name. Defaults to settings.log_level.
        log_format: 'text' or 'json'. Defaults to settings.log_format.
        suppress_noisy_loggers: Raise third-party loggers to WARNING.
    """
    log_level_str = level or settings.log_level
    log_level = _get_log_level(log_level_str)
    format_type = (log_format or settings.log_format).lower()

    if format_type == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=DEFAULT_TEXT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    if suppress_noisy_loggers:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={log_level_str}, format={format_type}")


def _get_log_level(level_str: str) -> int:
    """
    Convert a level name to its logging constant.

    Raises:
        ValueError: Unknown level name
    """
    level_str = level_str.upper().strip()
    level_mapping = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    if level_str not in level_mapping:
        raise ValueError(
            f"Invalid log level: '{level_str}'. "
            f"Valid levels are: {', '.join(level_mapping)}"
        )
    return level_mapping[level_str]
