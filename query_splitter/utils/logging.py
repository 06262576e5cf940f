"""Logging setup for the query splitter, plain text or JSON lines."""

import logging
import sys
import json
from typing import Optional, Dict, Any
from datetime import datetime, timezone


class StructuredFormatter(logging.Formatter):
    """Formats each record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Context added through get_contextual_logger
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging(
    level: str = "INFO",
    structured: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure the root logger.

    Logs go to stderr so that stdout stays reserved for the result JSON.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        structured: Use JSON lines if True
        log_file: Optional log file path
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = StructuredFormatter() if structured else StandardFormatter()

    handlers = []
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # sqlglot warns about every unsupported construct it tolerates
    logging.getLogger("sqlglot").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter attaching a fixed context to every record."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        if "extra" not in kwargs:
            kwargs["extra"] = {}
        kwargs["extra"]["extra_fields"] = self.extra
        return msg, kwargs


def get_contextual_logger(name: str, context: Dict[str, Any]) -> LoggerAdapter:
    """Get a logger whose records carry the given context.

    Example:
        >>> logger = get_contextual_logger(__name__, {"cost_threshold": 1000.0})
        >>> logger.info("Partitioning")  # JSON output includes cost_threshold
    """
    return LoggerAdapter(get_logger(name), context)
