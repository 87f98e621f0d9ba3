"""Structured Logging Configuration.

This module provides structured logging with JSON output and context binding.
Each record is one JSON object so log aggregation can index fields like
``job_id`` and ``stage`` without parsing free text.

Configuration:
- JSON output format (one object per line)
- Context binding via ``bind()`` (job IDs, stages, provider task IDs)
- Log levels: DEBUG, INFO, WARNING, ERROR
"""

import json
import logging
import sys
from typing import Any


class StructuredLogger:
    """Wrapper around standard Logger with structured JSON logging support.

    Example:
        >>> log = get_logger(__name__).bind(job_id="3f2a...")
        >>> log.info("stage_advanced", stage="generating_music")
    """

    def __init__(self, logger: logging.Logger, context: dict[str, Any] | None = None):
        self._logger = logger
        self._context: dict[str, Any] = dict(context or {})

    def bind(self, **kwargs: Any) -> "StructuredLogger":
        """Return a logger that adds ``kwargs`` to every entry."""
        return StructuredLogger(self._logger, {**self._context, **kwargs})

    def _format_json(self, event: str, **kwargs: Any) -> str:
        log_entry = {"event": event, **self._context, **kwargs}
        return json.dumps(log_entry, default=str)

    def info(self, event: str, **kwargs: Any) -> None:
        self._logger.info(self._format_json(event, **kwargs))

    def error(self, event: str, **kwargs: Any) -> None:
        self._logger.error(self._format_json(event, **kwargs))

    def warning(self, event: str, **kwargs: Any) -> None:
        self._logger.warning(self._format_json(event, **kwargs))

    def debug(self, event: str, **kwargs: Any) -> None:
        self._logger.debug(self._format_json(event, **kwargs))

    def exception(self, event: str, **kwargs: Any) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self._logger.exception(self._format_json(event, **kwargs))


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance for the given module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured StructuredLogger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    return StructuredLogger(logger)
