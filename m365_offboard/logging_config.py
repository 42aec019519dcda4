"""Console logging for offboarding runs.

Records go to stderr so that ``--json`` report output on stdout stays parseable.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict


PACKAGE_LOGGER = "m365_offboard"
TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
# Attributes the workflow passes through ``extra=``.
RUN_FIELDS = ("identity", "step")
_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class JsonFormatter(logging.Formatter):
    """Render a record as a single-line JSON document, tagged with the identity and step."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (field, getattr(record, field)) for field in RUN_FIELDS if getattr(record, field, None) is not None
        )
        if record.exc_info:
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Point the package logger at stderr, replacing any handler from an earlier call."""

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level.upper() if level.upper() in _LEVELS else logging.INFO)
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.propagate = False


__all__ = ["JsonFormatter", "configure_logging"]
