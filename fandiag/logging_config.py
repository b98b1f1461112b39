from __future__ import annotations

import logging
import sys

from pythonjsonlogger import jsonlogger


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "unknown"
        return True


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    formatter = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(correlation_id)s")
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers = [handler]


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
