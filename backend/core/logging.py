from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

# Loggers whose records belong to the worker log (Celery and the queue pipeline).
WORKER_LOGGERS = (
    "celery",
    "vmx_migration.tasks",
    "vmx_migration.runner",
    "vmx_migration.executor",
)

# Correlation fields lifted into a nested "run" object so log queries can join on them.
RUN_CONTEXT_KEYS = ("run_id", "item_id", "step")

_RESERVED = frozenset(logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """JSON lines for structured log ingestion.

    Anything passed through ``extra=`` is emitted as a top-level key, except the
    run correlation fields which are grouped under ``run``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
            "process": record.process,
            "thread": record.threadName,
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        run: dict[str, object] = {}
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED:
                continue
            if key in RUN_CONTEXT_KEYS:
                if value not in (None, ""):
                    run[key] = value
                continue
            payload[key] = value
        if run:
            payload["run"] = run

        return json.dumps(payload, default=str)


def is_worker_record(record: logging.LogRecord) -> bool:
    return record.name.startswith(WORKER_LOGGERS)


class WorkerLogFilter(logging.Filter):
    """Route Celery and migration pipeline logs to worker handlers."""

    def filter(self, record: logging.LogRecord) -> bool:
        return is_worker_record(record)


class AppLogFilter(logging.Filter):
    """Exclude worker logs from app handlers."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not is_worker_record(record)
