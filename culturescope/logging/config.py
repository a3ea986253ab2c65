"""
JSON-lines logging for the API and the background analysis jobs.

Every line carries the request id (set by the HTTP middleware) and the job id
(the progress record id, set while an analysis job runs), so one job can be
followed across the request that started it and the task that ran it.

Usage:
    from culturescope.logging.config import setup_logging
    setup_logging(settings.log_level)

    logger = logging.getLogger(__name__)
    logger.info("analysis.batch.sent", extra={"action": "analysis.batch.sent", "size": 37})
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
job_id_var: ContextVar[str] = ContextVar("job_id", default="-")

# Log field name -> context variable
CONTEXT_FIELDS = {
    "request_id": request_id_var,
    "job_id": job_id_var,
}

# Third-party loggers capped at WARNING; their INFO lines are per-request noise
QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "msal",
    "anthropic",
    "sqlalchemy.engine",
    "uvicorn.access",
)

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line: fixed fields, context ids, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field, var in CONTEXT_FIELDS.items():
            log[field] = var.get()

        log.update(
            (key, val) for key, val in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in log
        )

        if record.exc_info and record.exc_info[0] is not None:
            log["exception_type"] = record.exc_info[0].__name__
            log["exception_message"] = str(record.exc_info[1])
            log["traceback"] = self.formatException(record.exc_info)

        return json.dumps(log, default=str)


def setup_logging(level: str = "info") -> None:
    """Route all logging to stdout as JSON lines. Safe to call more than once."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
