"""
Audit logging for analysis jobs and configuration changes.

SECURITY: Never log message content, subjects, sender or recipient addresses,
credentials, LLM prompts, or LLM responses. Only log metadata (counts,
identifiers, latencies, filter names). Fields with a redacted name are
dropped before the record is emitted.

Usage:
    from culturescope.logging.audit import audit
    audit.info("analysis.job.completed", progress_id="3f2a...", total=37)
"""

import logging
from typing import Any

REDACTED_FIELDS = frozenset({
    "content", "body", "subject", "sender", "recipients", "prompt",
    "response", "client_secret", "api_key",
})


class AuditLogger:
    """Structured action logger that refuses content-bearing fields."""

    def __init__(self, name: str = "audit"):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, action: str, fields: dict[str, Any]) -> None:
        dropped = sorted(k for k in fields if k in REDACTED_FIELDS)
        safe = {k: v for k, v in fields.items() if k not in REDACTED_FIELDS}
        if dropped:
            safe["redacted_fields"] = dropped
        self._logger.log(level, action, extra={"action": action, **safe})

    def info(self, action: str, **fields: Any) -> None:
        self._emit(logging.INFO, action, fields)

    def warning(self, action: str, **fields: Any) -> None:
        self._emit(logging.WARNING, action, fields)

    def error(self, action: str, **fields: Any) -> None:
        self._emit(logging.ERROR, action, fields)


audit = AuditLogger()
