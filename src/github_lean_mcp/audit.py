"""Structured audit logging.

Exactly one JSON event per tool call, emitted on the `github_lean_mcp.audit`
logger (stderr via the root handler) and optionally to a size-rotated JSONL
file. Events never contain secret material or tool arguments beyond the
target repository.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

AUDIT_LOGGER_NAME = "github_lean_mcp.audit"


def new_correlation_id() -> str:
    """Generate a random correlation id for traceability."""
    return uuid.uuid4().hex


def _now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """A single audit event."""

    timestamp: str
    correlation_id: str
    operation: str
    target_repo: str
    outcome: str
    error_code: str | None
    duration_ms: int | None
    error_kind: str | None = None


class AuditLogger:
    """Writes audit events as JSON lines."""

    def __init__(
        self,
        *,
        sink_path: Path | None,
        max_bytes: int = 5 * 1024 * 1024,
        max_backups: int = 2,
    ) -> None:
        self._logger = logging.getLogger(AUDIT_LOGGER_NAME)
        self._file_handler: logging.Handler | None = None
        if sink_path is not None:
            try:
                sink_path.parent.mkdir(parents=True, exist_ok=True)
                handler = logging.handlers.RotatingFileHandler(
                    sink_path,
                    maxBytes=max_bytes,
                    backupCount=max_backups,
                    encoding="utf-8",
                )
            except OSError:
                # The optional file sink must not prevent the server from starting.
                logging.getLogger(__name__).warning("Audit file sink is unavailable; using stderr only")
            else:
                handler.setFormatter(logging.Formatter("%(message)s"))
                self._file_handler = handler

    def write_event(self, event: AuditEvent) -> None:
        """Write an audit event to the audit logger and the optional file sink."""
        payload = {k: v for k, v in asdict(event).items() if v is not None}
        line = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        self._logger.info(line)
        if self._file_handler is not None:
            record = self._logger.makeRecord(AUDIT_LOGGER_NAME, logging.INFO, __file__, 0, line, None, None)
            self._file_handler.handle(record)

    def measure_start(self) -> float:
        """Return a monotonic start timestamp for duration measurement."""
        return time.monotonic()

    def measure_duration_ms(self, start: float) -> int:
        """Convert a monotonic start timestamp into elapsed milliseconds."""
        return int((time.monotonic() - start) * 1000)


def build_event(
    *,
    correlation_id: str,
    operation: str,
    target_repo: str,
    outcome: str,
    error_code: str | None = None,
    duration_ms: int | None = None,
    error_kind: str | None = None,
) -> AuditEvent:
    """Construct an audit event. `error_kind` is the shape of `error_code` (see `ErrorKind`)."""
    return AuditEvent(
        timestamp=_now_rfc3339(),
        correlation_id=correlation_id,
        operation=operation,
        target_repo=target_repo,
        outcome=outcome,
        error_code=error_code,
        duration_ms=duration_ms,
        error_kind=error_kind,
    )
