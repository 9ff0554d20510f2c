"""Error types and the error taxonomy mapper.

Every tool failure ends up as an `ErrorRecord` with a code from a closed
vocabulary:

- `HTTP_<status>` for numeric upstream statuses
- an upper-cased status/code literal (e.g. `NOT_FOUND`, `VALIDATION`)
- an upper-cased error type name (e.g. `CONNECTERROR`)
- `UNKNOWN`

`retriable` depends only on the numeric status (429 or 5xx).
Errors returned to agents must be non-secret and stable.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .rate import Quota


@dataclass(frozen=True, slots=True)
class SafeError(Exception):
    """An error safe to expose to agents.

    This must never include secrets (tokens, private key content, key path, installation IDs).
    `rate` carries the quota observed on the failing response, when there was one.
    """

    code: str
    message: str
    hint: str | None = None
    status_code: int | None = None
    rate: Quota | None = None


def github_auth_forbidden(*, status_code: int, rate: Quota | None = None) -> SafeError:
    """Return a safe error for GitHub 401/403 responses."""
    return SafeError(
        code="Forbidden",
        message="GitHub credentials are not authorized for this repository or operation",
        hint="The token may be expired or revoked, or missing required scopes",
        status_code=status_code,
        rate=rate,
    )


class ErrorKind(enum.Enum):
    """Shape of an error code."""

    HTTP_STATUS = "http_status"
    STATUS_LITERAL = "status_literal"
    ERROR_TYPE = "error_type"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    """Machine-readable failure description returned in the `error` envelope."""

    code: str
    message: str
    retriable: bool
    kind: ErrorKind = ErrorKind.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "retriable": self.retriable}


def _field(failure: object, name: str) -> Any:
    if isinstance(failure, Mapping):
        return failure.get(name)
    try:
        return getattr(failure, name, None)
    except Exception:  # pylint: disable=broad-exception-caught
        # Some exception types raise from property access (e.g. httpx request not set).
        return None


def _status_signal(failure: object) -> Any:
    for name in ("status", "status_code"):
        value = _field(failure, name)
        if value is not None:
            return value

    response = _field(failure, "response")
    if response is not None:
        for name in ("status_code", "status"):
            value = _field(response, name)
            if value is not None:
                return value

    return _field(failure, "code")


def _as_http_status(signal: Any) -> int | None:
    if isinstance(signal, bool):
        return None
    if isinstance(signal, int):
        return signal
    if isinstance(signal, float) and signal.is_integer():
        return int(signal)
    if isinstance(signal, str) and signal.strip().isdigit():
        return int(signal.strip())
    return None


def _error_type_name(failure: object) -> str | None:
    name = _field(failure, "name")
    if isinstance(name, str) and name:
        return name
    if isinstance(failure, BaseException):
        return type(failure).__name__
    return None


def _message(failure: object) -> str:
    if isinstance(failure, SafeError):
        if failure.hint:
            return f"{failure.message}: {failure.hint}"
        return failure.message or "Unknown error"

    message = _field(failure, "message")
    if isinstance(message, str) and message:
        return message
    if isinstance(failure, BaseException):
        text = str(failure)
        if text:
            return text
    return "Unknown error"


def is_retriable_status(status: int | None) -> bool:
    """Return True for statuses a caller may safely retry later (429 and 5xx)."""
    if status is None:
        return False
    if status == 429:
        return True
    return 500 <= status <= 599


def map_error(failure: object) -> ErrorRecord:
    """Classify an arbitrary failure into an ErrorRecord."""
    signal = _status_signal(failure)
    status = _as_http_status(signal)

    if status is not None:
        code = f"HTTP_{status}"
        kind = ErrorKind.HTTP_STATUS
    elif isinstance(signal, str) and signal.strip():
        code = signal.strip().upper()
        kind = ErrorKind.STATUS_LITERAL
    else:
        type_name = _error_type_name(failure)
        if type_name:
            code = type_name.upper()
            kind = ErrorKind.ERROR_TYPE
        else:
            code = "UNKNOWN"
            kind = ErrorKind.UNKNOWN

    return ErrorRecord(
        code=code,
        message=_message(failure),
        retriable=is_retriable_status(status),
        kind=kind,
    )


def error_envelope(record: ErrorRecord, *, rate: Quota | None = None) -> dict[str, Any]:
    """Build the failure envelope: `error` plus optional `meta.rate`, nothing else."""
    out: dict[str, Any] = {"error": record.to_dict()}
    if rate is not None:
        out["meta"] = {"rate": rate.to_dict()}
    return out


def failure_to_result(failure: object) -> dict[str, Any]:
    """Map any failure to the standard tool error envelope."""
    rate = failure.rate if isinstance(failure, SafeError) else None
    return error_envelope(map_error(failure), rate=rate)


def internal_error(message: str = "Internal error") -> dict[str, Any]:
    """Error envelope for unexpected failures outside a tool handler."""
    return error_envelope(ErrorRecord(code="INTERNAL", message=message, retriable=False))
