"""Rate-limit telemetry.

GitHub reports quota in two shapes: `x-ratelimit-*` response headers on REST
calls and a `rateLimit { remaining used resetAt }` record on GraphQL queries.
Both are normalized into a single `Quota`. A quota is only built when at least
one source field was actually observed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

_REMAINING = "x-ratelimit-remaining"
_USED = "x-ratelimit-used"
_RESET = "x-ratelimit-reset"


@dataclass(frozen=True, slots=True)
class Quota:
    """Normalized rate-limit quota for a single upstream response."""

    remaining: int
    used: int
    reset_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"remaining": self.remaining, "used": self.used}
        if self.reset_at is not None:
            out["reset_at"] = self.reset_at
        return out


def _header(headers: Mapping[str, Any], name: str) -> Any:
    # httpx.Headers is already case-insensitive; plain dicts are not.
    value = headers.get(name)
    if value is not None:
        return value
    for key, candidate in headers.items():
        if isinstance(key, str) and key.lower() == name:
            return candidate
    return None


def _as_count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return max(int(str(value).strip()), 0)
    except ValueError:
        return 0


def _epoch_to_rfc3339(value: Any) -> str | None:
    try:
        seconds = int(str(value).strip())
    except ValueError:
        return None
    try:
        instant = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return instant.isoformat().replace("+00:00", "Z")


def quota_from_headers(headers: Mapping[str, Any] | None) -> Quota | None:
    """Build a Quota from REST `x-ratelimit-*` headers.

    Returns None when none of remaining/used/reset is present.
    """
    if not headers:
        return None

    remaining = _header(headers, _REMAINING)
    used = _header(headers, _USED)
    reset = _header(headers, _RESET)
    if remaining is None and used is None and reset is None:
        return None

    reset_at = _epoch_to_rfc3339(reset) if reset is not None else None
    return Quota(remaining=_as_count(remaining), used=_as_count(used), reset_at=reset_at)


def quota_from_graphql(record: Mapping[str, Any] | None) -> Quota | None:
    """Build a Quota from a GraphQL `rateLimit` record (resetAt is already ISO-8601)."""
    if not isinstance(record, Mapping):
        return None

    reset_at = record.get("resetAt")
    if not isinstance(reset_at, str):
        reset_at = None
    return Quota(
        remaining=_as_count(record.get("remaining")),
        used=_as_count(record.get("used")),
        reset_at=reset_at,
    )
