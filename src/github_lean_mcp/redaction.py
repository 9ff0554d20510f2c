"""Credential screening and masking.

Two directions:

- inbound: tool arguments carrying something that looks like a GitHub
  credential are rejected before any request is made
- outbound: text leaving the server (job logs, error messages, diagnostic
  log lines) has embedded credentials replaced by `***`, the same mask
  GitHub Actions itself writes into job logs
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from .errors import SafeError

MASK = "***"

# Argument names no read-only tool accepts; their presence means a caller is
# trying to pass a credential through.
_CREDENTIAL_ARG_NAMES = frozenset({"token", "access_token", "authorization", "password", "private_key"})

_GITHUB_TOKEN_RE = re.compile(r"\b(?:gh[pousr]_|github_pat_)[A-Za-z0-9_]+")
_JWT_RE = re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")
_AUTH_HEADER_RE = re.compile(r"(?i)\b(authorization\s*:\s*)(?:bearer|token|basic)\s+[^\s\"']+")
_BEARER_RE = re.compile(r"(?i)\b(bearer\s+)[A-Za-z0-9_.=+/-]{8,}")
_URL_USERINFO_RE = re.compile(r"(?i)\b(https?://)[^/\s:@]+:[^/\s@]+@")


def mask_credentials(text: str) -> str:
    """Replace every credential-shaped substring of `text` with the mask."""
    if not text:
        return text
    text = _URL_USERINFO_RE.sub(rf"\g<1>{MASK}@", text)
    text = _AUTH_HEADER_RE.sub(rf"\g<1>{MASK}", text)
    text = _BEARER_RE.sub(rf"\g<1>{MASK}", text)
    text = _JWT_RE.sub(MASK, text)
    return _GITHUB_TOKEN_RE.sub(MASK, text)


def for_log(value: Any) -> str:
    """Render a value for a diagnostic log line."""
    if not isinstance(value, str):
        return "<non-string>"
    return mask_credentials(value)


def _is_credential_value(value: str) -> bool:
    trimmed = value.strip()
    if trimmed.lower().startswith("bearer "):
        return True
    return mask_credentials(trimmed) != trimmed


def _offending_argument(value: Any) -> str | None:
    if isinstance(value, Mapping):
        for key, nested in value.items():
            if str(key).strip().lower() in _CREDENTIAL_ARG_NAMES:
                return "field"
            found = _offending_argument(nested)
            if found:
                return found
    elif isinstance(value, (list, tuple)):
        for nested in value:
            found = _offending_argument(nested)
            if found:
                return found
    elif isinstance(value, str) and _is_credential_value(value):
        return "value"
    return None


def screen_arguments(arguments: Mapping[str, Any]) -> None:
    """Reject tool arguments that carry a credential. The value is never echoed."""
    found = _offending_argument(arguments)
    if found == "field":
        raise SafeError(code="Validation", message="Credential-like fields are not allowed")
    if found == "value":
        raise SafeError(code="Validation", message="Credential-like values are not allowed")
