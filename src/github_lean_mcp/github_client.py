"""GitHub REST client wrapper.

Provides:
- https-only base URL and no-redirect behavior
- bounded retries with backoff (429, 5xx, transport errors)
- finite timeouts
- safe error translation carrying the response status and rate quota
- response headers for pagination and rate telemetry
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .config import LimitsConfig
from .errors import SafeError, github_auth_forbidden, is_retriable_status
from .rate import quota_from_headers

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
JSON_MEDIA_TYPE = "application/vnd.github+json"
DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"
PATCH_MEDIA_TYPE = "application/vnd.github.v3.patch"


@dataclass(frozen=True, slots=True)
class RequestBudget:
    """Budget for a single tool call."""

    total_timeout_s: float


@dataclass(frozen=True, slots=True)
class RestResponse:
    """A successful REST response: status, case-insensitive headers and decoded body."""

    status_code: int
    headers: httpx.Headers
    data: Any


class GitHubClient:
    """Minimal GitHub REST client."""

    def __init__(
        self,
        *,
        token_provider,
        limits: LimitsConfig,
        api_base_url: str = "https://api.github.com",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a GitHub REST client.

        Args:
            token_provider: Async callable that returns a bearer token.
            limits: Timeouts/retry limits.
            api_base_url: GitHub API root; must be https.
            transport: Optional httpx transport for tests.
        """
        self._token_provider = token_provider
        self._limits = limits
        self._api_base_url = api_base_url.rstrip("/")
        self._transport = transport

        if not self._api_base_url.startswith("https://"):
            raise SafeError(code="Config", message="GitHub API base URL must use https")

    def _headers(self, token: str, accept: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": accept,
            "X-GitHub-Api-Version": API_VERSION,
        }

    def _compute_backoff_s(self, attempt_index: int) -> float:
        # attempt_index: 1 for first retry, 2 for second retry...
        base = min(self._limits.max_backoff_s, 0.5 * (2 ** (attempt_index - 1)))
        jitter = min(0.05, 0.01 * attempt_index)
        return min(self._limits.max_backoff_s, base + jitter)

    def _is_retryable(self, status_code: int | None, exc: Exception | None) -> bool:
        if exc is not None:
            return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))
        return is_retriable_status(status_code)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        rate = quota_from_headers(resp.headers)
        if resp.status_code in (401, 403):
            # 403 with an exhausted quota is a primary rate limit, not an authorization failure.
            if resp.status_code == 403 and rate is not None and rate.remaining == 0:
                raise SafeError(
                    code="GitHub",
                    message="GitHub rate limit exceeded",
                    status_code=resp.status_code,
                    rate=rate,
                )
            raise github_auth_forbidden(status_code=resp.status_code, rate=rate)

        safe_hint = None
        try:
            err_payload = resp.json()
            if isinstance(err_payload, dict) and isinstance(err_payload.get("message"), str):
                safe_hint = err_payload.get("message")
        except Exception:  # pylint: disable=broad-exception-caught
            safe_hint = None

        raise SafeError(
            code="GitHub",
            message="GitHub request failed",
            hint=safe_hint,
            status_code=resp.status_code,
            rate=rate,
        )

    async def _send(
        self,
        *,
        method: str,
        path: str,
        accept: str = JSON_MEDIA_TYPE,
        json_body: dict | None = None,
        params: dict[str, str] | None = None,
        budget: RequestBudget,
    ) -> httpx.Response:
        url = f"{self._api_base_url}{path}"
        token = await self._token_provider()

        timeout = httpx.Timeout(
            timeout=min(budget.total_timeout_s, self._limits.total_timeout_s),
            connect=self._limits.connect_timeout_s,
            read=self._limits.read_timeout_s,
        )

        last_exc: Exception | None = None
        last_status: int | None = None

        async with httpx.AsyncClient(
            follow_redirects=False,
            timeout=timeout,
            transport=self._transport,
        ) as client:
            for attempt in range(1, self._limits.max_attempts + 1):
                try:
                    resp = await client.request(
                        method,
                        url,
                        headers=self._headers(token, accept),
                        json=json_body,
                        params=params,
                    )
                    last_status = resp.status_code

                    if resp.status_code >= 400:
                        if attempt < self._limits.max_attempts and self._is_retryable(resp.status_code, None):
                            logger.info("GitHub %s %s returned %s; retrying", method, path, resp.status_code)
                            await asyncio.sleep(self._compute_backoff_s(attempt))
                            continue
                        self._raise_for_status(resp)

                    return resp

                except SafeError:
                    raise
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    last_exc = exc
                    if attempt < self._limits.max_attempts and self._is_retryable(None, exc):
                        logger.info("GitHub %s %s transport error (%s); retrying", method, path, type(exc).__name__)
                        await asyncio.sleep(self._compute_backoff_s(attempt))
                        continue
                    raise SafeError(code="Network", message="Network request failed") from exc

        raise SafeError(code="Network", message=f"Request failed (status={last_status})") from last_exc

    async def request(
        self,
        *,
        method: str,
        path: str,
        json_body: dict | None = None,
        params: dict[str, str] | None = None,
        budget: RequestBudget,
    ) -> RestResponse:
        """Make a request and return decoded JSON together with the response headers."""
        resp = await self._send(method=method, path=path, json_body=json_body, params=params, budget=budget)

        if resp.status_code == 204 or not resp.content:
            return RestResponse(status_code=resp.status_code, headers=resp.headers, data=None)
        try:
            data = resp.json()
        except json.JSONDecodeError as exc:
            raise SafeError(
                code="GitHub",
                message="GitHub returned invalid JSON",
                rate=quota_from_headers(resp.headers),
            ) from exc

        return RestResponse(status_code=resp.status_code, headers=resp.headers, data=data)

    async def request_text(
        self,
        *,
        path: str,
        accept: str,
        params: dict[str, str] | None = None,
        budget: RequestBudget,
    ) -> RestResponse:
        """GET a non-JSON representation (e.g. a pull request diff)."""
        resp = await self._send(method="GET", path=path, accept=accept, params=params, budget=budget)
        return RestResponse(status_code=resp.status_code, headers=resp.headers, data=resp.text)

    async def resolve_redirect(self, *, path: str, budget: RequestBudget) -> tuple[str, httpx.Headers]:
        """GET an endpoint that answers with a redirect and return its `location` without following it."""
        resp = await self._send(method="GET", path=path, budget=budget)
        location = resp.headers.get("location")
        if not location:
            raise SafeError(
                code="GitHub",
                message="Missing redirect location for logs",
                status_code=resp.status_code,
                rate=quota_from_headers(resp.headers),
            )
        return location, resp.headers
