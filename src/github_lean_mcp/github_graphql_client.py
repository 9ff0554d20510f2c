"""GitHub GraphQL client wrapper.

Provides:
- https-only base URL and no-redirect behavior
- bounded retries with backoff
- finite timeouts
- safe error translation (GraphQL error `type`, e.g. NOT_FOUND, becomes the error code)

This client is intended only for fixed query documents controlled by the server.
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
from .github_client import API_VERSION, RequestBudget
from .rate import quota_from_graphql, quota_from_headers

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GraphQLResult:
    """Parsed GraphQL response."""

    data: dict[str, Any]


class GitHubGraphQLClient:
    """Minimal GitHub GraphQL client (POST /graphql only)."""

    def __init__(
        self,
        *,
        token_provider,
        limits: LimitsConfig,
        api_base_url: str = "https://api.github.com",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a GraphQL client with safe defaults."""
        self._token_provider = token_provider
        self._limits = limits
        self._api_base_url = api_base_url.rstrip("/")
        self._transport = transport

        if not self._api_base_url.startswith("https://"):
            raise SafeError(code="Config", message="GitHub API base URL must use https")

    @property
    def endpoint(self) -> str:
        # GitHub Enterprise serves REST under /api/v3 and GraphQL under /api/graphql.
        if self._api_base_url.endswith("/api/v3"):
            return f"{self._api_base_url[: -len('/v3')]}/graphql"
        return f"{self._api_base_url}/graphql"

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
        }

    def _compute_backoff_s(self, attempt_index: int) -> float:
        base = min(self._limits.max_backoff_s, 0.5 * (2 ** (attempt_index - 1)))
        jitter = min(0.05, 0.01 * attempt_index)
        return min(self._limits.max_backoff_s, base + jitter)

    def _is_retryable(self, status_code: int | None, exc: Exception | None) -> bool:
        if exc is not None:
            return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))
        return is_retriable_status(status_code)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        rate = quota_from_headers(resp.headers)
        if resp.status_code in (401, 403) and not (rate is not None and rate.remaining == 0):
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
            message="GitHub GraphQL request failed",
            hint=safe_hint,
            status_code=resp.status_code,
            rate=rate,
        )

    def _raise_for_errors(self, errors: list[Any], data: object) -> None:
        first = errors[0]
        hint = None
        error_type = None
        if isinstance(first, dict):
            if isinstance(first.get("message"), str):
                hint = first.get("message")
            if isinstance(first.get("type"), str) and first.get("type"):
                error_type = first.get("type")
        rate = quota_from_graphql(data.get("rateLimit")) if isinstance(data, dict) else None
        raise SafeError(
            code=error_type or "GraphQL",
            message="GitHub GraphQL request failed",
            hint=hint,
            rate=rate,
        )

    async def execute(
        self,
        *,
        query: str,
        variables: dict[str, Any] | None = None,
        budget: RequestBudget,
    ) -> GraphQLResult:
        """Execute a fixed GraphQL query and return parsed data."""
        if not isinstance(query, str) or not query.strip():
            raise SafeError(code="Internal", message="GraphQL query is missing")

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
                    resp = await client.post(
                        self.endpoint,
                        headers=self._headers(token),
                        json={"query": query, "variables": variables or {}},
                    )
                    last_status = resp.status_code

                    if resp.status_code >= 400:
                        if attempt < self._limits.max_attempts and self._is_retryable(resp.status_code, None):
                            logger.info("GitHub GraphQL returned %s; retrying", resp.status_code)
                            await asyncio.sleep(self._compute_backoff_s(attempt))
                            continue
                        self._raise_for_status(resp)

                    try:
                        payload = resp.json()
                    except json.JSONDecodeError as exc:
                        raise SafeError(code="GitHub", message="GitHub returned invalid JSON") from exc

                    if not isinstance(payload, dict):
                        raise SafeError(code="GitHub", message="GitHub returned invalid JSON")

                    data = payload.get("data")
                    errors = payload.get("errors")
                    if isinstance(errors, list) and errors:
                        self._raise_for_errors(errors, data)

                    if not isinstance(data, dict):
                        raise SafeError(code="GitHub", message="GitHub GraphQL returned no data")

                    return GraphQLResult(data=data)

                except SafeError:
                    raise
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    last_exc = exc
                    if attempt < self._limits.max_attempts and self._is_retryable(None, exc):
                        logger.info("GitHub GraphQL transport error (%s); retrying", type(exc).__name__)
                        await asyncio.sleep(self._compute_backoff_s(attempt))
                        continue
                    raise SafeError(code="Network", message="Network request failed") from exc

        raise SafeError(code="Network", message=f"Request failed (status={last_status})") from last_exc
