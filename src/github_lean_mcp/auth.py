"""GitHub authentication.

Two token sources are supported:
- a static token (`GITHUB_TOKEN`)
- a GitHub App installation token (App JWT signed with PyJWT, exchanged and cached)

Secrets (private key content, tokens, installation IDs) must never be exposed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx
import jwt

from .config import AppConfig, AppCredentials
from .errors import SafeError

TokenProvider = Callable[[], Awaitable[str]]


class StaticTokenProvider:
    """Token provider for a fixed personal access / Actions token."""

    def __init__(self, token: str) -> None:
        if not token:
            raise SafeError(code="Config", message="GitHub token is empty")
        self._token = token

    async def __call__(self) -> str:
        return self._token


@dataclass(frozen=True, slots=True)
class InstallationToken:
    """Cached installation access token + expiry."""

    token: str
    expires_at: datetime


class GitHubAppAuth:
    """Manages GitHub App JWT creation and installation token caching."""

    def __init__(
        self,
        *,
        credentials: AppCredentials,
        api_base_url: str = "https://api.github.com",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create an auth helper for a single app installation."""
        self._credentials = credentials
        self._api_base_url = api_base_url.rstrip("/")
        self._transport = transport
        self._lock = asyncio.Lock()
        self._cached: InstallationToken | None = None

    def _build_app_jwt(self) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            # Backdated to tolerate clock drift between host and GitHub.
            "iat": int((now - timedelta(seconds=60)).timestamp()),
            "exp": int((now + timedelta(minutes=9)).timestamp()),
            "iss": str(self._credentials.app_id),
        }
        private_key_pem = self._credentials.private_key_path.read_text(encoding="utf-8")
        return jwt.encode(payload, private_key_pem, algorithm="RS256")

    async def get_installation_token(self) -> str:
        """Get a valid installation access token (refreshing if needed)."""
        async with self._lock:
            if self._cached is not None:
                remaining = (self._cached.expires_at - datetime.now(timezone.utc)).total_seconds()
                if remaining > 30:
                    return self._cached.token

            app_jwt = self._build_app_jwt()
            headers = {
                "Authorization": f"Bearer {app_jwt}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }

            url = f"{self._api_base_url}/app/installations/{self._credentials.installation_id}/access_tokens"
            try:
                async with httpx.AsyncClient(
                    follow_redirects=False,
                    timeout=30.0,
                    transport=self._transport,
                ) as client:
                    resp = await client.post(url, headers=headers, json={})
            except httpx.HTTPError as exc:
                raise SafeError(code="Network", message="Failed to reach GitHub for an installation token") from exc

            if resp.status_code in (401, 403):
                raise SafeError(code="Auth", message="GitHub App authentication failed", status_code=resp.status_code)
            if resp.status_code >= 400:
                raise SafeError(
                    code="GitHub",
                    message="Failed to obtain installation token",
                    status_code=resp.status_code,
                )

            data = resp.json()
            token = data.get("token")
            expires_at_raw = data.get("expires_at")
            if not token or not expires_at_raw:
                raise SafeError(code="Auth", message="GitHub token response missing required fields")

            # RFC3339 timestamp like 2025-01-01T00:00:00Z
            expires_at = datetime.fromisoformat(expires_at_raw.replace("Z", "+00:00")).astimezone(timezone.utc)
            self._cached = InstallationToken(token=token, expires_at=expires_at)
            return token


def token_provider_from_config(config: AppConfig) -> TokenProvider:
    """Pick the token source: a static token wins over App credentials."""
    if config.token:
        return StaticTokenProvider(config.token)
    if config.app is not None:
        return GitHubAppAuth(credentials=config.app, api_base_url=config.api_base_url).get_installation_token
    raise SafeError(code="Config", message="No GitHub credentials configured")
