"""Configuration loading for github-lean-mcp.

Configuration is supplied by the host environment (e.g., MCP client config), not by the agent.
Credentials (token, private key path, installation id) are treated as secrets and must never
be emitted to agents, logs, or audit events.
"""

from __future__ import annotations

import functools
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import SafeError

DEFAULT_API_BASE_URL = "https://api.github.com"


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    """Policy guardrails configuration."""

    allowed_repos: frozenset[str]


@dataclass(frozen=True, slots=True)
class LimitsConfig:
    """Non-functional safety limits."""

    # Network
    total_timeout_s: float = 60.0
    connect_timeout_s: float = 5.0
    read_timeout_s: float = 30.0

    # Retries
    max_attempts: int = 3
    max_backoff_s: float = 5.0

    # Payload limits
    log_archive_max_bytes: int = 50 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class AppCredentials:
    """GitHub App + installation binding."""

    app_id: int
    installation_id: int
    private_key_path: Path


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Process-wide configuration."""

    api_base_url: str
    token: str | None
    app: AppCredentials | None

    policy: PolicyConfig
    audit_log_path: Path | None
    audit_max_bytes: int
    audit_max_backups: int
    log_level: str
    limits: LimitsConfig


def _parse_allowed_repos(value: str | None) -> frozenset[str]:
    if not value:
        return frozenset()
    parts = [p.strip() for p in value.split(",")]
    repos = [p for p in parts if p]
    for repo in repos:
        owner, sep, name = repo.partition("/")
        if not sep or not owner or not name or "/" in name:
            raise SafeError(code="Config", message="GITHUB_LEAN_MCP_ALLOWED_REPOS entries must look like owner/repo")
    return frozenset(repos)


def _load_app_credentials() -> AppCredentials | None:
    app_id_raw = os.getenv("GITHUB_APP_ID")
    installation_id_raw = os.getenv("GITHUB_APP_INSTALLATION_ID")
    private_key_path_raw = os.getenv("GITHUB_APP_PRIVATE_KEY_PATH")

    if not (app_id_raw or installation_id_raw or private_key_path_raw):
        return None
    if not app_id_raw or not installation_id_raw or not private_key_path_raw:
        raise SafeError(
            code="Config",
            message="GitHub App configuration requires GITHUB_APP_ID, GITHUB_APP_INSTALLATION_ID and GITHUB_APP_PRIVATE_KEY_PATH",
        )

    try:
        app_id = int(app_id_raw)
        installation_id = int(installation_id_raw)
    except ValueError as exc:
        raise SafeError(code="Config", message="GITHUB_APP_ID and GITHUB_APP_INSTALLATION_ID must be integers") from exc

    key_path = Path(private_key_path_raw)
    if not key_path.is_absolute():
        raise SafeError(code="Config", message="GITHUB_APP_PRIVATE_KEY_PATH must be an absolute path")

    # Fail fast if unreadable; never echo the path.
    try:
        if not key_path.is_file():
            raise SafeError(code="Config", message="GitHub App private key file is missing or not a file")
        _ = key_path.read_bytes()
    except SafeError:
        raise
    except Exception as exc:  # pylint: disable=broad-exception-caught
        raise SafeError(code="Config", message="GitHub App private key file is unreadable") from exc

    return AppCredentials(app_id=app_id, installation_id=installation_id, private_key_path=key_path)


def load_config_from_env() -> AppConfig:
    """Load and validate configuration from environment variables.

    Raises:
        SafeError: If configuration is missing/invalid.
    """
    token = os.getenv("GITHUB_TOKEN") or os.getenv("GITHUB_PAT") or None
    app = _load_app_credentials()
    if token is None and app is None:
        raise SafeError(
            code="Config",
            message="Missing credentials (set GITHUB_TOKEN, or GITHUB_APP_ID/GITHUB_APP_INSTALLATION_ID/GITHUB_APP_PRIVATE_KEY_PATH)",
        )

    api_base_url = (os.getenv("GITHUB_API_URL") or os.getenv("GITHUB_BASE_URL") or DEFAULT_API_BASE_URL).rstrip("/")
    if not api_base_url.startswith("https://"):
        raise SafeError(code="Config", message="GITHUB_API_URL must be an https URL")

    allowed_repos = _parse_allowed_repos(os.getenv("GITHUB_LEAN_MCP_ALLOWED_REPOS"))

    audit_path_raw = os.getenv("GITHUB_LEAN_MCP_AUDIT_LOG_PATH")
    audit_path: Path | None = None
    if audit_path_raw:
        p = Path(audit_path_raw)
        if not p.is_absolute():
            raise SafeError(code="Config", message="GITHUB_LEAN_MCP_AUDIT_LOG_PATH must be an absolute path when set")
        audit_path = p

    log_level = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise SafeError(code="Config", message="LOG_LEVEL must be a logging level name (e.g. DEBUG, INFO, WARNING)")

    return AppConfig(
        api_base_url=api_base_url,
        token=token,
        app=app,
        policy=PolicyConfig(allowed_repos=allowed_repos),
        audit_log_path=audit_path,
        audit_max_bytes=5 * 1024 * 1024,
        audit_max_backups=2,
        log_level=log_level,
        limits=LimitsConfig(),
    )


@functools.lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use.

    Failed loads are not cached, so a corrected environment is picked up on the next call.
    """
    return load_config_from_env()
