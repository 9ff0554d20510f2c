"""Policy evaluation.

This module enforces:
- operation allowlist (read-only tools only)
- optional repository allowlist
"""

from __future__ import annotations

from dataclasses import dataclass

ALLOW_LISTED_OPERATIONS: frozenset[str] = frozenset(
    {
        "list_issues",
        "get_issue",
        "list_issue_comments_plain",
        "list_pull_requests",
        "get_pull_request",
        "get_pr_status_summary",
        "list_pr_comments_plain",
        "list_pr_review_comments_plain",
        "list_pr_reviews_light",
        "list_pr_commits_light",
        "list_pr_files_light",
        "get_pr_diff",
        "get_pr_patch",
        "list_workflows_light",
        "list_workflow_runs_light",
        "get_workflow_run_light",
        "list_workflow_jobs_light",
        "get_workflow_job_logs",
    }
)


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    """Policy decision result."""

    allowed: bool
    reason: str | None = None


class Policy:
    """Policy engine."""

    def __init__(self, *, allowed_repos: frozenset[str]) -> None:
        # Repository names are case-insensitive on GitHub.
        self._allowed_repos = frozenset(r.lower() for r in allowed_repos)

    def check_operation_allowed(self, operation: str) -> PolicyDecision:
        """Return whether the operation name is allow-listed."""
        if operation not in ALLOW_LISTED_OPERATIONS:
            return PolicyDecision(False, "Operation is not allow-listed")
        return PolicyDecision(True)

    def check_repo_allowed(self, target_repo: str) -> PolicyDecision:
        """Return whether the target repo is allowed; an empty allowlist allows all."""
        if not self._allowed_repos:
            return PolicyDecision(True)
        if target_repo.lower() in self._allowed_repos:
            return PolicyDecision(True)
        return PolicyDecision(False, "Repository is not in allowlist")
