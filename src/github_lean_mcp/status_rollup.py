"""CI status rollup for the latest commit of a pull request.

GitHub's `statusCheckRollup.contexts` is a union of `CheckRun` (Actions /
Checks API) and `StatusContext` (legacy commit statuses). Both are folded into
success/pending/failure counters. Unknown conclusions and states count as
failures.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Union

SUCCESS = "SUCCESS"
PENDING = "PENDING"
FAILURE = "FAILURE"

_CHECK_RUN_SUCCESS = frozenset({"SUCCESS", "NEUTRAL", "SKIPPED"})
_CHECK_RUN_PENDING = frozenset({"PENDING", "QUEUED", "IN_PROGRESS"})


@dataclass(frozen=True, slots=True)
class CheckRun:
    name: str
    conclusion: str | None


@dataclass(frozen=True, slots=True)
class StatusContext:
    context: str
    state: str | None


CheckResult = Union[CheckRun, StatusContext]


@dataclass(frozen=True, slots=True)
class StatusCounts:
    success: int = 0
    pending: int = 0
    failure: int = 0


@dataclass(frozen=True, slots=True)
class StatusRollup:
    """Aggregated CI verdict."""

    overall_state: str
    counts: StatusCounts
    failing_contexts: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "overall_state": self.overall_state,
            "counts": {
                "success": self.counts.success,
                "pending": self.counts.pending,
                "failure": self.counts.failure,
            },
        }
        if self.failing_contexts is not None:
            out["failing_contexts"] = list(self.failing_contexts)
        return out


def parse_check_contexts(nodes: object) -> list[CheckResult]:
    """Build check results from GraphQL rollup context nodes, skipping other types."""
    if not isinstance(nodes, list):
        return []

    results: list[CheckResult] = []
    for node in nodes:
        if not isinstance(node, dict):
            continue
        typename = node.get("__typename")
        if typename == "CheckRun":
            conclusion = node.get("conclusion")
            results.append(
                CheckRun(
                    name=str(node.get("name") or ""),
                    conclusion=conclusion if isinstance(conclusion, str) else None,
                )
            )
        elif typename == "StatusContext":
            state = node.get("state")
            results.append(
                StatusContext(
                    context=str(node.get("context") or ""),
                    state=state if isinstance(state, str) else None,
                )
            )
    return results


def _classify(result: CheckResult) -> str:
    if isinstance(result, CheckRun):
        conclusion = (result.conclusion or "").upper()
        if conclusion in _CHECK_RUN_SUCCESS:
            return SUCCESS
        if conclusion in _CHECK_RUN_PENDING:
            return PENDING
        return FAILURE
    if isinstance(result, StatusContext):
        state = (result.state or "").upper()
        if state == SUCCESS:
            return SUCCESS
        if state == PENDING:
            return PENDING
        return FAILURE
    raise TypeError(f"Unsupported check result: {type(result).__name__}")


def _label(result: CheckResult) -> str:
    if isinstance(result, CheckRun):
        return result.name
    return result.context


def derive_overall_state(counts: StatusCounts) -> str:
    if counts.failure > 0:
        return FAILURE
    if counts.pending > 0:
        return PENDING
    return SUCCESS


def summarize_status(
    contexts: Iterable[CheckResult],
    *,
    include_failing_contexts: bool = False,
    rollup_state: str | None = None,
) -> StatusRollup:
    """Fold check results into a StatusRollup.

    An authoritative `rollup_state` from GitHub wins over the derived verdict.
    """
    success = pending = failure = 0
    failing: list[str] = []

    for result in contexts:
        verdict = _classify(result)
        if verdict == SUCCESS:
            success += 1
        elif verdict == PENDING:
            pending += 1
        else:
            failure += 1
            if include_failing_contexts:
                failing.append(_label(result))

    counts = StatusCounts(success=success, pending=pending, failure=failure)
    authoritative = rollup_state.strip().upper() if isinstance(rollup_state, str) else ""
    overall = authoritative or derive_overall_state(counts)

    return StatusRollup(
        overall_state=overall,
        counts=counts,
        failing_contexts=tuple(failing) if include_failing_contexts else None,
    )
