"""Tool registry and dispatch layer.

This module:
- defines the allow-listed, read-only tools (public contract surface)
- builds a per-process runtime from host-provided config
- creates a correlation_id per tool call for the audit trail
- performs secret/policy checks before executing any tool implementation
- shapes every result into the lean envelope:
  success -> `items`/`item` (or a tool payload) + `meta`
  failure -> `error` + optional `meta.rate`, never `items`/`item`
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .audit import AuditLogger, build_event, new_correlation_id
from .auth import token_provider_from_config
from .config import AppConfig, get_config
from .errors import SafeError, failure_to_result, map_error
from .github_client import DIFF_MEDIA_TYPE, PATCH_MEDIA_TYPE, GitHubClient, RequestBudget
from .github_graphql_client import GitHubGraphQLClient
from .logs import retrieve_logs
from .pagination import PageMeta, decode_cursor_page, derive_rest_page_meta, graphql_page_meta
from .policy import Policy
from .rate import Quota, quota_from_graphql, quota_from_headers
from .redaction import for_log, mask_credentials, screen_arguments
from .status_rollup import parse_check_contexts, summarize_status

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 30

_REPO_PROPS: dict[str, Any] = {
    "owner": {"type": "string", "minLength": 1},
    "repo": {"type": "string", "minLength": 1},
}

_GRAPHQL_PAGE_PROPS: dict[str, Any] = {
    "cursor": {"type": "string"},
    "limit": {"type": "integer", "minimum": 1, "maximum": 100, "default": DEFAULT_PAGE_SIZE},
}

_REST_PAGE_PROPS: dict[str, Any] = {
    "cursor": {"type": "string"},
    "page": {"type": "integer", "minimum": 1},
    "per_page": {"type": "integer", "minimum": 1, "maximum": 100, "default": DEFAULT_PAGE_SIZE},
}

_INCLUDE_AUTHOR: dict[str, Any] = {"include_author": {"type": "boolean", "default": False}}

TOOL_METADATA: dict[str, dict[str, Any]] = {
    "list_issues": {
        "description": "List issues (GraphQL, cursor pagination). Pull requests are excluded.",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo"],
            "properties": {
                **_REPO_PROPS,
                "state": {"type": "string", "enum": ["open", "closed", "all"], "default": "open"},
                "labels": {"type": "array"},
                "creator": {"type": "string"},
                "assignee": {"type": "string"},
                "mentions": {"type": "string"},
                "since": {"type": "string"},
                **_INCLUDE_AUTHOR,
                **_GRAPHQL_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "get_issue": {
        "description": "Fetch a single issue by number.",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {**_REPO_PROPS, "number": {"type": "integer", "minimum": 1}, **_INCLUDE_AUTHOR},
            "additionalProperties": False,
        },
    },
    "list_issue_comments_plain": {
        "description": "List comments on an issue as plain text (GraphQL, cursor pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {
                **_REPO_PROPS,
                "number": {"type": "integer", "minimum": 1},
                **_INCLUDE_AUTHOR,
                **_GRAPHQL_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "list_pull_requests": {
        "description": "List pull requests, most recently updated first (GraphQL, cursor pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo"],
            "properties": {
                **_REPO_PROPS,
                "state": {"type": "string", "enum": ["open", "closed", "merged", "all"], "default": "open"},
                "base": {"type": "string"},
                "head": {"type": "string"},
                **_INCLUDE_AUTHOR,
                **_GRAPHQL_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "get_pull_request": {
        "description": "Fetch a single pull request by number.",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {**_REPO_PROPS, "number": {"type": "integer", "minimum": 1}, **_INCLUDE_AUTHOR},
            "additionalProperties": False,
        },
    },
    "get_pr_status_summary": {
        "description": "Summarize CI checks and commit statuses for the latest commit of a pull request.",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {
                **_REPO_PROPS,
                "number": {"type": "integer", "minimum": 1},
                "include_failing_contexts": {"type": "boolean", "default": False},
                "limit_contexts": {"type": "integer", "minimum": 1, "maximum": 100, "default": 10},
            },
            "additionalProperties": False,
        },
    },
    "list_pr_comments_plain": {
        "description": "List conversation comments on a pull request as plain text (GraphQL, cursor pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {
                **_REPO_PROPS,
                "number": {"type": "integer", "minimum": 1},
                **_INCLUDE_AUTHOR,
                **_GRAPHQL_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "list_pr_review_comments_plain": {
        "description": "List inline review comments on a pull request, optionally with their diff location (GraphQL, cursor pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {
                **_REPO_PROPS,
                "number": {"type": "integer", "minimum": 1},
                **_INCLUDE_AUTHOR,
                "include_location": {"type": "boolean", "default": False},
                **_GRAPHQL_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "list_pr_reviews_light": {
        "description": "List reviews of a pull request with their state (GraphQL, cursor pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {
                **_REPO_PROPS,
                "number": {"type": "integer", "minimum": 1},
                **_INCLUDE_AUTHOR,
                **_GRAPHQL_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "list_pr_commits_light": {
        "description": "List commits of a pull request: sha, headline and author date (GraphQL, cursor pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {
                **_REPO_PROPS,
                "number": {"type": "integer", "minimum": 1},
                **_INCLUDE_AUTHOR,
                **_GRAPHQL_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "list_pr_files_light": {
        "description": "List files changed by a pull request (REST, page pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {
                **_REPO_PROPS,
                "number": {"type": "integer", "minimum": 1},
                "include_patch": {"type": "boolean", "default": False},
                **_REST_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "get_pr_diff": {
        "description": "Fetch the unified diff of a pull request.",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {**_REPO_PROPS, "number": {"type": "integer", "minimum": 1}},
            "additionalProperties": False,
        },
    },
    "get_pr_patch": {
        "description": "Fetch a pull request as a series of mailbox-format patches, one per commit.",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "number"],
            "properties": {**_REPO_PROPS, "number": {"type": "integer", "minimum": 1}},
            "additionalProperties": False,
        },
    },
    "list_workflows_light": {
        "description": "List GitHub Actions workflows in a repository (REST, page pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo"],
            "properties": {**_REPO_PROPS, **_REST_PAGE_PROPS},
            "additionalProperties": False,
        },
    },
    "list_workflow_runs_light": {
        "description": "List runs of a workflow with optional filters (REST, page pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "workflow_id"],
            "properties": {
                **_REPO_PROPS,
                "workflow_id": {"type": ["integer", "string"]},
                "status": {"type": "string"},
                "branch": {"type": "string"},
                "actor": {"type": "string"},
                "event": {"type": "string"},
                "created": {"type": "string"},
                "head_sha": {"type": "string"},
                **_REST_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "get_workflow_run_light": {
        "description": "Fetch a single workflow run.",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "run_id"],
            "properties": {
                **_REPO_PROPS,
                "run_id": {"type": "integer", "minimum": 1},
                "exclude_pull_requests": {"type": "boolean", "default": False},
            },
            "additionalProperties": False,
        },
    },
    "list_workflow_jobs_light": {
        "description": "List jobs of a workflow run (REST, page pagination).",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "run_id"],
            "properties": {
                **_REPO_PROPS,
                "run_id": {"type": "integer", "minimum": 1},
                "filter": {"type": "string", "enum": ["latest", "all"]},
                **_REST_PAGE_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "get_workflow_job_logs": {
        "description": "Download the logs of a workflow job as text, optionally tail-windowed and timestamped.",
        "inputSchema": {
            "type": "object",
            "required": ["owner", "repo", "job_id"],
            "properties": {
                **_REPO_PROPS,
                "job_id": {"type": "integer", "minimum": 1},
                "tail_lines": {"type": "integer", "minimum": 1},
                "include_timestamps": {"type": "boolean", "default": False},
            },
            "additionalProperties": False,
        },
    },
}


@dataclass(frozen=True, slots=True)
class Runtime:
    """Per-process runtime dependencies shared across tool calls."""

    config: AppConfig
    audit: AuditLogger
    policy: Policy
    github: GitHubClient
    graphql: GitHubGraphQLClient
    log_transport: httpx.AsyncBaseTransport | None = None


_JSON_TYPE_CHECKS: dict[str, Any] = {
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


def validate_tool_arguments(tool_name: str, arguments: dict[str, Any]) -> None:
    """Validate tool arguments against the tool's declared input schema.

    This is intentionally a minimal validator that enforces:
    - required fields
    - no extra properties when additionalProperties=false
    - basic JSON types (string/integer/boolean/array/object, or a list of them)
    - enum membership, string minLength, integer minimum/maximum

    It does NOT implement full JSON Schema.
    """
    if tool_name not in TOOL_METADATA:
        raise SafeError(code="Validation", message="Unknown tool")

    schema = TOOL_METADATA[tool_name]["inputSchema"]
    props: dict[str, Any] = schema.get("properties", {})
    required: list[str] = schema.get("required", [])
    additional = schema.get("additionalProperties", True)

    for k in required:
        if k not in arguments:
            raise SafeError(code="Validation", message=f"Missing required field: {k}")

    if additional is False:
        extras = [k for k in arguments.keys() if k not in props]
        if extras:
            raise SafeError(code="Validation", message=f"Unexpected fields are not allowed: {', '.join(sorted(extras))}")

    for k, prop in props.items():
        if k not in arguments:
            continue
        v = arguments[k]
        expected = prop.get("type")
        if expected is not None:
            allowed = expected if isinstance(expected, list) else [expected]
            if not any(_JSON_TYPE_CHECKS[t](v) for t in allowed):
                raise SafeError(code="Validation", message=f"Field '{k}' must be of type {' or '.join(allowed)}")

        enum = prop.get("enum")
        if enum is not None and v not in enum:
            raise SafeError(code="Validation", message=f"Field '{k}' must be one of: {', '.join(enum)}")

        if isinstance(v, str):
            min_len = prop.get("minLength")
            if isinstance(min_len, int) and len(v) < min_len:
                raise SafeError(code="Validation", message=f"Field '{k}' must be at least {min_len} characters")

        if isinstance(v, int) and not isinstance(v, bool):
            minimum = prop.get("minimum")
            maximum = prop.get("maximum")
            if isinstance(minimum, int) and v < minimum:
                raise SafeError(code="Validation", message=f"Field '{k}' must be >= {minimum}")
            if isinstance(maximum, int) and v > maximum:
                raise SafeError(code="Validation", message=f"Field '{k}' must be <= {maximum}")


@functools.lru_cache(maxsize=1)
def initialize_runtime_from_env() -> Runtime:
    """Initialize and cache the runtime from environment.

    Called at server startup (fail-fast), and lazily on the first tool call.
    """
    config = get_config()
    audit = AuditLogger(
        sink_path=config.audit_log_path,
        max_bytes=config.audit_max_bytes,
        max_backups=config.audit_max_backups,
    )
    policy = Policy(allowed_repos=config.policy.allowed_repos)
    token_provider = token_provider_from_config(config)
    github = GitHubClient(token_provider=token_provider, limits=config.limits, api_base_url=config.api_base_url)
    graphql = GitHubGraphQLClient(token_provider=token_provider, limits=config.limits, api_base_url=config.api_base_url)
    return Runtime(config=config, audit=audit, policy=policy, github=github, graphql=graphql)


def _budget(runtime: Runtime) -> RequestBudget:
    return RequestBudget(total_timeout_s=runtime.config.limits.total_timeout_s)


def _require_str(arguments: dict[str, Any], key: str) -> str:
    v = arguments.get(key)
    if not isinstance(v, str) or not v:
        raise SafeError(code="Validation", message=f"Field '{key}' is required")
    return v


def _require_int(arguments: dict[str, Any], key: str) -> int:
    v = arguments.get(key)
    if not isinstance(v, int) or isinstance(v, bool):
        raise SafeError(code="Validation", message=f"Field '{key}' must be an integer")
    return v


def _not_found() -> SafeError:
    return SafeError(code="GitHub", message="Not Found", status_code=404)


def _meta(*, page: PageMeta | None = None, rate: Quota | None = None) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    if page is not None:
        meta.update(page.to_dict())
    if rate is not None:
        meta["rate"] = rate.to_dict()
    return meta


def _list_result(items: list[dict[str, Any]], *, page: PageMeta, rate: Quota | None) -> dict[str, Any]:
    return {"items": items, "meta": _meta(page=page, rate=rate)}


def _item_result(item: dict[str, Any], *, rate: Quota | None) -> dict[str, Any]:
    return {"item": item, "meta": _meta(rate=rate)}


def _graphql_page_args(arguments: dict[str, Any]) -> tuple[int, str | None]:
    limit = arguments.get("limit")
    if limit is None:
        limit = DEFAULT_PAGE_SIZE
    cursor = arguments.get("cursor") or None
    return limit, cursor


def _rest_page_args(arguments: dict[str, Any]) -> tuple[int, int]:
    per_page = arguments.get("per_page")
    if per_page is None:
        per_page = DEFAULT_PAGE_SIZE
    page = arguments.get("page")
    if page is None:
        page = 1

    cursor = arguments.get("cursor")
    if cursor:
        decoded = decode_cursor_page(cursor)
        if decoded is None:
            raise SafeError(
                code="Validation",
                message="Cursor is not valid for this tool",
                hint="Pass back the next_cursor returned by this same tool",
            )
        page = decoded
    return page, per_page


def _author_login(node: dict[str, Any]) -> str | None:
    author = node.get("author")
    if isinstance(author, dict) and isinstance(author.get("login"), str):
        return author["login"]
    return None


def _dig(data: object, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


_RATE_LIMIT_FIELDS = "rateLimit { remaining used resetAt }"

_QUERY_LIST_ISSUES = f"""
query($owner: String!, $repo: String!, $first: Int!, $after: String, $states: [IssueState!], $filterBy: IssueFilters) {{
  {_RATE_LIMIT_FIELDS}
  repository(owner: $owner, name: $repo) {{
    issues(first: $first, after: $after, states: $states, filterBy: $filterBy, orderBy: {{ field: UPDATED_AT, direction: DESC }}) {{
      nodes {{ id number title state createdAt updatedAt author {{ login }} }}
      pageInfo {{ hasNextPage endCursor }}
    }}
  }}
}}
""".strip()

_QUERY_GET_ISSUE = f"""
query($owner: String!, $repo: String!, $number: Int!) {{
  {_RATE_LIMIT_FIELDS}
  repository(owner: $owner, name: $repo) {{
    issue(number: $number) {{ id number title body state createdAt updatedAt author {{ login }} }}
  }}
}}
""".strip()

_QUERY_LIST_ISSUE_COMMENTS = f"""
query($owner: String!, $repo: String!, $number: Int!, $first: Int!, $after: String) {{
  {_RATE_LIMIT_FIELDS}
  repository(owner: $owner, name: $repo) {{
    issue(number: $number) {{
      comments(first: $first, after: $after) {{
        nodes {{ id body createdAt updatedAt author {{ login }} }}
        pageInfo {{ hasNextPage endCursor }}
      }}
    }}
  }}
}}
""".strip()

_QUERY_LIST_PULL_REQUESTS = f"""
query($owner: String!, $repo: String!, $first: Int!, $after: String, $states: [PullRequestState!], $base: String, $head: String) {{
  {_RATE_LIMIT_FIELDS}
  repository(owner: $owner, name: $repo) {{
    pullRequests(first: $first, after: $after, states: $states, baseRefName: $base, headRefName: $head, orderBy: {{ field: UPDATED_AT, direction: DESC }}) {{
      nodes {{ id number title state isDraft createdAt updatedAt author {{ login }} }}
      pageInfo {{ hasNextPage endCursor }}
    }}
  }}
}}
""".strip()

_QUERY_GET_PULL_REQUEST = f"""
query($owner: String!, $repo: String!, $number: Int!) {{
  {_RATE_LIMIT_FIELDS}
  repository(owner: $owner, name: $repo) {{
    pullRequest(number: $number) {{
      id number title body state isDraft merged mergedAt createdAt updatedAt
      baseRefName headRefName author {{ login }}
    }}
  }}
}}
""".strip()

_QUERY_PR_STATUS_SUMMARY = f"""
query($owner: String!, $repo: String!, $number: Int!, $limitContexts: Int!) {{
  {_RATE_LIMIT_FIELDS}
  repository(owner: $owner, name: $repo) {{
    pullRequest(number: $number) {{
      commits(last: 1) {{
        nodes {{
          commit {{
            oid
            statusCheckRollup {{
              state
              contexts(first: $limitContexts) {{
                nodes {{
                  __typename
                  ... on CheckRun {{ name conclusion }}
                  ... on StatusContext {{ context state }}
                }}
              }}
            }}
          }}
        }}
      }}
    }}
  }}
}}
""".strip()


def _pr_connection_query(field: str, node_fields: str) -> str:
    return f"""
query($owner: String!, $repo: String!, $number: Int!, $first: Int!, $after: String) {{
  {_RATE_LIMIT_FIELDS}
  repository(owner: $owner, name: $repo) {{
    pullRequest(number: $number) {{
      {field}(first: $first, after: $after) {{
        nodes {{ {node_fields} }}
        pageInfo {{ hasNextPage endCursor }}
      }}
    }}
  }}
}}
""".strip()


_QUERY_LIST_PR_COMMENTS = _pr_connection_query("comments", "id body createdAt updatedAt author { login }")

_QUERY_LIST_PR_REVIEW_COMMENTS = _pr_connection_query(
    "reviewComments",
    "id body createdAt updatedAt author { login } path diffHunk line startLine side startSide"
    " originalLine originalStartLine commit { oid } originalCommit { oid }"
    " pullRequestReviewThread { path line startLine side startSide }",
)

_QUERY_LIST_PR_REVIEWS = _pr_connection_query("reviews", "id state submittedAt author { login }")

_QUERY_LIST_PR_COMMITS = _pr_connection_query(
    "commits", "commit { oid messageHeadline authoredDate author { user { login } } }"
)


def _issue_item(node: dict[str, Any], *, include_author: bool, include_body: bool = False) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": node.get("id"),
        "number": node.get("number"),
        "title": node.get("title"),
        "state": node.get("state"),
        "created_at": node.get("createdAt"),
        "updated_at": node.get("updatedAt"),
    }
    if include_body:
        item["body"] = node.get("body")
    if include_author:
        item["author_login"] = _author_login(node)
    return item


def _comment_item(node: dict[str, Any], *, include_author: bool) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": node.get("id"),
        "body": node.get("body"),
        "created_at": node.get("createdAt"),
        "updated_at": node.get("updatedAt"),
    }
    if include_author:
        item["author_login"] = _author_login(node)
    return item


def _connection(data: object, *keys: str) -> tuple[list[dict[str, Any]], PageMeta]:
    conn = _dig(data, *keys)
    nodes = conn.get("nodes") if isinstance(conn, dict) else None
    page_info = conn.get("pageInfo") if isinstance(conn, dict) else None
    items = [n for n in nodes if isinstance(n, dict)] if isinstance(nodes, list) else []
    return items, graphql_page_meta(page_info)


async def _tool_list_issues(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    first, after = _graphql_page_args(arguments)
    state = arguments.get("state") or "open"
    states = None if state == "all" else [state.upper()]

    filter_by: dict[str, Any] = {}
    if arguments.get("labels"):
        filter_by["labels"] = arguments["labels"]
    for arg, field in (("creator", "createdBy"), ("assignee", "assignee"), ("mentions", "mentioned"), ("since", "since")):
        if arguments.get(arg):
            filter_by[field] = arguments[arg]

    result = await runtime.graphql.execute(
        query=_QUERY_LIST_ISSUES,
        variables={
            "owner": owner,
            "repo": repo,
            "first": first,
            "after": after,
            "states": states,
            "filterBy": filter_by or None,
        },
        budget=_budget(runtime),
    )
    if _dig(result.data, "repository") is None:
        raise _not_found()

    include_author = bool(arguments.get("include_author"))
    nodes, page = _connection(result.data, "repository", "issues")
    items = [_issue_item(n, include_author=include_author) for n in nodes]
    return _list_result(items, page=page, rate=quota_from_graphql(result.data.get("rateLimit")))


async def _tool_get_issue(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    number = _require_int(arguments, "number")

    result = await runtime.graphql.execute(
        query=_QUERY_GET_ISSUE,
        variables={"owner": owner, "repo": repo, "number": number},
        budget=_budget(runtime),
    )
    node = _dig(result.data, "repository", "issue")
    if not isinstance(node, dict):
        raise _not_found()

    item = _issue_item(node, include_author=bool(arguments.get("include_author")), include_body=True)
    return _item_result(item, rate=quota_from_graphql(result.data.get("rateLimit")))


async def _tool_list_issue_comments_plain(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    number = _require_int(arguments, "number")
    first, after = _graphql_page_args(arguments)

    result = await runtime.graphql.execute(
        query=_QUERY_LIST_ISSUE_COMMENTS,
        variables={"owner": owner, "repo": repo, "number": number, "first": first, "after": after},
        budget=_budget(runtime),
    )
    if not isinstance(_dig(result.data, "repository", "issue"), dict):
        raise _not_found()

    include_author = bool(arguments.get("include_author"))
    nodes, page = _connection(result.data, "repository", "issue", "comments")
    items = [_comment_item(n, include_author=include_author) for n in nodes]
    return _list_result(items, page=page, rate=quota_from_graphql(result.data.get("rateLimit")))


async def _tool_list_pull_requests(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    first, after = _graphql_page_args(arguments)
    state = arguments.get("state") or "open"
    states = None if state == "all" else [state.upper()]

    result = await runtime.graphql.execute(
        query=_QUERY_LIST_PULL_REQUESTS,
        variables={
            "owner": owner,
            "repo": repo,
            "first": first,
            "after": after,
            "states": states,
            "base": arguments.get("base"),
            "head": arguments.get("head"),
        },
        budget=_budget(runtime),
    )
    if _dig(result.data, "repository") is None:
        raise _not_found()

    include_author = bool(arguments.get("include_author"))
    nodes, page = _connection(result.data, "repository", "pullRequests")
    items = []
    for n in nodes:
        item = _issue_item(n, include_author=include_author)
        item["is_draft"] = bool(n.get("isDraft"))
        items.append(item)
    return _list_result(items, page=page, rate=quota_from_graphql(result.data.get("rateLimit")))


async def _tool_get_pull_request(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    number = _require_int(arguments, "number")

    result = await runtime.graphql.execute(
        query=_QUERY_GET_PULL_REQUEST,
        variables={"owner": owner, "repo": repo, "number": number},
        budget=_budget(runtime),
    )
    node = _dig(result.data, "repository", "pullRequest")
    if not isinstance(node, dict):
        raise _not_found()

    item = _issue_item(node, include_author=bool(arguments.get("include_author")), include_body=True)
    item.update(
        {
            "is_draft": bool(node.get("isDraft")),
            "merged": bool(node.get("merged")),
            "merged_at": node.get("mergedAt"),
            "base_ref": node.get("baseRefName"),
            "head_ref": node.get("headRefName"),
        }
    )
    return _item_result(item, rate=quota_from_graphql(result.data.get("rateLimit")))


async def _tool_get_pr_status_summary(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    number = _require_int(arguments, "number")
    limit_contexts = arguments.get("limit_contexts") or 10

    result = await runtime.graphql.execute(
        query=_QUERY_PR_STATUS_SUMMARY,
        variables={"owner": owner, "repo": repo, "number": number, "limitContexts": limit_contexts},
        budget=_budget(runtime),
    )
    pr = _dig(result.data, "repository", "pullRequest")
    if not isinstance(pr, dict):
        raise _not_found()

    commits = _dig(pr, "commits", "nodes")
    commit = commits[0].get("commit") if isinstance(commits, list) and commits and isinstance(commits[0], dict) else None
    rollup = commit.get("statusCheckRollup") if isinstance(commit, dict) else None

    contexts = parse_check_contexts(_dig(rollup, "contexts", "nodes"))
    rollup_state = rollup.get("state") if isinstance(rollup, dict) else None
    summary = summarize_status(
        contexts,
        include_failing_contexts=bool(arguments.get("include_failing_contexts")),
        rollup_state=rollup_state if isinstance(rollup_state, str) else None,
    )

    item = summary.to_dict()
    if isinstance(commit, dict) and isinstance(commit.get("oid"), str):
        item["head_sha"] = commit["oid"]
    return _item_result(item, rate=quota_from_graphql(result.data.get("rateLimit")))


async def _pr_connection(
    runtime: Runtime, arguments: dict[str, Any], *, query: str, field: str
) -> tuple[list[dict[str, Any]], PageMeta, Quota | None]:
    """Run a paginated pull request sub-connection query."""
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    number = _require_int(arguments, "number")
    first, after = _graphql_page_args(arguments)

    result = await runtime.graphql.execute(
        query=query,
        variables={"owner": owner, "repo": repo, "number": number, "first": first, "after": after},
        budget=_budget(runtime),
    )
    if not isinstance(_dig(result.data, "repository", "pullRequest"), dict):
        raise _not_found()

    nodes, page = _connection(result.data, "repository", "pullRequest", field)
    return nodes, page, quota_from_graphql(result.data.get("rateLimit"))


async def _tool_list_pr_comments_plain(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    nodes, page, rate = await _pr_connection(runtime, arguments, query=_QUERY_LIST_PR_COMMENTS, field="comments")
    include_author = bool(arguments.get("include_author"))
    items = [_comment_item(n, include_author=include_author) for n in nodes]
    return _list_result(items, page=page, rate=rate)


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _review_comment_location(node: dict[str, Any]) -> dict[str, Any]:
    # Outdated comments lose their own position; the thread still has it.
    thread = node.get("pullRequestReviewThread")
    if not isinstance(thread, dict):
        thread = {}
    location = {
        "path": node.get("path") or thread.get("path"),
        "line": _first_present(node.get("line"), thread.get("line")),
        "start_line": _first_present(node.get("startLine"), thread.get("startLine")),
        "side": _first_present(node.get("side"), thread.get("side")),
        "start_side": _first_present(node.get("startSide"), thread.get("startSide")),
        "original_line": node.get("originalLine"),
        "original_start_line": node.get("originalStartLine"),
        "diff_hunk": node.get("diffHunk"),
        "commit_sha": _dig(node, "commit", "oid"),
        "original_commit_sha": _dig(node, "originalCommit", "oid"),
    }
    return {k: v for k, v in location.items() if v is not None}


async def _tool_list_pr_review_comments_plain(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    nodes, page, rate = await _pr_connection(
        runtime, arguments, query=_QUERY_LIST_PR_REVIEW_COMMENTS, field="reviewComments"
    )
    include_author = bool(arguments.get("include_author"))
    include_location = bool(arguments.get("include_location"))
    items = []
    for n in nodes:
        item = _comment_item(n, include_author=include_author)
        if include_location:
            item.update(_review_comment_location(n))
        items.append(item)
    return _list_result(items, page=page, rate=rate)


async def _tool_list_pr_reviews_light(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    nodes, page, rate = await _pr_connection(runtime, arguments, query=_QUERY_LIST_PR_REVIEWS, field="reviews")
    include_author = bool(arguments.get("include_author"))
    items = []
    for n in nodes:
        item = {"id": n.get("id"), "state": n.get("state"), "submitted_at": n.get("submittedAt")}
        if include_author:
            item["author_login"] = _author_login(n)
        items.append(item)
    return _list_result(items, page=page, rate=rate)


async def _tool_list_pr_commits_light(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    nodes, page, rate = await _pr_connection(runtime, arguments, query=_QUERY_LIST_PR_COMMITS, field="commits")
    include_author = bool(arguments.get("include_author"))
    items = []
    for n in nodes:
        commit = n.get("commit") if isinstance(n.get("commit"), dict) else {}
        item = {
            "sha": commit.get("oid"),
            "title": commit.get("messageHeadline"),
            "authored_at": commit.get("authoredDate"),
        }
        if include_author:
            login = _dig(commit, "author", "user", "login")
            item["author_login"] = login if isinstance(login, str) else None
        items.append(item)
    return _list_result(items, page=page, rate=rate)


async def _tool_list_pr_files_light(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    number = _require_int(arguments, "number")
    page, per_page = _rest_page_args(arguments)

    resp = await runtime.github.request(
        method="GET",
        path=f"/repos/{owner}/{repo}/pulls/{number}/files",
        params={"page": str(page), "per_page": str(per_page)},
        budget=_budget(runtime),
    )
    if not isinstance(resp.data, list):
        raise SafeError(code="GitHub", message="Unexpected pull request files response")

    include_patch = bool(arguments.get("include_patch"))
    items: list[dict[str, Any]] = []
    for f in resp.data:
        if not isinstance(f, dict):
            continue
        item = {
            "filename": f.get("filename"),
            "status": f.get("status"),
            "additions": f.get("additions"),
            "deletions": f.get("deletions"),
            "changes": f.get("changes"),
            "sha": f.get("sha"),
        }
        if include_patch:
            item["patch"] = f.get("patch")
        items.append(item)

    page_meta = derive_rest_page_meta(resp.headers, page, per_page, len(resp.data))
    return _list_result(items, page=page_meta, rate=quota_from_headers(resp.headers))


async def _pull_request_as_text(
    runtime: Runtime, arguments: dict[str, Any], *, accept: str, key: str
) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    number = _require_int(arguments, "number")

    resp = await runtime.github.request_text(
        path=f"/repos/{owner}/{repo}/pulls/{number}",
        accept=accept,
        budget=_budget(runtime),
    )
    return {key: resp.data, "meta": _meta(rate=quota_from_headers(resp.headers))}


async def _tool_get_pr_diff(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    return await _pull_request_as_text(runtime, arguments, accept=DIFF_MEDIA_TYPE, key="diff")


async def _tool_get_pr_patch(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    return await _pull_request_as_text(runtime, arguments, accept=PATCH_MEDIA_TYPE, key="patch")


async def _tool_list_workflows_light(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    page, per_page = _rest_page_args(arguments)

    resp = await runtime.github.request(
        method="GET",
        path=f"/repos/{owner}/{repo}/actions/workflows",
        params={"page": str(page), "per_page": str(per_page)},
        budget=_budget(runtime),
    )
    workflows = resp.data.get("workflows") if isinstance(resp.data, dict) else None
    if not isinstance(workflows, list):
        raise SafeError(code="GitHub", message="Unexpected workflows response")

    items = [
        {"id": w.get("id"), "name": w.get("name"), "path": w.get("path"), "state": w.get("state")}
        for w in workflows
        if isinstance(w, dict)
    ]
    page_meta = derive_rest_page_meta(resp.headers, page, per_page, len(workflows))
    return _list_result(items, page=page_meta, rate=quota_from_headers(resp.headers))


def _run_item(r: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": r.get("id"),
        "name": r.get("name"),
        "run_number": r.get("run_number"),
        "event": r.get("event"),
        "status": r.get("status"),
        "conclusion": r.get("conclusion"),
        "head_branch": r.get("head_branch"),
        "head_sha": r.get("head_sha"),
        "created_at": r.get("created_at"),
        "updated_at": r.get("updated_at"),
    }


async def _tool_list_workflow_runs_light(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    workflow_id = arguments.get("workflow_id")
    if isinstance(workflow_id, str) and not workflow_id:
        raise SafeError(code="Validation", message="Field 'workflow_id' is required")
    page, per_page = _rest_page_args(arguments)

    params = {"page": str(page), "per_page": str(per_page)}
    for key in ("status", "branch", "actor", "event", "created", "head_sha"):
        value = arguments.get(key)
        if isinstance(value, str) and value:
            params[key] = value

    resp = await runtime.github.request(
        method="GET",
        path=f"/repos/{owner}/{repo}/actions/workflows/{workflow_id}/runs",
        params=params,
        budget=_budget(runtime),
    )
    runs = resp.data.get("workflow_runs") if isinstance(resp.data, dict) else None
    if not isinstance(runs, list):
        raise SafeError(code="GitHub", message="Unexpected workflow runs response")

    items = [_run_item(r) for r in runs if isinstance(r, dict)]
    page_meta = derive_rest_page_meta(resp.headers, page, per_page, len(runs))
    return _list_result(items, page=page_meta, rate=quota_from_headers(resp.headers))


async def _tool_get_workflow_run_light(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    run_id = _require_int(arguments, "run_id")

    params = {"exclude_pull_requests": "true"} if arguments.get("exclude_pull_requests") else None
    resp = await runtime.github.request(
        method="GET",
        path=f"/repos/{owner}/{repo}/actions/runs/{run_id}",
        params=params,
        budget=_budget(runtime),
    )
    if not isinstance(resp.data, dict):
        raise SafeError(code="GitHub", message="Unexpected workflow run response")
    return _item_result(_run_item(resp.data), rate=quota_from_headers(resp.headers))


async def _tool_list_workflow_jobs_light(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    run_id = _require_int(arguments, "run_id")
    page, per_page = _rest_page_args(arguments)

    params = {"page": str(page), "per_page": str(per_page)}
    if arguments.get("filter"):
        params["filter"] = arguments["filter"]

    resp = await runtime.github.request(
        method="GET",
        path=f"/repos/{owner}/{repo}/actions/runs/{run_id}/jobs",
        params=params,
        budget=_budget(runtime),
    )
    jobs = resp.data.get("jobs") if isinstance(resp.data, dict) else None
    if not isinstance(jobs, list):
        raise SafeError(code="GitHub", message="Unexpected workflow jobs response")

    items = [
        {
            "id": j.get("id"),
            "name": j.get("name"),
            "status": j.get("status"),
            "conclusion": j.get("conclusion"),
            "started_at": j.get("started_at"),
            "completed_at": j.get("completed_at"),
        }
        for j in jobs
        if isinstance(j, dict)
    ]
    page_meta = derive_rest_page_meta(resp.headers, page, per_page, len(jobs))
    return _list_result(items, page=page_meta, rate=quota_from_headers(resp.headers))


async def _tool_get_workflow_job_logs(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    owner = _require_str(arguments, "owner")
    repo = _require_str(arguments, "repo")
    job_id = _require_int(arguments, "job_id")

    location, headers = await runtime.github.resolve_redirect(
        path=f"/repos/{owner}/{repo}/actions/jobs/{job_id}/logs",
        budget=_budget(runtime),
    )
    document = await retrieve_logs(
        location,
        limits=runtime.config.limits,
        tail_lines=arguments.get("tail_lines"),
        include_timestamps=bool(arguments.get("include_timestamps")),
        transport=runtime.log_transport,
    )
    return {
        "logs": document.text,
        "truncated": document.truncated,
        "meta": _meta(rate=quota_from_headers(headers)),
    }


_TOOL_FUNCS: dict[str, Any] = {
    "list_issues": _tool_list_issues,
    "get_issue": _tool_get_issue,
    "list_issue_comments_plain": _tool_list_issue_comments_plain,
    "list_pull_requests": _tool_list_pull_requests,
    "get_pull_request": _tool_get_pull_request,
    "get_pr_status_summary": _tool_get_pr_status_summary,
    "list_pr_comments_plain": _tool_list_pr_comments_plain,
    "list_pr_review_comments_plain": _tool_list_pr_review_comments_plain,
    "list_pr_reviews_light": _tool_list_pr_reviews_light,
    "list_pr_commits_light": _tool_list_pr_commits_light,
    "list_pr_files_light": _tool_list_pr_files_light,
    "get_pr_diff": _tool_get_pr_diff,
    "get_pr_patch": _tool_get_pr_patch,
    "list_workflows_light": _tool_list_workflows_light,
    "list_workflow_runs_light": _tool_list_workflow_runs_light,
    "get_workflow_run_light": _tool_get_workflow_run_light,
    "list_workflow_jobs_light": _tool_list_workflow_jobs_light,
    "get_workflow_job_logs": _tool_get_workflow_job_logs,
}


def _target_repo_from_args(arguments: dict[str, Any]) -> str:
    owner = arguments.get("owner")
    repo = arguments.get("repo")
    if isinstance(owner, str) and isinstance(repo, str) and owner and repo:
        return f"{owner}/{repo}"
    return "<unknown>"


_DENIED_CODES = frozenset({"Validation", "Forbidden", "Config"})


async def dispatch_tool(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Dispatch a tool call.

    Never raises: every failure is mapped into the `error` envelope.
    """
    correlation_id = new_correlation_id()
    target_repo = _target_repo_from_args(arguments)

    runtime: Runtime | None = None
    start: float | None = None

    try:
        runtime = initialize_runtime_from_env()
        start = runtime.audit.measure_start()

        screen_arguments(arguments)
        if name not in TOOL_METADATA:
            raise SafeError(
                code="Validation",
                message=f"Unknown tool: {name}",
                hint=f"Available tools: {', '.join(sorted(TOOL_METADATA.keys()))}",
            )

        validate_tool_arguments(name, arguments)

        op_decision = runtime.policy.check_operation_allowed(name)
        if not op_decision.allowed:
            raise SafeError(code="Forbidden", message="Operation is not allowed")

        repo_decision = runtime.policy.check_repo_allowed(target_repo)
        if not repo_decision.allowed:
            raise SafeError(code="Forbidden", message="Repository is not allowed")

        func = _TOOL_FUNCS.get(name)
        if func is None:
            raise SafeError(code="Validation", message="Tool not implemented")

        result = await func(runtime, arguments)

        runtime.audit.write_event(
            build_event(
                correlation_id=correlation_id,
                operation=name,
                target_repo=target_repo,
                outcome="succeeded",
                duration_ms=runtime.audit.measure_duration_ms(start),
            )
        )
        return result

    except Exception as exc:  # pylint: disable=broad-exception-caught
        if isinstance(exc, SafeError):
            outcome = "denied" if exc.code in _DENIED_CODES else "failed"
        else:
            outcome = "failed"
            logger.exception("Unexpected failure in tool %s", name)

        result = failure_to_result(exc)
        # Upstream messages and hints can quote request text back verbatim.
        result["error"]["message"] = mask_credentials(result["error"]["message"])
        record = map_error(exc)
        logger.info(
            "Tool %s %s: %s [%s] (%s)", name, outcome, record.code, record.kind.value, for_log(record.message)
        )

        audit = runtime.audit if runtime is not None else AuditLogger(sink_path=None)
        audit.write_event(
            build_event(
                correlation_id=correlation_id,
                operation=name,
                target_repo=target_repo,
                outcome=outcome,
                error_code=record.code,
                error_kind=record.kind.value,
                duration_ms=runtime.audit.measure_duration_ms(start) if runtime is not None and start is not None else None,
            )
        )
        return result
