"""Pagination metadata for REST and GraphQL responses.

Cursors are opaque strings at the tool boundary. Two kinds coexist:

- GraphQL `endCursor` values, passed through verbatim and never interpreted
- locally synthesized `page:<N>` cursors encoding a REST page number

A cursor is only meaningful to the tool that produced it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlparse

_PAGE_CURSOR_RE = re.compile(r"^page:(\d+)$")
_LINK_ENTRY_RE = re.compile(r"<([^>]*)>\s*((?:;[^,<]*)*)")
_REL_NEXT_RE = re.compile(r"""\brel\s*=\s*"?([^";]*)"?""")


@dataclass(frozen=True, slots=True)
class PageMeta:
    """Continuation metadata for a list response."""

    next_cursor: str | None = None
    has_more: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"next_cursor": self.next_cursor, "has_more": self.has_more}


NO_MORE_PAGES = PageMeta()


def encode_cursor_page(page: int) -> str:
    """Encode a REST page number as a cursor."""
    return f"page:{page}"


def decode_cursor_page(cursor: str | None) -> int | None:
    """Decode a `page:<N>` cursor; anything else is not a REST page."""
    if not isinstance(cursor, str) or not cursor:
        return None
    match = _PAGE_CURSOR_RE.match(cursor)
    if match is None:
        return None
    return int(match.group(1))


def _link_header(headers: Mapping[str, Any]) -> str | None:
    value = headers.get("link")
    if value is None:
        value = headers.get("Link")
    if value is None:
        for key, candidate in headers.items():
            if isinstance(key, str) and key.lower() == "link":
                value = candidate
                break
    if isinstance(value, str):
        return value
    return None


def _next_link_target(link: str) -> str | None:
    """Return the URL of the rel="next" entry, or None when there is none.

    Entries are matched as `<url>; params` so commas inside a URL do not split it.
    """
    for entry in _LINK_ENTRY_RE.finditer(link):
        rel = _REL_NEXT_RE.search(entry.group(2))
        if rel is not None and "next" in rel.group(1).split():
            return entry.group(1)
    return None


def _page_param(url: str) -> int | None:
    values = parse_qs(urlparse(url).query).get("page")
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


def derive_rest_page_meta(
    headers: Mapping[str, Any] | None,
    page: int | None = None,
    per_page: int | None = None,
    item_count: int | None = None,
) -> PageMeta:
    """Derive continuation for a REST list response.

    A Link header is authoritative. Without one, a full page (`item_count >= per_page`)
    is taken to mean another page exists; an exact multiple of `per_page` therefore
    reports one extra, empty page.
    """
    current = page if isinstance(page, int) and page >= 1 else 1

    link = _link_header(headers) if headers else None
    if link is not None:
        target = _next_link_target(link)
        if target is None:
            return NO_MORE_PAGES
        next_page = _page_param(target) if target else None
        if next_page is None:
            next_page = current + 1
        return PageMeta(next_cursor=encode_cursor_page(next_page), has_more=True)

    if per_page and item_count is not None and item_count >= per_page:
        return PageMeta(next_cursor=encode_cursor_page(current + 1), has_more=True)
    return NO_MORE_PAGES


def graphql_page_meta(page_info: Mapping[str, Any] | None) -> PageMeta:
    """Pass GraphQL `pageInfo` through as PageMeta (no cursor without a next page)."""
    if not isinstance(page_info, Mapping):
        return NO_MORE_PAGES
    has_more = bool(page_info.get("hasNextPage"))
    end_cursor = page_info.get("endCursor")
    if not has_more or not isinstance(end_cursor, str) or not end_cursor:
        end_cursor = None
    return PageMeta(next_cursor=end_cursor, has_more=has_more)
