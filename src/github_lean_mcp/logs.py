"""CI log retrieval.

GitHub answers a logs request with a redirect to a short-lived signed URL
serving a ZIP archive. The caller resolves the redirect; this module downloads
the archive, concatenates its `.txt` members in archive order and applies the
optional tail window and timestamp annotation.
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from .config import LimitsConfig
from .errors import SafeError
from .redaction import mask_credentials

logger = logging.getLogger(__name__)

TEXT_MEMBER_SUFFIXES: tuple[str, ...] = (".txt",)

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True, slots=True)
class LogDocument:
    text: str
    truncated: bool = False


async def download_log_archive(
    url: str,
    *,
    limits: LimitsConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bytes:
    """GET the signed archive URL.

    No GitHub credentials are sent: the URL is pre-signed and usually points at
    blob storage outside api.github.com. The body is streamed and the download
    is abandoned as soon as it exceeds `limits.log_archive_max_bytes`.
    """
    timeout = httpx.Timeout(
        timeout=limits.total_timeout_s,
        connect=limits.connect_timeout_s,
        read=limits.read_timeout_s,
    )
    max_bytes = limits.log_archive_max_bytes
    try:
        async with httpx.AsyncClient(follow_redirects=True, timeout=timeout, transport=transport) as client:
            async with client.stream("GET", url) as resp:
                if not resp.is_success:
                    raise SafeError(
                        code="GitHub",
                        message=f"Failed to download logs: HTTP {resp.status_code}",
                        status_code=resp.status_code,
                    )

                declared = _content_length(resp.headers)
                if declared is not None and declared > max_bytes:
                    raise _archive_too_large(max_bytes)

                buf = bytearray()
                async for chunk in resp.aiter_bytes():
                    buf.extend(chunk)
                    if len(buf) > max_bytes:
                        raise _archive_too_large(max_bytes)
    except httpx.HTTPError as exc:
        raise SafeError(code="Network", message="Failed to download logs") from exc

    return bytes(buf)


def _content_length(headers: httpx.Headers) -> int | None:
    value = headers.get("content-length")
    if value is None or not value.strip().isdigit():
        return None
    return int(value.strip())


def _archive_too_large(max_bytes: int) -> SafeError:
    return SafeError(
        code="TooLarge",
        message="Log archive exceeds size limit",
        hint=f"Limit is {max_bytes} bytes; request a smaller job or raise the limit",
    )


def extract_text_members(archive: bytes) -> list[str]:
    """Decode every plain-text member of a ZIP archive, in archive order."""
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            parts: list[str] = []
            for info in zf.infolist():
                if info.is_dir() or not info.filename.endswith(TEXT_MEMBER_SUFFIXES):
                    continue
                parts.append(zf.read(info).decode("utf-8", errors="replace"))
            return parts
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, zlib.error, NotImplementedError, RuntimeError) as exc:
        # Corrupt member data, unsupported compression and encrypted members all land here.
        raise SafeError(code="Parse", message="Log archive could not be opened") from exc


def split_lines(text: str) -> list[str]:
    return _LINE_BREAK_RE.split(text)


def tail_text(text: str, tail_lines: int | None) -> LogDocument:
    """Keep the last `tail_lines` lines; `truncated` is True iff lines were dropped."""
    if not tail_lines or tail_lines <= 0:
        return LogDocument(text=text, truncated=False)
    lines = split_lines(text)
    truncated = len(lines) > tail_lines
    return LogDocument(text="\n".join(lines[-tail_lines:]), truncated=truncated)


def add_timestamps(text: str, *, now: datetime | None = None) -> str:
    """Prefix every line with one wall-clock instant (the same instant for all lines)."""
    instant = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stamp = instant.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return "\n".join(f"{stamp} {line}" for line in split_lines(text))


def assemble_log_document(
    archive: bytes,
    *,
    tail_lines: int | None = None,
    include_timestamps: bool = False,
    now: datetime | None = None,
) -> LogDocument:
    parts = extract_text_members(archive)
    document = tail_text(mask_credentials("\n".join(parts)), tail_lines)
    if include_timestamps:
        document = LogDocument(text=add_timestamps(document.text, now=now), truncated=document.truncated)
    return document


async def retrieve_logs(
    url: str,
    *,
    limits: LimitsConfig,
    tail_lines: int | None = None,
    include_timestamps: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LogDocument:
    """Download, extract and shape the log document behind a signed archive URL."""
    archive = await download_log_archive(url, limits=limits, transport=transport)
    document = assemble_log_document(archive, tail_lines=tail_lines, include_timestamps=include_timestamps)
    logger.debug("Assembled log document (%s bytes archive, truncated=%s)", len(archive), document.truncated)
    return document
