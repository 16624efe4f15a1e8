"""Upload a stored segment to the configured HTTP endpoint."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import aiohttp

__all__ = ["UploadError", "UploadResult", "resolve_upload_path", "upload_file"]

_log = logging.getLogger("camrelay.upload")


class UploadError(Exception):
    """Raised when a segment cannot be uploaded."""


@dataclass(frozen=True)
class UploadResult:
    status: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def resolve_upload_path(save_path: str | Path, relative: str) -> Path:
    """Join ``relative`` under ``save_path``, refusing paths that escape it."""

    cleaned = (relative or "").strip().replace("\\", "/")
    if not cleaned:
        raise UploadError("no file given")
    root = Path(save_path).resolve()
    candidate = (root / cleaned.lstrip("/")).resolve()
    try:
        candidate.relative_to(root)
    except ValueError as exc:
        raise UploadError(f"path escapes save directory: {relative}") from exc
    if not candidate.is_file():
        raise UploadError(f"file not found: {relative}")
    return candidate


async def upload_file(
    relative: str,
    *,
    save_path: str | Path,
    upload_url: str,
    field_name: str = "uploadfile",
    timeout: float = 60.0,
    session: aiohttp.ClientSession | None = None,
) -> UploadResult:
    """POST the segment as a multipart form field and return the response."""

    if not upload_url:
        raise UploadError("upload url is not configured")
    path = resolve_upload_path(save_path, relative)

    owns_session = session is None
    if session is None:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))
    try:
        with path.open("rb") as handle:
            form = aiohttp.FormData()
            form.add_field(
                field_name,
                handle,
                filename=path.name,
                content_type="application/octet-stream",
            )
            async with session.post(upload_url, data=form) as resp:
                body = await resp.text()
                status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
        raise UploadError(f"upload of {relative} failed: {exc}") from exc
    finally:
        if owns_session:
            await session.close()

    _log.info("uploaded %s -> %s (%s)", path, upload_url, status)
    return UploadResult(status=status, body=body)
