"""Command dispatch for the relay controller.

Commands arrive as JSON objects::

    {"command": "start"}
    {"command": "stop"}
    {"command": "switch", "enabled": false}
    {"command": "record", "begin": "2021-10-11 00:00:00", "end": "2021-10-11 23:59:59"}
    {"command": "upload", "file": "hw/2021-10-09/15-38-05.mp4"}

Every reply carries ``ok``. A ``record`` query that matched nothing replies
``{"ok": true, "files": []}``; a query that could not run replies
``{"ok": false, "error": ...}``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

from .archive_index import ArchiveIndexer, ArchiveWalkError
from .recorder import RecorderController
from .uploader import UploadError, UploadResult

__all__ = [
    "QUERY_TIME_FORMAT",
    "CommandDispatcher",
    "CommandError",
    "decode_message",
    "parse_query_time",
]

QUERY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

Uploader = Callable[[str], Awaitable[UploadResult]]


class CommandError(Exception):
    """Raised for malformed or unsupported commands."""


def parse_query_time(text: Any, tz: tzinfo) -> datetime:
    if not isinstance(text, str) or not text.strip():
        raise CommandError("missing timestamp")
    try:
        naive = datetime.strptime(text.strip(), QUERY_TIME_FORMAT)
    except ValueError as exc:
        raise CommandError(f"invalid timestamp {text!r}: expected YYYY-MM-DD HH:MM:SS") from exc
    return naive.replace(tzinfo=tz)


def decode_message(raw: str | bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise CommandError(f"message is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise CommandError("message must be a JSON object")
    return payload


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


class CommandDispatcher:
    def __init__(
        self,
        *,
        controller: RecorderController,
        indexer: ArchiveIndexer,
        save_path: str | Path,
        query_tz: tzinfo,
        uploader: Uploader | None = None,
    ) -> None:
        self.controller = controller
        self.indexer = indexer
        self.save_path = save_path
        self.query_tz = query_tz
        self.uploader = uploader
        self._log = logging.getLogger("camrelay.commands")

    def query_records(self, begin_text: Any, end_text: Any) -> list[dict[str, object]]:
        """Run a ``record`` query; blocking, raises CommandError or ArchiveWalkError."""

        begin = parse_query_time(begin_text, self.query_tz)
        end = parse_query_time(end_text, self.query_tz)
        files = self.indexer.query(self.save_path, begin, end)
        return [item.to_dict() for item in files]

    def handle_sync(self, message: Mapping[str, Any]) -> dict[str, Any]:
        """Handle every command except ``upload``. Blocking."""

        command = str(message.get("command") or "")
        self._log.info("recv command %r", command)
        if command == "start":
            started = self.controller.start()
            return {"ok": started, "command": command, "recorder": self.controller.status()}
        if command == "stop":
            self.controller.stop()
            return {"ok": True, "command": command, "recorder": self.controller.status()}
        if command == "switch":
            started = self.controller.switch(_as_bool(message.get("enabled")))
            return {"ok": started, "command": command, "recorder": self.controller.status()}
        if command == "record":
            try:
                files = self.query_records(message.get("begin"), message.get("end"))
            except CommandError as exc:
                return {"ok": False, "command": command, "error": str(exc)}
            except ArchiveWalkError as exc:
                self._log.error("record query failed: %s", exc)
                return {
                    "ok": False,
                    "command": command,
                    "error": f"failed to list files: {exc}",
                    "error_kind": "query_failed",
                }
            return {"ok": True, "command": command, "files": files}
        self._log.warning("command error %r", command)
        return {"ok": False, "command": command, "error": f"unknown command: {command!r}"}

    async def handle(self, message: Mapping[str, Any]) -> dict[str, Any]:
        command = str(message.get("command") or "")
        if command != "upload":
            # Recorder control and archive walks block; keep them off the loop.
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self.handle_sync, message)

        self._log.info("recv command %r", command)
        if self.uploader is None:
            return {"ok": False, "command": command, "error": "upload is not configured"}
        relative = message.get("file")
        if not isinstance(relative, str):
            return {"ok": False, "command": command, "error": "missing file"}
        try:
            result = await self.uploader(relative)
        except UploadError as exc:
            self._log.warning("upload failed: %s", exc)
            return {"ok": False, "command": command, "error": str(exc)}
        return {
            "ok": result.ok,
            "command": command,
            "file": relative,
            "status": result.status,
            "body": result.body,
        }
