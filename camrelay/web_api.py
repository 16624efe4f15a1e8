#!/usr/bin/env python3
"""
aiohttp command server for camrelay.

Endpoints:
  POST /api/command        -> Dispatch a JSON command ({"command": "start"|"stop"|
                              "switch"|"record"|"upload", ...})
  GET  /api/records        -> Segments captured inside ?begin=...&end=...
                              ("YYYY-MM-DD HH:MM:SS", query time zone)
  GET  /api/recorder       -> Recorder status (running, pid, selected source)
  GET  /api/cache          -> Segment cache statistics
  GET  /healthz            -> "ok"

The recorder is stopped when the application shuts down.
"""

from __future__ import annotations

import argparse
import asyncio
import functools
import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from aiohttp import web
from aiohttp.web import AppKey

from .archive_index import ArchiveIndexer, ArchiveWalkError
from .commands import CommandDispatcher, CommandError, decode_message
from .config import get_cfg, log_level, reload_cfg
from .recorder import RecorderController, RecorderProcess
from .segment_cache import SegmentCache
from .uploader import upload_file

__all__ = ["DISPATCHER_KEY", "build_app", "build_dispatcher", "cli_main", "resolve_timezone"]

DISPATCHER_KEY: AppKey[CommandDispatcher] = web.AppKey("dispatcher", CommandDispatcher)
CACHE_KEY: AppKey[SegmentCache] = web.AppKey("segment_cache", SegmentCache)

_log = logging.getLogger("camrelay.web_api")


def resolve_timezone(name: str | None) -> tzinfo | None:
    """Return the named zone, or None for the local zone."""

    cleaned = (name or "").strip()
    if not cleaned or cleaned.lower() == "local":
        return None
    try:
        return ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError):
        _log.warning("Unknown time zone %r; using local time", cleaned)
        return None


def _local_zone() -> tzinfo:
    return datetime.now().astimezone().tzinfo or timezone.utc


def build_dispatcher(cfg: Mapping[str, Any]) -> CommandDispatcher:
    recorder_cfg = cfg.get("recorder", {})
    archive_cfg = cfg.get("archive", {})
    upload_cfg = cfg.get("upload", {})

    ttl = timedelta(hours=float(archive_cfg.get("cache_ttl_hours", 12.0)))
    cache = SegmentCache(int(archive_cfg.get("cache_capacity", 100)), ttl)
    indexer = ArchiveIndexer(
        cache,
        tz=resolve_timezone(archive_cfg.get("filename_timezone")),
        slow_file_seconds=float(archive_cfg.get("slow_file_warn_sec", 10.0)),
    )
    process = RecorderProcess(
        str(recorder_cfg.get("target_url") or ""),
        ffmpeg_path=str(recorder_cfg.get("ffmpeg_path") or "ffmpeg"),
        lock_file=str(recorder_cfg.get("lock_file") or "pull.lock"),
        stop_timeout=float(recorder_cfg.get("stop_timeout_sec", 3.0)),
    )
    controller = RecorderController(
        process,
        str(recorder_cfg.get("source_url") or ""),
        str(recorder_cfg.get("alg_url") or ""),
    )
    save_path = str(archive_cfg.get("save_path") or "live")
    uploader = functools.partial(
        upload_file,
        save_path=save_path,
        upload_url=str(upload_cfg.get("url") or ""),
        field_name=str(upload_cfg.get("field_name") or "uploadfile"),
        timeout=float(upload_cfg.get("timeout_sec", 60.0)),
    )
    query_tz = resolve_timezone(archive_cfg.get("query_timezone")) or _local_zone()
    return CommandDispatcher(
        controller=controller,
        indexer=indexer,
        save_path=save_path,
        query_tz=query_tz,
        uploader=uploader,
    )


def _status_for(reply: Mapping[str, Any]) -> int:
    if reply.get("ok"):
        return 200
    if reply.get("error_kind") == "query_failed":
        return 500
    if reply.get("command") == "upload" and "status" in reply:
        return 502
    return 400


def build_app(
    cfg: Mapping[str, Any] | None = None,
    *,
    dispatcher: CommandDispatcher | None = None,
) -> web.Application:
    if dispatcher is None:
        dispatcher = build_dispatcher(cfg if cfg is not None else get_cfg())

    app = web.Application()
    app[DISPATCHER_KEY] = dispatcher
    app[CACHE_KEY] = dispatcher.indexer.cache

    async def command(request: web.Request) -> web.Response:
        raw = await request.read()
        try:
            message = decode_message(raw)
        except CommandError as exc:
            return web.json_response({"ok": False, "error": str(exc)}, status=400)
        reply = await request.app[DISPATCHER_KEY].handle(message)
        return web.json_response(reply, status=_status_for(reply))

    async def records(request: web.Request) -> web.Response:
        active = request.app[DISPATCHER_KEY]
        begin = request.query.get("begin")
        end = request.query.get("end")
        try:
            files = await _run_blocking(active.query_records, begin, end)
        except CommandError as exc:
            return web.json_response({"ok": False, "error": str(exc)}, status=400)
        except ArchiveWalkError as exc:
            _log.error("record query failed: %s", exc)
            return web.json_response(
                {"ok": False, "error": f"failed to list files: {exc}"}, status=500
            )
        return web.json_response({"ok": True, "files": files, "total": len(files)})

    async def recorder_status(request: web.Request) -> web.Response:
        active = request.app[DISPATCHER_KEY]
        payload = await _run_blocking(active.controller.status)
        return web.json_response(payload)

    async def cache_stats(request: web.Request) -> web.Response:
        return web.json_response(request.app[CACHE_KEY].stats())

    async def healthz(_: web.Request) -> web.Response:
        return web.Response(text="ok")

    async def _stop_recorder(app_: web.Application) -> None:
        await _run_blocking(app_[DISPATCHER_KEY].controller.stop)

    app.router.add_post("/api/command", command)
    app.router.add_get("/api/records", records)
    app.router.add_get("/api/recorder", recorder_status)
    app.router.add_get("/api/cache", cache_stats)
    app.router.add_get("/healthz", healthz)
    app.on_shutdown.append(_stop_recorder)
    return app


async def _run_blocking(func, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


def cli_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="camrelay command server.")
    parser.add_argument("--host", help="Override bind host (defaults to config).")
    parser.add_argument("--port", type=int, help="Override bind port (defaults to config).")
    parser.add_argument("--log-level", help="Python logging level (defaults to config).")
    args = parser.parse_args(argv)

    cfg = reload_cfg()
    level = log_level(cfg)
    if args.log_level:
        level = getattr(logging, args.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    server_cfg = cfg.get("web_server", {})
    bind_host = args.host or str(server_cfg.get("listen_host") or "0.0.0.0")
    bind_port = args.port or int(server_cfg.get("listen_port") or 8080)
    _log.info("Starting camrelay on %s:%s", bind_host, bind_port)
    web.run_app(build_app(cfg), host=bind_host, port=bind_port, access_log=None, print=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(cli_main())
