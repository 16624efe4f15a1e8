#!/usr/bin/env python3
"""
Unified configuration loader for camrelay.

Load order (first found wins):
  1) CAMRELAY_CONFIG (env, absolute or relative to CWD)
  2) /etc/camrelay/config.yaml
  3) <project_root>/config.yaml (derived from this file's location)
  4) <script_dir>/config.yaml (directory of the running script)
  5) ./config.yaml (current working directory)

Environment variables override file values when present.
"""
from __future__ import annotations

import copy
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Tuple

import yaml

_DEFAULTS: Dict[str, Any] = {
    "recorder": {
        "source_url": "",
        "alg_url": "",
        "target_url": "",
        "ffmpeg_path": "ffmpeg",
        "lock_file": "pull.lock",
        "stop_timeout_sec": 3.0,
    },
    "archive": {
        "save_path": "live",
        "cache_capacity": 100,
        "cache_ttl_hours": 12.0,
        "slow_file_warn_sec": 10.0,
        "query_timezone": "Asia/Shanghai",
        "filename_timezone": "local",
    },
    "upload": {
        "url": "",
        "field_name": "uploadfile",
        "timeout_sec": 60.0,
    },
    "web_server": {
        "listen_host": "0.0.0.0",
        "listen_port": 8080,
    },
    "logging": {
        "dev_mode": False,  # if True or ENV DEV=1, enable verbose debug
        "level": "INFO",
    },
}

_cfg_cache: Dict[str, Any] | None = None
_search_paths: list[Path] = []
_active_config_path: Path | None = None

_log = logging.getLogger("camrelay.config")


def _load_yaml_if_exists(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        _log.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}
    if isinstance(data, dict):
        return data
    return {}


def _candidate_search_paths(project_root: Path, script_dir: Path) -> list[Path]:
    search: list[Path] = []
    env_cfg = os.getenv("CAMRELAY_CONFIG")
    if env_cfg:
        search.append(Path(env_cfg).expanduser())
    search.extend(
        [
            Path("/etc/camrelay/config.yaml"),
            project_root / "config.yaml",
            script_dir / "config.yaml",
            Path.cwd() / "config.yaml",
        ]
    )
    seen: set[Path] = set()
    ordered: list[Path] = []
    for candidate in search:
        try:
            resolved = candidate.resolve()
        except OSError:
            resolved = candidate
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    # DEV mode
    if os.getenv("DEV") == "1":
        cfg.setdefault("logging", {})["dev_mode"] = True

    env_map: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
        "SAVE_PATH": ("archive", "save_path", str),
        "SOURCE_URL": ("recorder", "source_url", str),
        "ALG_URL": ("recorder", "alg_url", str),
        "TARGET_URL": ("recorder", "target_url", str),
        "FFMPEG_PATH": ("recorder", "ffmpeg_path", str),
        "UPLOAD_URL": ("upload", "url", str),
        "LISTEN_HOST": ("web_server", "listen_host", str),
        "LISTEN_PORT": ("web_server", "listen_port", int),
        "LOG_LEVEL": ("logging", "level", lambda s: s.strip().upper()),
        "QUERY_TZ": ("archive", "query_timezone", str),
        "CACHE_CAPACITY": ("archive", "cache_capacity", int),
        "CACHE_TTL_HOURS": ("archive", "cache_ttl_hours", float),
    }
    for env_key, (section, key, cast) in env_map.items():
        if env_key not in os.environ:
            continue
        raw = os.environ[env_key].strip()
        if not raw:
            continue
        try:
            cfg.setdefault(section, {})[key] = cast(raw)
        except ValueError:
            _log.warning("Ignoring invalid %s=%r", env_key, raw)


def get_cfg() -> Dict[str, Any]:
    global _cfg_cache, _search_paths, _active_config_path
    if _cfg_cache is not None:
        return _cfg_cache

    cfg = copy.deepcopy(_DEFAULTS)

    # <root>/camrelay -> <root>
    project_root = Path(__file__).resolve().parent.parent
    try:
        script_dir = Path(sys.argv[0]).resolve().parent
    except (OSError, IndexError):
        script_dir = Path.cwd()

    search = _candidate_search_paths(project_root, script_dir)
    _search_paths = list(search)

    active: Path | None = None
    for candidate in search:
        try:
            if candidate.exists():
                active = candidate
                break
        except OSError:
            pass

    for candidate in reversed(search):
        cfg = _deep_merge(cfg, _load_yaml_if_exists(candidate))

    _active_config_path = active
    _apply_env_overrides(cfg)
    _cfg_cache = cfg
    return cfg


def reload_cfg() -> Dict[str, Any]:
    global _cfg_cache
    _cfg_cache = None
    return get_cfg()


def active_config_path() -> Path | None:
    if _cfg_cache is None:
        get_cfg()
    return _active_config_path


def search_paths() -> list[Path]:
    if not _search_paths:
        get_cfg()
    return list(_search_paths)


def log_level(cfg: Dict[str, Any]) -> int:
    """Resolve the logging level, honouring ``logging.dev_mode``."""
    section = cfg.get("logging", {})
    if section.get("dev_mode"):
        return logging.DEBUG
    name = str(section.get("level") or "INFO").upper()
    return getattr(logging, name, logging.INFO)
