#!/usr/bin/env python3
"""
Recorder process control.

- RecorderProcess owns one ffmpeg relay: pull an RTSP source, copy video,
  transcode audio to AAC and push FLV to the streaming server.
- A PID lock file marks a running relay so a second start is refused and a
  later process can still stop it.
- RecorderController keeps the currently selected source (camera or
  algorithm output) and restarts the relay when it is switched.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
from pathlib import Path
from typing import Callable, Optional

__all__ = ["DEFAULT_LOCK_FILE", "RecorderController", "RecorderProcess"]

DEFAULT_LOCK_FILE = "pull.lock"


class RecorderProcess:
    def __init__(
        self,
        target_url: str,
        *,
        ffmpeg_path: str = "ffmpeg",
        lock_file: str | os.PathLike[str] = DEFAULT_LOCK_FILE,
        stop_timeout: float = 3.0,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self.target_url = target_url
        self.ffmpeg_path = ffmpeg_path
        self.lock_file = Path(lock_file)
        self.stop_timeout = float(stop_timeout)
        self._popen = popen
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._url: str | None = None
        self._log = logging.getLogger("camrelay.recorder")

    def build_command(self, url: str) -> list[str]:
        return [
            self.ffmpeg_path,
            "-rtsp_transport", "tcp",
            "-i", url,
            "-vcodec", "copy",
            "-acodec", "aac",
            "-ar", "44100",
            "-f", "flv",
            self.target_url,
        ]

    @property
    def running(self) -> bool:
        with self._lock:
            proc = self._proc
        return proc is not None and proc.poll() is None

    @property
    def pid(self) -> int | None:
        with self._lock:
            proc = self._proc
        if proc is not None and proc.poll() is None:
            return proc.pid
        return self._read_lock_pid()

    def status(self) -> dict[str, object]:
        with self._lock:
            url = self._url
        return {
            "running": self.running,
            "pid": self.pid,
            "url": url,
            "lock_file": str(self.lock_file),
            "locked": self.lock_file.exists(),
        }

    def start(self, url: str) -> bool:
        """Start relaying ``url``; returns False when nothing was started."""

        self.stop()

        if not url:
            self._log.warning("url is empty; recorder not started")
            return False
        if self.lock_file.exists():
            self._log.warning("recorder already running (lock file %s present)", self.lock_file)
            return False
        if os.sep not in self.ffmpeg_path and shutil.which(self.ffmpeg_path) is None:
            self._log.error("%s not found in PATH", self.ffmpeg_path)
            return False

        cmd = self.build_command(url)
        self._log.info("Launching ffmpeg: %s", " ".join(cmd))
        try:
            proc = self._popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            self._log.error("ffmpeg start failed: %s", exc)
            return False

        self._log.info("ffmpeg pid %s", proc.pid)
        try:
            self.lock_file.write_text(str(proc.pid), encoding="utf-8")
        except OSError as exc:
            self._log.warning("cannot write lock file %s: %s", self.lock_file, exc)

        with self._lock:
            self._proc = proc
            self._url = url
        watcher = threading.Thread(
            target=self._watch, args=(proc,), name="recorder_watch", daemon=True
        )
        watcher.start()
        return True

    def stop(self) -> bool:
        """Stop the relay; returns True if a process was signalled."""

        with self._lock:
            proc = self._proc
            self._proc = None
            self._url = None

        if proc is not None:
            self._terminate(proc)
            self._remove_lock(proc.pid)
            return True

        if not self.lock_file.exists():
            self._log.debug("%s not present; nothing to stop", self.lock_file)
            return False

        pid = self._read_lock_pid()
        signalled = False
        if pid is not None:
            self._log.info("stopping ffmpeg pid %s from lock file", pid)
            try:
                os.kill(pid, signal.SIGKILL)
                signalled = True
            except ProcessLookupError:
                self._log.info("ffmpeg pid %s already gone", pid)
            except OSError as exc:
                self._log.warning("kill %s failed: %s", pid, exc)
        self._remove_lock(None)
        return signalled

    def _terminate(self, proc: subprocess.Popen) -> None:
        rc = proc.poll()
        if rc is not None:
            self._log.info("ffmpeg already exited rc=%s", rc)
            return
        proc.terminate()
        try:
            rc = proc.wait(timeout=self.stop_timeout)
            self._log.info("ffmpeg terminated with rc=%s", rc)
            return
        except subprocess.TimeoutExpired:
            self._log.warning("ffmpeg did not exit after SIGTERM; sending SIGKILL")
        proc.kill()
        try:
            rc = proc.wait(timeout=self.stop_timeout)
            self._log.info("ffmpeg killed; rc=%s", rc)
        except subprocess.TimeoutExpired:
            self._log.error("ffmpeg still not reaped after SIGKILL")

    def _watch(self, proc: subprocess.Popen) -> None:
        rc = proc.wait()
        self._log.info("ffmpeg pid %s exited rc=%s", proc.pid, rc)
        with self._lock:
            owned = self._proc is proc
            if owned:
                self._proc = None
                self._url = None
        if owned:
            self._remove_lock(proc.pid)

    def _read_lock_pid(self) -> int | None:
        try:
            raw = self.lock_file.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def _remove_lock(self, pid: int | None) -> None:
        if pid is not None and self._read_lock_pid() not in (None, pid):
            return
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            self._log.warning("cannot remove %s: %s", self.lock_file, exc)


class RecorderController:
    """Selects between the camera and algorithm sources."""

    def __init__(self, process: RecorderProcess, source_url: str, alg_url: str = "") -> None:
        self.process = process
        self.source_url = source_url
        self.alg_url = alg_url
        self._lock = threading.Lock()
        self._selected = source_url

    @property
    def selected_url(self) -> str:
        with self._lock:
            return self._selected

    def start(self) -> bool:
        return self.process.start(self.selected_url)

    def stop(self) -> bool:
        return self.process.stop()

    def switch(self, enabled: bool) -> bool:
        """Restart on the camera source when ``enabled``, else the algorithm source."""
        self.process.stop()
        with self._lock:
            self._selected = self.source_url if enabled else self.alg_url
            url = self._selected
        return self.process.start(url)

    def status(self) -> dict[str, object]:
        payload = self.process.status()
        payload["selected_url"] = self.selected_url
        payload["source"] = "camera" if self.selected_url == self.source_url else "algorithm"
        return payload
