"""Range queries over the recorded segment archive.

Segments live under a save directory in per-source trees, e.g.::

    live/hk/2021/09/24/143046.flv
    live/hw/2021-09-27/18-07-25.mp4

The capture time comes from the path, never from file metadata. Durations are
read from the container tail (FLV) or movie header (MP4) and memoised in a
``SegmentCache`` keyed by capture time.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Iterator, Mapping

from .containers import ContainerError, DurationReader
from .containers import flv, mp4
from .segment_cache import SegmentCache
from .timestamps import ContainerKind, derive_timestamp, kind_for_path

__all__ = [
    "ArchiveIndexer",
    "ArchiveWalkError",
    "DEFAULT_READERS",
    "SLOW_FILE_SECONDS",
    "SegmentDescriptor",
    "relative_segment_path",
]

SLOW_FILE_SECONDS = 10.0

DEFAULT_READERS: dict[ContainerKind, DurationReader] = {
    ContainerKind.FLV: flv.read_duration,
    ContainerKind.MP4: mp4.read_duration,
}


class ArchiveWalkError(Exception):
    """Raised when part of the archive tree cannot be enumerated."""


@dataclass(frozen=True, slots=True)
class SegmentDescriptor:
    """One recorded media file found on disk."""

    relative_path: str
    size_bytes: int
    captured_at: datetime
    duration: int

    def to_dict(self) -> dict[str, object]:
        return {
            "url": self.relative_path,
            "size": self.size_bytes,
            "timestamp": int(self.captured_at.timestamp()),
            "duration": self.duration,
        }


def relative_segment_path(root: str, path: str) -> str:
    """Strip ``root`` from ``path`` and normalise to a slash-separated relative path."""

    rel = path[len(root):] if path.startswith(root) else path
    return rel.replace("\\", "/").lstrip("/")


class ArchiveIndexer:
    def __init__(
        self,
        cache: SegmentCache,
        *,
        readers: Mapping[ContainerKind, DurationReader] | None = None,
        tz: tzinfo | None = None,
        slow_file_seconds: float = SLOW_FILE_SECONDS,
        cache_ttl: timedelta | float | None = None,
    ) -> None:
        self.cache = cache
        self.readers = dict(DEFAULT_READERS if readers is None else readers)
        self.tz = tz
        self.slow_file_seconds = float(slow_file_seconds)
        self.cache_ttl = cache_ttl
        self._log = logging.getLogger("camrelay.archive")

    def query(self, root: str | os.PathLike[str], begin: datetime, end: datetime) -> list[SegmentDescriptor]:
        """Return the segments captured strictly inside ``(begin, end)``.

        Results follow the walk order: the entries of each directory are
        visited in lexical order, descending into a subdirectory where its
        name sorts. Hidden directories are not entered. A directory that
        cannot be listed aborts the query with ``ArchiveWalkError``; problems
        with individual files only exclude them or zero their duration.
        """

        root_str = os.fspath(root)
        if not os.path.isdir(root_str):
            raise ArchiveWalkError(f"archive root is not a directory: {root_str}")

        found: list[SegmentDescriptor] = []
        for path in self._walk(root_str):
            kind = kind_for_path(os.path.basename(path))
            if kind is None or not os.path.isfile(path):
                continue
            started = time.monotonic()
            descriptor = self._evaluate(root_str, path, kind, begin, end)
            spent = time.monotonic() - started
            if spent > self.slow_file_seconds:
                self._log.warning("slow segment evaluation: %s took %.1fs", path, spent)
            if descriptor is not None:
                found.append(descriptor)
        self._log.debug(
            "query %s..%s under %s matched %d segment(s)",
            begin.isoformat(),
            end.isoformat(),
            root_str,
            len(found),
        )
        return found

    def _walk(self, top: str) -> Iterator[str]:
        try:
            with os.scandir(top) as it:
                entries = sorted(it, key=lambda entry: entry.name)
        except OSError as exc:
            raise ArchiveWalkError(f"cannot list {top}: {exc.strerror or exc}") from exc
        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError:
                is_dir = False
            if not is_dir:
                yield entry.path
            elif entry.name.startswith("."):
                self._log.debug("skipping hidden directory %s", entry.path)
            else:
                yield from self._walk(entry.path)

    def _evaluate(
        self,
        root: str,
        path: str,
        kind: ContainerKind,
        begin: datetime,
        end: datetime,
    ) -> SegmentDescriptor | None:
        rel = relative_segment_path(root, path)
        basename = rel.rsplit("/", 1)[-1]
        if basename.startswith("."):
            self._log.debug("skipping temporary file %s", rel)
            return None

        captured_at = derive_timestamp(rel, kind, self.tz)
        if captured_at is None:
            self._log.debug("skipping %s: name does not encode a capture time", rel)
            return None
        if not (begin < captured_at < end):
            return None

        cached = self.cache.get(captured_at)
        if cached is not None:
            return cached

        descriptor = self._describe(path, rel, kind, captured_at)
        if descriptor is not None:
            self.cache.put(captured_at, descriptor, self.cache_ttl)
        return descriptor

    def _describe(
        self, path: str, rel: str, kind: ContainerKind, captured_at: datetime
    ) -> SegmentDescriptor | None:
        try:
            handle = open(path, "rb")
        except OSError as exc:
            self._log.warning("skipping unreadable segment %s: %s", rel, exc)
            return None
        with handle:
            try:
                size = os.fstat(handle.fileno()).st_size
            except OSError as exc:
                self._log.warning("skipping segment %s: stat failed: %s", rel, exc)
                return None
            duration = self._read_duration(handle, rel, kind)
        return SegmentDescriptor(
            relative_path=rel,
            size_bytes=size,
            captured_at=captured_at,
            duration=duration,
        )

    def _read_duration(self, handle, rel: str, kind: ContainerKind) -> int:
        reader = self.readers.get(kind)
        if reader is None:
            return 0
        try:
            duration = int(reader(handle))
        except (OSError, ValueError, ContainerError) as exc:
            self._log.warning("duration unavailable for %s: %s", rel, exc)
            return 0
        if duration < 0:
            return 0
        return min(duration, 0xFFFFFFFF)
