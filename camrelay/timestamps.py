"""Capture-time derivation from recorded segment paths."""

from __future__ import annotations

import enum
import re
from datetime import datetime, timezone, tzinfo

__all__ = [
    "EPOCH",
    "ContainerKind",
    "derive_timestamp",
    "epoch_or_timestamp",
    "format_timestamp",
    "kind_for_path",
]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ContainerKind(enum.Enum):
    """Supported segment containers and their on-disk naming convention."""

    # live/hk/2021/09/24/143046.flv
    FLV = (
        ".flv",
        r"(?P<year>\d{4})/(?P<month>\d{2})/(?P<day>\d{2})/"
        r"(?P<hour>\d{2})(?P<minute>\d{2})(?P<second>\d{2})\.flv$",
        "%Y/%m/%d/%H%M%S",
    )
    # live/hw/2021-09-27/18-07-25.mp4
    MP4 = (
        ".mp4",
        r"(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})/"
        r"(?P<hour>\d{2})-(?P<minute>\d{2})-(?P<second>\d{2})\.mp4$",
        "%Y-%m-%d/%H-%M-%S",
    )

    def __init__(self, extension: str, pattern: str, layout: str) -> None:
        self.extension = extension
        self.pattern = re.compile(pattern, re.IGNORECASE)
        self.layout = layout


_BY_EXTENSION = {kind.extension: kind for kind in ContainerKind}


def kind_for_path(path: str) -> ContainerKind | None:
    dot = path.rfind(".")
    if dot < 0 or "/" in path[dot:]:
        return None
    return _BY_EXTENSION.get(path[dot:].lower())


def derive_timestamp(
    relative_path: str, kind: ContainerKind, tz: tzinfo | None = None
) -> datetime | None:
    """Return the capture time encoded in ``relative_path``.

    The match is anchored at the end of the path so any directory prefix is
    accepted. ``tz`` defaults to the local zone. ``None`` means the path does
    not follow the naming convention for ``kind`` (or encodes an impossible
    date); callers decide whether that excludes the file.
    """

    match = kind.pattern.search(relative_path.replace("\\", "/"))
    if match is None:
        return None
    # Re-parse the captured window with the layout so out-of-range fields
    # (month 13, second 61) are rejected.
    text = match.group(0)[: -len(kind.extension)]
    try:
        naive = datetime.strptime(text, kind.layout)
    except ValueError:
        return None
    if tz is None:
        return naive.astimezone()
    return naive.replace(tzinfo=tz)


def format_timestamp(value: datetime, kind: ContainerKind) -> str:
    return value.strftime(kind.layout)


def epoch_or_timestamp(value: datetime | None) -> datetime:
    """Map an unparseable result to the Unix epoch."""
    return EPOCH if value is None else value
