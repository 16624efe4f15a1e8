"""MP4 duration probing through PyAV (libavformat)."""

from __future__ import annotations

import logging
from typing import BinaryIO

import av

from . import ContainerError

__all__ = ["read_duration"]

_log = logging.getLogger("camrelay.containers.mp4")


def read_duration(stream: BinaryIO) -> int:
    """Return the declared movie duration in whole seconds.

    Raises ``ContainerError`` when libavformat cannot open the file or it
    declares no duration.
    """

    try:
        stream.seek(0)
        with av.open(stream, mode="r") as container:
            if container.duration is not None:
                seconds = container.duration // av.time_base
            else:
                video = container.streams.video
                if not video or video[0].duration is None or video[0].time_base is None:
                    raise ContainerError("no duration declared")
                seconds = int(video[0].duration * video[0].time_base)
    except av.error.FFmpegError as exc:
        raise ContainerError(f"unable to probe MP4: {exc}") from exc
    except OSError as exc:
        raise ContainerError(f"unable to read MP4: {exc}") from exc
    _log.debug("probed MP4 duration %ss", seconds)
    return min(max(seconds, 0), 0xFFFFFFFF)
