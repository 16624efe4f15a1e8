"""FLV duration extraction by walking the tag trailer backwards.

Every FLV tag is followed by a 4-byte big-endian ``PreviousTagSize`` field, so
the last tag of a finished recording can be located from the end of the file
without scanning forward. Its timestamp (milliseconds since the start of the
recording) is the play duration.
"""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass
from typing import BinaryIO

from . import ContainerError, read_exact

__all__ = ["FlvTag", "TAG_HEADER_SIZE", "read_duration", "read_tag"]

TAG_HEADER_SIZE = 11
PREVIOUS_TAG_SIZE = 4

_log = logging.getLogger("camrelay.containers.flv")


@dataclass(frozen=True)
class FlvTag:
    tag_type: int
    data_size: int
    timestamp: int


def read_tag(stream: BinaryIO) -> FlvTag:
    """Read one tag, its payload and the trailing size field."""

    header = read_exact(stream, TAG_HEADER_SIZE)
    tag_type = header[0]
    data_size = int.from_bytes(header[1:4], "big")
    # 24-bit timestamp followed by the upper 8 bits in TimestampExtended.
    timestamp = int.from_bytes(header[4:7], "big") | (header[7] << 24)
    read_exact(stream, data_size)
    read_exact(stream, PREVIOUS_TAG_SIZE)
    return FlvTag(tag_type=tag_type, data_size=data_size, timestamp=timestamp)


def read_duration(stream: BinaryIO) -> int:
    """Return the timestamp of the last tag, or 0 when it cannot be found."""

    try:
        end = stream.seek(0, io.SEEK_END)
        if end < PREVIOUS_TAG_SIZE:
            return 0
        stream.seek(end - PREVIOUS_TAG_SIZE)
        (tag_size,) = struct.unpack(">I", read_exact(stream, PREVIOUS_TAG_SIZE))
        start = end - tag_size - PREVIOUS_TAG_SIZE
        if start < 0:
            _log.debug("trailer tag size %d exceeds stream length %d", tag_size, end)
            return 0
        stream.seek(start)
        return read_tag(stream).timestamp
    except (OSError, ValueError, ContainerError, struct.error) as exc:
        _log.debug("unable to read FLV duration: %s", exc)
        return 0
