"""Synthetic FLV/MP4 byte builders shared by the tests."""

from __future__ import annotations

import functools
import struct
import tempfile
from fractions import Fraction
from pathlib import Path

import av

FLV_HEADER = b"FLV\x01\x05\x00\x00\x00\x09" + struct.pack(">I", 0)


def flv_tag(timestamp: int, payload: bytes = b"\x00" * 16, tag_type: int = 9) -> bytes:
    header = (
        bytes([tag_type])
        + len(payload).to_bytes(3, "big")
        + (timestamp & 0xFFFFFF).to_bytes(3, "big")
        + bytes([(timestamp >> 24) & 0xFF])
        + b"\x00\x00\x00"
    )
    return header + payload + struct.pack(">I", len(header) + len(payload))


def flv_bytes(*timestamps: int) -> bytes:
    return FLV_HEADER + b"".join(flv_tag(ts) for ts in timestamps)


@functools.lru_cache(maxsize=None)
def mp4_bytes(seconds: int = 3, *, fps: int = 2) -> bytes:
    """Encode a tiny MPEG-4 clip of ``seconds`` length with PyAV."""

    with tempfile.TemporaryDirectory() as tmp:
        target = Path(tmp) / "clip.mp4"
        _encode_clip(target, seconds, fps)
        return target.read_bytes()


def _encode_clip(target: Path, seconds: int, fps: int) -> None:
    with av.open(str(target), mode="w") as container:
        stream = container.add_stream("mpeg4", rate=fps)
        stream.width = 32
        stream.height = 32
        stream.pix_fmt = "yuv420p"
        for index in range(seconds * fps):
            frame = av.VideoFrame(32, 32, "yuv420p")
            frame.pts = index
            frame.time_base = Fraction(1, fps)
            for packet in stream.encode(frame):
                container.mux(packet)
        for packet in stream.encode():
            container.mux(packet)
