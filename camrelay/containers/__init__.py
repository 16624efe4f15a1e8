"""Duration readers for the recorded segment containers."""

from __future__ import annotations

from typing import BinaryIO, Callable

__all__ = ["ContainerError", "DurationReader", "read_exact"]

DurationReader = Callable[[BinaryIO], int]


class ContainerError(Exception):
    """Raised when a container structure cannot be parsed."""


def read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if data is None or len(data) != size:
        raise ContainerError(f"short read: wanted {size} bytes, got {len(data or b'')}")
    return data
