"""Bounded, forward-only view over a byte stream.

PartReader exposes the next ``part_length`` bytes of a source stream as a
read-only stream, which is how each multipart chunk is cut from the source.
"""

from __future__ import annotations

import io
from typing import BinaryIO


class PartReader(io.RawIOBase):
    """Read at most ``part_length`` bytes from ``source``.

    Reads that would cross the boundary are truncated; once the budget is
    consumed every read returns end-of-stream even if the source has more
    bytes. The source is never repositioned nor closed, and errors from the
    source propagate unchanged.
    """

    def __init__(self, source: BinaryIO, part_length: int) -> None:
        """Initialize the reader.

        Args:
            source: Stream positioned at the start of the part.
            part_length: Number of bytes in the part.
        """
        super().__init__()
        if part_length < 0:
            raise ValueError(f"part_length must be >= 0, got {part_length}")
        self._source = source
        self._part_length = part_length
        self._consumed = 0

    @property
    def part_length(self) -> int:
        """Get the size of the window."""
        return self._part_length

    @property
    def remaining(self) -> int:
        """Get the number of bytes left in the window."""
        return self._part_length - self._consumed

    def readable(self) -> bool:
        """Part readers are always readable."""
        return True

    def tell(self) -> int:
        """Get the number of bytes consumed so far."""
        return self._consumed

    def readinto(self, buffer: bytearray | memoryview) -> int:  # type: ignore[override]
        """Fill ``buffer`` with at most the remaining budget.

        Returns:
            Number of bytes read; 0 signals end-of-stream.
        """
        remaining = self.remaining
        if remaining <= 0:
            return 0

        view = memoryview(buffer).cast("B")
        wanted = min(len(view), remaining)
        if wanted == 0:
            return 0

        data = self._source.read(wanted)
        if not data:
            return 0
        n = len(data)
        view[:n] = data
        self._consumed += n
        return n
