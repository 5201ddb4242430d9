"""Tests for PartReader."""

from __future__ import annotations

import io

import pytest

from cloudxfer.client.transfer.part_reader import PartReader


class TestPartReader:
    """Tests for the bounded part window."""

    def test_reads_exactly_part_length(self) -> None:
        """Should stop at the window boundary."""
        source = io.BytesIO(b"0123456789")
        reader = PartReader(source, 4)
        assert reader.read() == b"0123"
        assert source.tell() == 4

    def test_truncates_large_requests(self) -> None:
        """A read larger than the budget is shortened."""
        reader = PartReader(io.BytesIO(b"0123456789"), 3)
        assert reader.read(100) == b"012"
        assert reader.read(100) == b""

    @pytest.mark.parametrize("chunk", [1, 2, 3, 7, 64])
    def test_never_exceeds_budget(self, chunk: int) -> None:
        """Whatever the request size, the total is the part length."""
        reader = PartReader(io.BytesIO(bytes(range(50))), 17)
        total = b""
        while True:
            data = reader.read(chunk)
            if not data:
                break
            total += data
        assert total == bytes(range(17))
        assert reader.remaining == 0

    def test_consecutive_windows(self) -> None:
        """Successive readers cut successive parts of the source."""
        source = io.BytesIO(b"aaaabbbbcc")
        parts = [PartReader(source, n).read() for n in (4, 4, 2)]
        assert parts == [b"aaaa", b"bbbb", b"cc"]

    def test_short_source(self) -> None:
        """A source ending early yields what it has."""
        reader = PartReader(io.BytesIO(b"ab"), 5)
        assert reader.read() == b"ab"
        assert reader.remaining == 3

    def test_zero_length(self) -> None:
        """An empty window is immediately at end-of-stream."""
        source = io.BytesIO(b"abc")
        assert PartReader(source, 0).read() == b""
        assert source.tell() == 0

    def test_tell_counts_consumed_bytes(self) -> None:
        """tell() is relative to the window start."""
        source = io.BytesIO(b"xxxxabcdef")
        source.seek(4)
        reader = PartReader(source, 6)
        reader.read(2)
        assert reader.tell() == 2

    def test_does_not_close_source(self) -> None:
        """Closing the window leaves the source open."""
        source = io.BytesIO(b"abc")
        with PartReader(source, 2) as reader:
            reader.read()
        assert not source.closed

    def test_source_errors_propagate(self) -> None:
        """Errors of the source are raised unchanged."""

        class FailingSource(io.RawIOBase):
            def readable(self) -> bool:
                return True

            def read(self, size: int = -1) -> bytes:
                raise OSError("disk on fire")

        with pytest.raises(OSError, match="disk on fire"):
            PartReader(FailingSource(), 4).read()

    def test_negative_length(self) -> None:
        """Should reject a negative window."""
        with pytest.raises(ValueError):
            PartReader(io.BytesIO(), -1)
