"""Shared types and dataclasses for transfer operations.

This module provides:
- TransferError, UploadError, SessionError, DownloadError: Exception classes
- IndexingTimeoutError: Post-upload verification gave up
- TransferState: Multipart upload lifecycle
- CompletedPart, TransferDescriptor: Multipart bookkeeping
- TransferProgress, UploadResult, BatchItem, BatchResult: Results and progress
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import IO


class TransferError(Exception):
    """Base exception for transfer errors."""


class UploadError(TransferError):
    """Failed to upload an object.

    Attributes:
        path: Destination path.
        upload_id: Multipart session identifier, if a session was open.
        part_number: Part that failed, if any.
        abort_error: Failure of the session cancellation, if it failed too.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        upload_id: str | None = None,
        part_number: int | None = None,
        abort_error: Exception | None = None,
    ) -> None:
        if abort_error is not None:
            message = f"{message} (abort also failed: {abort_error})"
        super().__init__(message)
        self.path = path
        self.upload_id = upload_id
        self.part_number = part_number
        self.abort_error = abort_error


class SessionError(UploadError):
    """Creating or completing a multipart session failed."""


class DownloadError(TransferError):
    """Failed to download an object."""


class IndexingTimeoutError(TransferError):
    """The uploaded object was not indexed in time.

    The bytes are stored; only the metadata lookup did not confirm them.
    """

    def __init__(self, path: str, attempts: int) -> None:
        super().__init__(f"Indexing of {path} did not complete after {attempts} attempts")
        self.path = path
        self.attempts = attempts


class TransferState(Enum):
    """Lifecycle of a multipart upload."""

    INITIATED = auto()
    PARTS_IN_FLIGHT = auto()
    COMPLETING = auto()
    COMPLETED = auto()
    ABORTED = auto()


@dataclass(frozen=True)
class CompletedPart:
    """A part acknowledged by the gateway."""

    part_number: int
    etag: str
    size: int

    def to_s3(self) -> dict[str, object]:
        """Format for CompleteMultipartUpload."""
        return {"PartNumber": self.part_number, "ETag": self.etag}


@dataclass
class TransferDescriptor:
    """Bookkeeping of one multipart upload.

    Part numbers are contiguous from 1 and part sizes sum to total_size.
    """

    path: str
    total_size: int
    part_size: int
    upload_id: str | None = None
    state: TransferState = TransferState.INITIATED
    parts: list[CompletedPart] = field(default_factory=list)

    @property
    def total_parts(self) -> int:
        """Number of parts needed (0 for an empty source)."""
        return -(-self.total_size // self.part_size)

    @property
    def bytes_transferred(self) -> int:
        """Bytes acknowledged so far."""
        return sum(p.size for p in self.parts)

    def part_length(self, part_number: int) -> int:
        """Length of a 1-based part: part_size except for a shorter last part."""
        offset = (part_number - 1) * self.part_size
        return min(self.part_size, self.total_size - offset)

    def record_part(self, part_number: int, etag: str, size: int) -> CompletedPart:
        """Append an acknowledged part, enforcing contiguous numbering."""
        expected = len(self.parts) + 1
        if part_number != expected:
            raise ValueError(f"Expected part {expected}, got part {part_number}")
        part = CompletedPart(part_number=part_number, etag=etag, size=size)
        self.parts.append(part)
        return part


@dataclass
class TransferProgress:
    """Progress information for a transfer."""

    path: str
    total_size: int
    current_part: int
    total_parts: int
    bytes_transferred: int

    @property
    def percent(self) -> float:
        """Get progress percentage."""
        if self.total_size == 0:
            return 100.0
        return (self.bytes_transferred / self.total_size) * 100


# Type alias for progress callback
ProgressCallback = Callable[[TransferProgress], None]


@dataclass
class UploadResult:
    """Result of an upload.

    Attributes:
        path: Destination path.
        size: Bytes uploaded.
        multipart: Whether the multipart path was used.
        parts: Number of parts (0 for single-part uploads).
        etag: Integrity tag of the stored object, when known.
        indexed: True/False if verification ran, None if not requested.
        verification_error: The timeout error when indexing was not confirmed.
    """

    path: str
    size: int
    multipart: bool
    parts: int = 0
    etag: str | None = None
    indexed: bool | None = None
    verification_error: IndexingTimeoutError | None = None


@dataclass
class BatchItem:
    """One upload of a batch."""

    path: str
    stream: IO[bytes]
    size: int | None = None


@dataclass
class BatchResult:
    """Outcome of one batch item."""

    path: str
    result: UploadResult | None = None
    error: Exception | None = None

    @property
    def success(self) -> bool:
        """Check whether the item uploaded."""
        return self.error is None
