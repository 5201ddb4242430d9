"""Multipart upload through the S3 gateway.

This module provides:
- MultipartUploader: Splits a stream into fixed-size parts, uploads them in
  order, refreshes the credential between parts and aborts on failure

Lifecycle (TransferState):
    INITIATED → PARTS_IN_FLIGHT → COMPLETING → COMPLETED
                       └──────────────┴──────→ ABORTED
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, BinaryIO

from botocore.exceptions import BotoCoreError, ClientError

from cloudxfer.client.auth import CredentialRefreshError
from cloudxfer.client.transfer.gateway import GATEWAY_BUCKET, S3ClientFactory
from cloudxfer.client.transfer.part_reader import PartReader
from cloudxfer.client.transfer.types import (
    ProgressCallback,
    SessionError,
    TransferDescriptor,
    TransferProgress,
    TransferState,
    UploadError,
)

if TYPE_CHECKING:
    from cloudxfer.client.auth import RefreshGuard

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/octet-stream"


class MultipartUploader:
    """Upload one stream as a multipart object.

    Parts are uploaded sequentially: part N+1 starts only once part N is
    acknowledged, so at most one part is in flight when aborting. The
    refresh guard is checked before every part and the S3 client rebuilt
    when the token changed.
    """

    def __init__(
        self,
        guard: RefreshGuard,
        client_factory: S3ClientFactory,
        part_size: int,
        bucket: str = GATEWAY_BUCKET,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            guard: Shared credential refresh guard.
            client_factory: Builds an S3 client from a credential snapshot.
            part_size: Size of every part but the last.
            bucket: Gateway bucket.
            progress_callback: Optional callback invoked after each part.
        """
        if part_size <= 0:
            raise ValueError(f"part_size must be positive, got {part_size}")
        self._guard = guard
        self._client_factory = client_factory
        self._part_size = part_size
        self._bucket = bucket
        self._progress_callback = progress_callback

    @property
    def part_size(self) -> int:
        """Get the configured part size."""
        return self._part_size

    def _client(self) -> Any:
        return self._client_factory(self._guard.snapshot())

    def upload(self, path: str, source: BinaryIO, size: int) -> TransferDescriptor:
        """Upload ``size`` bytes read from ``source`` to ``path``.

        Args:
            path: Destination key.
            source: Stream positioned at the first byte to upload.
            size: Number of bytes to upload.

        Returns:
            Descriptor of the completed upload.

        Raises:
            SessionError: If the session could not be created or completed.
            UploadError: If a part failed; the session has been aborted.
            CredentialRefreshError: If the token could not be refreshed.
        """
        if size < 0:
            raise ValueError(f"size must be >= 0, got {size}")

        descriptor = TransferDescriptor(path=path, total_size=size, part_size=self._part_size)
        start_time = time.monotonic()

        self._guard.refresh_and_persist_if_needed()
        s3 = self._client()
        try:
            response = s3.create_multipart_upload(
                Bucket=self._bucket,
                Key=path,
                ContentType=CONTENT_TYPE,
            )
        except (BotoCoreError, ClientError) as e:
            descriptor.state = TransferState.ABORTED
            logger.error(f"Could not create multipart upload for {path}: {e}")
            raise SessionError(f"Could not create upload session for {path}: {e}", path=path) from e

        descriptor.upload_id = response["UploadId"]
        descriptor.state = TransferState.PARTS_IN_FLIGHT
        total_parts = descriptor.total_parts
        logger.info(
            f"Initiated multipart upload of {path}: UploadId={descriptor.upload_id}, "
            f"{size} bytes in {total_parts} parts of up to {self._part_size} bytes"
        )

        part_number = 0
        try:
            for part_number in range(1, total_parts + 1):
                if self._guard.refresh_and_persist_if_needed():
                    logger.info(f"Credential refreshed before part {part_number}, rebuilding S3 client")
                    s3 = self._client()
                self._upload_part(s3, descriptor, source, part_number)

            part_number = 0
            descriptor.state = TransferState.COMPLETING
            s3.complete_multipart_upload(
                Bucket=self._bucket,
                Key=path,
                UploadId=descriptor.upload_id,
                MultipartUpload={"Parts": [p.to_s3() for p in descriptor.parts]},
            )
        except Exception as exc:
            self._abort(s3, descriptor, exc, part_number or None)

        descriptor.state = TransferState.COMPLETED
        elapsed = time.monotonic() - start_time
        logger.info(f"Completed multipart upload of {path} ({total_parts} parts) in {elapsed:.1f}s")
        return descriptor

    def _upload_part(
        self,
        s3: Any,
        descriptor: TransferDescriptor,
        source: BinaryIO,
        part_number: int,
    ) -> None:
        """Read the next window of ``source`` and upload it as ``part_number``."""
        length = descriptor.part_length(part_number)
        reader = PartReader(source, length)
        data = reader.read()
        if len(data) != length:
            raise UploadError(
                f"Source ended early: part {part_number} has {len(data)} of {length} bytes",
                path=descriptor.path,
                upload_id=descriptor.upload_id,
                part_number=part_number,
            )

        logger.debug(f"Part {part_number}/{descriptor.total_parts}: uploading {length} bytes")
        response = s3.upload_part(
            Bucket=self._bucket,
            Key=descriptor.path,
            UploadId=descriptor.upload_id,
            PartNumber=part_number,
            Body=data,
            ContentLength=length,
        )
        descriptor.record_part(part_number, response["ETag"], length)
        logger.info(f"Part {part_number}/{descriptor.total_parts} of {descriptor.path} uploaded")

        if self._progress_callback:
            self._progress_callback(TransferProgress(
                path=descriptor.path,
                total_size=descriptor.total_size,
                current_part=part_number,
                total_parts=descriptor.total_parts,
                bytes_transferred=descriptor.bytes_transferred,
            ))

    def _abort(
        self,
        s3: Any,
        descriptor: TransferDescriptor,
        exc: Exception,
        part_number: int | None,
    ) -> None:
        """Cancel the remote session, then raise the triggering error."""
        completing = descriptor.state is TransferState.COMPLETING
        descriptor.state = TransferState.ABORTED
        logger.error(f"Upload of {descriptor.path} failed, aborting session {descriptor.upload_id}: {exc}")

        abort_error: Exception | None = None
        try:
            s3.abort_multipart_upload(
                Bucket=self._bucket,
                Key=descriptor.path,
                UploadId=descriptor.upload_id,
            )
        except (BotoCoreError, ClientError) as e:
            abort_error = e
            logger.error(f"Could not abort upload session {descriptor.upload_id}: {e}")

        if isinstance(exc, CredentialRefreshError):
            exc.abort_error = abort_error
            raise exc

        error_cls = SessionError if completing else UploadError
        if completing:
            message = f"Could not complete upload of {descriptor.path}: {exc}"
        elif isinstance(exc, UploadError):
            message = str(exc)
        else:
            message = f"Part {part_number} of {descriptor.path} failed: {exc}"
        raise error_cls(
            message,
            path=descriptor.path,
            upload_id=descriptor.upload_id,
            part_number=part_number,
            abort_error=abort_error,
        ) from exc
