"""Upload and download operations.

This module provides:
- TransferEngine: Chooses single-part or multipart uploads, downloads
  objects and runs batches of uploads concurrently

Small sources go through one PutObject call retried with a fixed delay;
larger ones through MultipartUploader. Both can wait for the server to
index the new object afterwards.
"""

from __future__ import annotations

import logging
import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, BinaryIO

from botocore.exceptions import BotoCoreError, ClientError

from cloudxfer.client.transfer.gateway import GATEWAY_BUCKET, S3ClientFactory
from cloudxfer.client.transfer.multipart import MultipartUploader
from cloudxfer.client.transfer.part_reader import PartReader
from cloudxfer.client.transfer.retry import RetryAttempt, retry_with_policy
from cloudxfer.client.transfer.types import (
    BatchItem,
    BatchResult,
    DownloadError,
    IndexingTimeoutError,
    ProgressCallback,
    TransferError,
    TransferProgress,
    UploadError,
    UploadResult,
)
from cloudxfer.client.transfer.verify import IndexVerifier, MetadataLookup
from cloudxfer.core.config import TransferSettings

if TYPE_CHECKING:
    from cloudxfer.client.auth import RefreshGuard

logger = logging.getLogger(__name__)

S3_ERRORS = (BotoCoreError, ClientError)


def _remaining_size(stream: IO[bytes]) -> int:
    """Number of bytes between the current position and the end of a seekable stream."""
    if not stream.seekable():
        raise UploadError("Cannot determine the size of an unseekable stream; pass size explicitly")
    position = stream.tell()
    end = stream.seek(0, os.SEEK_END)
    stream.seek(position)
    return end - position


def _is_not_found(exc: ClientError) -> bool:
    code = exc.response.get("Error", {}).get("Code")
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in ("404", "NoSuchKey", "NotFound") or status == 404


class TransferEngine:
    """Upload and download objects through the storage gateway."""

    def __init__(
        self,
        guard: RefreshGuard,
        client_factory: S3ClientFactory,
        lookup: MetadataLookup,
        settings: TransferSettings | None = None,
        bucket: str = GATEWAY_BUCKET,
    ) -> None:
        """Initialize the engine.

        Args:
            guard: Shared credential refresh guard.
            client_factory: Builds an S3 client from a credential snapshot.
            lookup: Metadata lookup used to confirm indexing.
            settings: Part sizes, retry policies and concurrency.
            bucket: Gateway bucket.
        """
        self._guard = guard
        self._client_factory = client_factory
        self._settings = settings or TransferSettings()
        self._bucket = bucket
        self._verifier = IndexVerifier(lookup, self._settings.verify_retry)

    @property
    def settings(self) -> TransferSettings:
        """Get the transfer settings."""
        return self._settings

    def _client(self) -> Any:
        """Build an S3 client from a fresh credential."""
        self._guard.refresh_and_persist_if_needed()
        return self._client_factory(self._guard.snapshot())

    # === Uploads ===

    def upload(
        self,
        path: str,
        stream: BinaryIO,
        verify_existence: bool = False,
        size: int | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> UploadResult:
        """Upload a stream to ``path``.

        Args:
            path: Destination path.
            stream: Source stream, positioned at the first byte to upload.
            verify_existence: Wait for the server to index the object.
            size: Number of bytes to upload (default: rest of a seekable stream).
            progress_callback: Optional callback for progress updates.

        Returns:
            UploadResult; a verification timeout is reported in it, not raised.

        Raises:
            UploadError: If the upload failed.
            CredentialRefreshError: If the token could not be refreshed.
        """
        return self._upload(
            path,
            stream,
            part_size=self._settings.multipart_part_size,
            threshold=self._settings.multipart_threshold or self._settings.multipart_part_size,
            verify_existence=verify_existence,
            size=size,
            progress_callback=progress_callback,
        )

    def upload_convenience(
        self,
        path: str,
        stream: BinaryIO,
        verify_existence: bool = False,
        size: int | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> UploadResult:
        """Upload with the smaller parts of the convenience uploader."""
        part_size = self._settings.convenience_part_size
        return self._upload(
            path,
            stream,
            part_size=part_size,
            threshold=part_size,
            verify_existence=verify_existence,
            size=size,
            progress_callback=progress_callback,
        )

    def _upload(
        self,
        path: str,
        stream: BinaryIO,
        part_size: int,
        threshold: int,
        verify_existence: bool,
        size: int | None,
        progress_callback: ProgressCallback | None,
    ) -> UploadResult:
        if size is None:
            size = _remaining_size(stream)

        if size < threshold:
            result = self._put_object(path, stream, size)
            if progress_callback:
                progress_callback(TransferProgress(
                    path=path,
                    total_size=size,
                    current_part=1,
                    total_parts=1,
                    bytes_transferred=size,
                ))
        else:
            uploader = MultipartUploader(
                self._guard,
                self._client_factory,
                part_size=part_size,
                bucket=self._bucket,
                progress_callback=progress_callback,
            )
            descriptor = uploader.upload(path, stream, size)
            result = UploadResult(
                path=path,
                size=size,
                multipart=True,
                parts=len(descriptor.parts),
            )

        if verify_existence:
            self._verify(result)
        return result

    def _put_object(self, path: str, stream: BinaryIO, size: int) -> UploadResult:
        """Upload a small source in one call, retried with a fixed delay."""
        data = PartReader(stream, size).read()
        if len(data) != size:
            raise UploadError(f"Source ended early: read {len(data)} of {size} bytes", path=path)

        def put() -> dict[str, Any]:
            s3 = self._client()
            response: dict[str, Any] = s3.put_object(Bucket=self._bucket, Key=path, Body=data)
            return response

        def report(attempt: RetryAttempt) -> None:
            logger.warning(f"Trying to put {path} (attempt {attempt.attempt}/{attempt.max_attempts}): {attempt.error}")

        logger.info(f"Uploading {path} ({size} bytes) in a single request")
        try:
            response = retry_with_policy(
                put,
                self._settings.put_retry,
                on_failure=report,
                retryable_exceptions=S3_ERRORS,
            )
        except S3_ERRORS as e:
            raise UploadError(
                f"Could not put object in bucket {self._bucket} with key {path}: {e}",
                path=path,
            ) from e

        return UploadResult(
            path=path,
            size=size,
            multipart=False,
            etag=str(response.get("ETag", "")).strip('"') or None,
        )

    def _verify(self, result: UploadResult) -> None:
        """Wait for indexing; a timeout is recorded in the result."""
        try:
            self._verifier.wait_until_indexed(result.path)
            result.indexed = True
        except IndexingTimeoutError as e:
            logger.warning(f"{e}; the file is stored but not yet visible")
            result.indexed = False
            result.verification_error = e

    def upload_many(
        self,
        items: list[BatchItem],
        verify_existence: bool = False,
    ) -> list[BatchResult]:
        """Upload several streams concurrently.

        All transfers share the refresh guard. An empty list is a no-op.

        Returns:
            One BatchResult per item, in input order.
        """
        if not items:
            return []

        def run(item: BatchItem) -> BatchResult:
            try:
                result = self.upload(
                    item.path,
                    item.stream,
                    verify_existence=verify_existence,
                    size=item.size,
                )
                return BatchResult(path=item.path, result=result)
            except TransferError as e:
                logger.error(f"Failed to upload {item.path}: {e}")
                return BatchResult(path=item.path, error=e)

        logger.info(f"Starting batch upload: {len(items)} files")
        with ThreadPoolExecutor(max_workers=self._settings.max_workers) as executor:
            results = list(executor.map(run, items))

        failed = [r.path for r in results if not r.success]
        if failed:
            logger.error(f"Failed to upload {len(failed)} files: {failed}")
        else:
            logger.info(f"Batch upload completed: {len(results)} files uploaded")
        return results

    # === Downloads ===

    def download(self, path: str) -> tuple[IO[bytes], int]:
        """Open a remote object for reading.

        Returns:
            (stream, size) tuple; the caller closes the stream.

        Raises:
            DownloadError: If the object is missing or cannot be read.
        """
        s3 = self._client()
        try:
            head = s3.head_object(Bucket=self._bucket, Key=path)
            size = int(head["ContentLength"])
            obj = s3.get_object(Bucket=self._bucket, Key=path)
        except ClientError as e:
            if _is_not_found(e):
                raise DownloadError(f"File not found: {path}") from e
            raise DownloadError(f"Could not download {path}: {e}") from e
        except BotoCoreError as e:
            raise DownloadError(f"Could not download {path}: {e}") from e
        return obj["Body"], size

    def download_file(self, path: str, local_path: Path) -> int:
        """Download a remote object into a local file.

        Returns:
            Number of bytes written.
        """
        body, size = self.download(path)
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Downloading {path} to {local_path}")
        try:
            with local_path.open("wb") as f:
                shutil.copyfileobj(body, f)
        finally:
            body.close()
        logger.info(f"Downloaded {path} ({size} bytes)")
        return size
