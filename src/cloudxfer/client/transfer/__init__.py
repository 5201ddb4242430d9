"""Transfers through the S3 gateway.

Architecture:
    TransferEngine → MultipartUploader → PartReader
                   → IndexVerifier → retry

Components:
- **TransferEngine**: Single-part or multipart uploads, downloads, batches
- **MultipartUploader**: Session lifecycle, per-part refresh and abort
- **PartReader**: Bounded window over the source stream
- **IndexVerifier**: Waits for the server to index an uploaded object
- **retry**: Fixed-delay retry executor
"""

from cloudxfer.client.transfer.engine import TransferEngine
from cloudxfer.client.transfer.gateway import (
    GATEWAY_BUCKET,
    create_s3_client,
    gateway_endpoint,
)
from cloudxfer.client.transfer.multipart import MultipartUploader
from cloudxfer.client.transfer.part_reader import PartReader
from cloudxfer.client.transfer.retry import RetryAttempt, retry, retry_with_policy
from cloudxfer.client.transfer.types import (
    BatchItem,
    BatchResult,
    DownloadError,
    IndexingTimeoutError,
    ProgressCallback,
    SessionError,
    TransferDescriptor,
    TransferError,
    TransferProgress,
    TransferState,
    UploadError,
    UploadResult,
)
from cloudxfer.client.transfer.verify import IndexVerifier

__all__ = [
    # Engine
    "MultipartUploader",
    "TransferEngine",
    # Gateway
    "GATEWAY_BUCKET",
    "create_s3_client",
    "gateway_endpoint",
    # Building blocks
    "IndexVerifier",
    "PartReader",
    "RetryAttempt",
    "retry",
    "retry_with_policy",
    # Types
    "BatchItem",
    "BatchResult",
    "DownloadError",
    "IndexingTimeoutError",
    "ProgressCallback",
    "SessionError",
    "TransferDescriptor",
    "TransferError",
    "TransferProgress",
    "TransferState",
    "UploadError",
    "UploadResult",
]
