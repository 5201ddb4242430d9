"""Tests for TransferEngine.

Round trips run against moto; failure injection uses a MagicMock S3 client.
"""

from __future__ import annotations

import io
import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from cloudxfer.client.auth import RefreshGuard
from cloudxfer.client.transfer.engine import TransferEngine
from cloudxfer.client.transfer.types import (
    BatchItem,
    DownloadError,
    IndexingTimeoutError,
    UploadError,
)
from cloudxfer.core.config import MIB, RetryPolicy, TransferSettings
from cloudxfer.core.types import AuthKind


def fast_settings(**kwargs: Any) -> TransferSettings:
    """Settings with 5 MiB parts and no retry delays."""
    defaults: dict[str, Any] = {
        "multipart_part_size": 5 * MIB,
        "put_retry": RetryPolicy(3, 0),
        "verify_retry": RetryPolicy(3, 0),
        "max_workers": 2,
    }
    defaults.update(kwargs)
    return TransferSettings(**defaults)


@pytest.fixture
def guard(record_factory) -> RefreshGuard:  # type: ignore[no-untyped-def]
    """Guard holding a personal access token."""
    return RefreshGuard(record_factory(AuthKind.PERSONAL_ACCESS_TOKEN))


@pytest.fixture
def lookup() -> MagicMock:
    """Metadata lookup that always finds the node."""
    return MagicMock(return_value=(True, None))


class TestWithMoto:
    """Round trips against a moto S3 backend."""

    @pytest.fixture
    def s3_factory(self) -> Iterator[Any]:
        """Set up moto mock for S3 with the gateway bucket."""
        pytest.importorskip("moto")
        import boto3
        from moto import mock_aws

        with mock_aws():
            client = boto3.client("s3", region_name="us-east-1")
            client.create_bucket(Bucket="io")
            yield lambda record: client

    @pytest.fixture
    def engine(self, guard: RefreshGuard, s3_factory: Any, lookup: MagicMock) -> TransferEngine:
        """Create a TransferEngine backed by moto."""
        return TransferEngine(guard, s3_factory, lookup, settings=fast_settings())

    def test_small_upload_single_part(self, engine: TransferEngine) -> None:
        """Sources below the threshold are put in one request."""
        result = engine.upload("personal-files/hello.txt", io.BytesIO(b"Hello, World!"))

        assert result.multipart is False
        assert result.size == 13
        body, size = engine.download("personal-files/hello.txt")
        assert size == 13
        assert body.read() == b"Hello, World!"

    def test_large_upload_multipart(self, engine: TransferEngine) -> None:
        """Sources above the threshold are split into parts."""
        data = os.urandom(11 * MIB)

        result = engine.upload("big.bin", io.BytesIO(data))

        assert result.multipart is True
        assert result.parts == 3
        body, size = engine.download("big.bin")
        assert size == len(data)
        assert body.read() == data

    def test_convenience_upload(self, guard: RefreshGuard, s3_factory: Any, lookup: MagicMock) -> None:
        """The convenience variant uses 5 MiB parts."""
        engine = TransferEngine(guard, s3_factory, lookup, settings=fast_settings(multipart_part_size=50 * MIB))
        data = os.urandom(6 * MIB)

        result = engine.upload_convenience("conv.bin", io.BytesIO(data))

        assert result.multipart is True
        assert result.parts == 2

    def test_explicit_size(self, engine: TransferEngine) -> None:
        """Only ``size`` bytes are uploaded."""
        engine.upload("part.txt", io.BytesIO(b"0123456789"), size=4)

        body, _ = engine.download("part.txt")
        assert body.read() == b"0123"

    def test_download_missing(self, engine: TransferEngine) -> None:
        """Downloading a missing object raises DownloadError."""
        with pytest.raises(DownloadError, match="not found"):
            engine.download("missing.txt")

    def test_download_file(self, engine: TransferEngine, tmp_path: Path) -> None:
        """download_file writes the object, creating parent directories."""
        engine.upload("docs/a.txt", io.BytesIO(b"content"))
        target = tmp_path / "out" / "a.txt"

        assert engine.download_file("docs/a.txt", target) == 7
        assert target.read_bytes() == b"content"

    def test_upload_many(self, engine: TransferEngine) -> None:
        """Every item is uploaded and results keep input order."""
        items = [BatchItem(f"batch/{i}.txt", io.BytesIO(f"file {i}".encode())) for i in range(5)]

        results = engine.upload_many(items)

        assert [r.path for r in results] == [item.path for item in items]
        assert all(r.success for r in results)
        body, _ = engine.download("batch/3.txt")
        assert body.read() == b"file 3"

    def test_upload_many_empty(self, engine: TransferEngine) -> None:
        """An empty batch is a no-op."""
        assert engine.upload_many([]) == []


class TestSinglePartRetry:
    """Tests for the single-part path with a mocked S3 client."""

    @pytest.fixture
    def s3(self) -> MagicMock:
        """Mocked S3 client."""
        return MagicMock()

    @pytest.fixture
    def engine(self, guard: RefreshGuard, s3: MagicMock, lookup: MagicMock) -> TransferEngine:
        """Engine whose factory returns the mock client."""
        return TransferEngine(guard, lambda record: s3, lookup, settings=fast_settings())

    def test_retries_then_succeeds(self, engine: TransferEngine, s3: MagicMock) -> None:
        """Two failures then a success: three attempts."""
        s3.put_object.side_effect = [
            ClientError({"Error": {"Code": "503"}}, "PutObject"),
            ClientError({"Error": {"Code": "503"}}, "PutObject"),
            {"ETag": '"abc"'},
        ]

        result = engine.upload("a.txt", io.BytesIO(b"abc"))

        assert s3.put_object.call_count == 3
        assert result.etag == "abc"
        s3.create_multipart_upload.assert_not_called()

    def test_exhausted(self, engine: TransferEngine, s3: MagicMock) -> None:
        """After three failures the upload fails."""
        s3.put_object.side_effect = ClientError({"Error": {"Code": "503"}}, "PutObject")

        with pytest.raises(UploadError, match="Could not put object in bucket io with key a.txt"):
            engine.upload("a.txt", io.BytesIO(b"abc"))

        assert s3.put_object.call_count == 3

    def test_same_body_every_attempt(self, engine: TransferEngine, s3: MagicMock) -> None:
        """Retries resend the full content."""
        s3.put_object.side_effect = [ClientError({"Error": {"Code": "503"}}, "PutObject"), {}]

        engine.upload("a.txt", io.BytesIO(b"abc"))

        bodies = [c.kwargs["Body"] for c in s3.put_object.call_args_list]
        assert bodies == [b"abc", b"abc"]

    def test_unseekable_without_size(self, engine: TransferEngine) -> None:
        """The size of an unseekable stream must be given."""
        stream = MagicMock()
        stream.seekable.return_value = False

        with pytest.raises(UploadError, match="unseekable"):
            engine.upload("a.txt", stream)

    def test_upload_many_reports_failures(self, engine: TransferEngine, s3: MagicMock) -> None:
        """A failing item does not stop the others."""

        def put_object(**kwargs: Any) -> dict[str, str]:
            if kwargs["Key"] == "bad.txt":
                raise ClientError({"Error": {"Code": "403"}}, "PutObject")
            return {"ETag": '"ok"'}

        s3.put_object.side_effect = put_object
        items = [
            BatchItem("good.txt", io.BytesIO(b"1")),
            BatchItem("bad.txt", io.BytesIO(b"2")),
        ]

        results = engine.upload_many(items)

        assert results[0].success
        assert not results[1].success
        assert isinstance(results[1].error, UploadError)


class TestVerification:
    """Tests for optional existence confirmation."""

    @pytest.fixture
    def s3(self) -> MagicMock:
        """S3 client accepting every put."""
        client = MagicMock()
        client.put_object.return_value = {"ETag": '"e"'}
        return client

    def test_indexed(self, guard: RefreshGuard, s3: MagicMock, lookup: MagicMock) -> None:
        """A found node marks the result as indexed."""
        engine = TransferEngine(guard, lambda r: s3, lookup, settings=fast_settings())

        result = engine.upload("a.txt", io.BytesIO(b"abc"), verify_existence=True)

        assert result.indexed is True
        lookup.assert_called_with("a.txt")

    def test_not_requested(self, guard: RefreshGuard, s3: MagicMock, lookup: MagicMock) -> None:
        """No lookup without verify_existence."""
        engine = TransferEngine(guard, lambda r: s3, lookup, settings=fast_settings())

        result = engine.upload("a.txt", io.BytesIO(b"abc"))

        assert result.indexed is None
        lookup.assert_not_called()

    def test_timeout_reported_not_raised(self, guard: RefreshGuard, s3: MagicMock) -> None:
        """Bytes are stored even if indexing is not confirmed."""
        lookup = MagicMock(return_value=(False, None))
        engine = TransferEngine(guard, lambda r: s3, lookup, settings=fast_settings())

        result = engine.upload("a.txt", io.BytesIO(b"abc"), verify_existence=True)

        assert result.indexed is False
        assert isinstance(result.verification_error, IndexingTimeoutError)
        assert lookup.call_count == 3
