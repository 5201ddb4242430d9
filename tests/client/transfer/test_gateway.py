"""Tests for the S3 gateway client factory."""

from __future__ import annotations

from cloudxfer.client.transfer.gateway import (
    GATEWAY_BUCKET,
    create_s3_client,
    gateway_endpoint,
)
from cloudxfer.core.types import AuthKind


class TestGateway:
    """Tests for gateway endpoint derivation and client creation."""

    def test_endpoint_is_server_url(self, record_factory) -> None:  # type: ignore[no-untyped-def]
        """The gateway lives at the server URL with the default bucket."""
        endpoint = gateway_endpoint(record_factory(url="https://files.example.com/"))
        assert endpoint.endpoint_url == "https://files.example.com"
        assert endpoint.bucket == GATEWAY_BUCKET == "io"
        assert endpoint.region == "us-east-1"

    def test_client_uses_token_as_access_key(self, record_factory) -> None:  # type: ignore[no-untyped-def]
        """The bearer token is the access key id."""
        client = create_s3_client(record_factory(AuthKind.PERSONAL_ACCESS_TOKEN, id_token="pat-42"))

        credentials = client._request_signer._credentials
        assert credentials.access_key == "pat-42"
        assert credentials.secret_key == "gatewaysecret"

    def test_client_configuration(self, record_factory) -> None:  # type: ignore[no-untyped-def]
        """Path-style addressing against the server, without botocore retries."""
        client = create_s3_client(record_factory())

        assert client.meta.endpoint_url == "https://files.example.com"
        assert client.meta.region_name == "us-east-1"
        assert client.meta.config.s3["addressing_style"] == "path"
        assert client.meta.config.retries["total_max_attempts"] == 1
