"""S3-compatible gateway client for the file service.

The server exposes its files through an S3 gateway at its own URL. The
gateway authenticates requests by the bearer token carried as access key id,
so a client must be rebuilt whenever the token is refreshed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.config import Config

from cloudxfer import __version__
from cloudxfer.client.credentials import CredentialRecord

logger = logging.getLogger(__name__)

GATEWAY_BUCKET = "io"
GATEWAY_SECRET = "gatewaysecret"
GATEWAY_REGION = "us-east-1"

# Type alias for S3 client factories
S3ClientFactory = Callable[[CredentialRecord], Any]


@dataclass(frozen=True)
class GatewayEndpoint:
    """Where and how to reach the storage gateway."""

    endpoint_url: str
    bucket: str = GATEWAY_BUCKET
    region: str = GATEWAY_REGION


def gateway_endpoint(record: CredentialRecord) -> GatewayEndpoint:
    """Derive the gateway endpoint from the server URL."""
    return GatewayEndpoint(endpoint_url=record.url)


def create_s3_client(record: CredentialRecord) -> Any:
    """Create a boto3 S3 client authenticated with the record's token.

    botocore retries are disabled: failed parts abort the upload and
    single-part uploads are retried by the caller.

    Args:
        record: Snapshot of the active credential record.

    Returns:
        boto3 S3 client.
    """
    endpoint = gateway_endpoint(record)
    session = boto3.session.Session(
        aws_access_key_id=record.id_token,
        aws_secret_access_key=GATEWAY_SECRET,
        region_name=endpoint.region,
    )
    config = Config(
        region_name=endpoint.region,
        signature_version="s3v4",
        s3={"addressing_style": "path"},
        retries={"total_max_attempts": 1, "mode": "standard"},
        user_agent_extra=f"cloudxfer/{__version__}",
        request_checksum_calculation="when_required",
        response_checksum_validation="when_required",
    )
    logger.debug(f"Creating S3 client for gateway {endpoint.endpoint_url}")
    return session.client(
        "s3",
        config=config,
        endpoint_url=endpoint.endpoint_url,
        verify=not record.skip_verify,
    )
