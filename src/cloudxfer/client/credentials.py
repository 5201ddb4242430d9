"""Credential record and its on-disk config file.

This module provides:
- CredentialRecord: Connection and secret material for one server account
- load_record / write_record: JSON persistence of the non-secret fields

Secret fields (id_token, refresh_token, password) are only written to the
config file when the record opts out of the keyring.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cloudxfer import __version__
from cloudxfer.core.config import DEFAULT_REFRESH_MARGIN
from cloudxfer.core.types import AuthKind

logger = logging.getLogger(__name__)

SECRET_FIELDS = ("id_token", "refresh_token", "password")


class ConfigFileError(Exception):
    """Raised when the config file cannot be read or is malformed."""


@dataclass
class CredentialRecord:
    """Everything needed to authenticate against one server.

    Attributes:
        url: Server endpoint URL (trailing slash stripped).
        user: Subject identity (login).
        auth_type: How the record authenticates.
        id_token: Bearer token (personal access token or OAuth id token).
        refresh_token: OAuth refresh token.
        password: Password for the client-password kind.
        token_expires_at: Unix timestamp at which id_token expires (0 = unknown).
        skip_keyring: Keep secrets in the config file instead of the keyring.
        skip_verify: Skip TLS certificate verification.
        use_token_cache: When False, tokens are refreshed at every check.
    """

    url: str
    user: str = ""
    auth_type: AuthKind = AuthKind.PERSONAL_ACCESS_TOKEN
    id_token: str = ""
    refresh_token: str = ""
    password: str = ""
    token_expires_at: int = 0
    skip_keyring: bool = False
    skip_verify: bool = False
    use_token_cache: bool = True

    def __post_init__(self) -> None:
        """Normalize URL and auth kind."""
        self.url = self.url.rstrip("/")
        if not isinstance(self.auth_type, AuthKind):
            self.auth_type = AuthKind(self.auth_type)

    @property
    def has_secret(self) -> bool:
        """Check whether any secret field is populated in memory."""
        return any(getattr(self, name) for name in SECRET_FIELDS)

    def copy(self) -> CredentialRecord:
        """Return an independent copy (a snapshot)."""
        return dataclasses.replace(self)

    def clear_secrets(self) -> None:
        """Zero every secret field in place."""
        for name in SECRET_FIELDS:
            setattr(self, name, "")

    def is_expiring(
        self,
        margin: float = DEFAULT_REFRESH_MARGIN,
        now: float | None = None,
    ) -> bool:
        """Check whether the token must be renewed.

        Personal access tokens never expire at this layer. Client-password
        records also need a token when none was negotiated yet.
        """
        if self.auth_type is AuthKind.PERSONAL_ACCESS_TOKEN:
            return False
        if not self.use_token_cache or not self.id_token:
            return True
        now = time.time() if now is None else now
        return self.token_expires_at - now <= margin

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the config file.

        Secrets are included only when the keyring is skipped.
        """
        data: dict[str, Any] = {
            "url": self.url,
            "user": self.user,
            "auth_type": self.auth_type.value,
            "token_expires_at": self.token_expires_at,
            "skip_keyring": self.skip_keyring,
            "skip_verify": self.skip_verify,
            "use_token_cache": self.use_token_cache,
            "created_at_version": __version__,
        }
        for name in SECRET_FIELDS:
            data[name] = getattr(self, name) if self.skip_keyring else ""
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CredentialRecord:
        """Create from a config file dictionary."""
        return cls(
            url=data["url"],
            user=data.get("user", ""),
            auth_type=AuthKind.parse(data.get("auth_type"))
            or AuthKind.PERSONAL_ACCESS_TOKEN,
            id_token=data.get("id_token", ""),
            refresh_token=data.get("refresh_token", ""),
            password=data.get("password", ""),
            token_expires_at=int(data.get("token_expires_at", 0)),
            skip_keyring=bool(data.get("skip_keyring", False)),
            skip_verify=bool(data.get("skip_verify", False)),
            use_token_cache=bool(data.get("use_token_cache", True)),
        )


def load_record(config_file: Path) -> CredentialRecord:
    """Load the active credential record from the config file.

    Args:
        config_file: Path to config.json.

    Returns:
        The record; secrets are populated only if they were stored in clear.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigFileError: If the file is not valid.
    """
    try:
        data = json.loads(config_file.read_text())
    except json.JSONDecodeError as e:
        raise ConfigFileError(f"Corrupted config file {config_file}: {e}") from e

    try:
        return CredentialRecord.from_dict(data)
    except (KeyError, ValueError, TypeError) as e:
        raise ConfigFileError(f"Invalid config file format: {e}") from e


def write_record(record: CredentialRecord, config_file: Path) -> None:
    """Write the record to the config file with owner-only permissions."""
    config_file.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(record.to_dict(), indent=2)
    fd = os.open(config_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(payload)
    logger.debug(f"Wrote configuration for {record.user}@{record.url} to {config_file}")
