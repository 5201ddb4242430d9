"""Shared configuration classes for cloudxfer.

This module defines the settings threaded through every transfer and
credential operation, plus resolution of the per-application config
directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

APP_NAME = "cloudxfer"
CONFIG_FILE_NAME = "config.json"
CONFIG_DIR_ENV = "CLOUDXFER_CONFIG_DIR"

MIB = 1024 * 1024

# Part sizes per upload variant
MULTIPART_PART_SIZE = 50 * MIB
CONVENIENCE_PART_SIZE = 5 * MIB

# Credentials expiring within this many seconds are refreshed
DEFAULT_REFRESH_MARGIN = 10.0


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry configuration.

    Attributes:
        max_attempts: Total number of attempts (not retries), at least 1.
        delay: Seconds to sleep between two attempts.
    """

    max_attempts: int = 3
    delay: float = 2.0

    def __post_init__(self) -> None:
        """Validate the policy."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")


@dataclass
class TransferSettings:
    """Settings for transfers and authenticated calls.

    Attributes:
        multipart_part_size: Part size of the high-level multipart upload.
        convenience_part_size: Part size of the convenience uploader.
        multipart_threshold: Sources smaller than this take the single-part path.
        put_retry: Retry policy for single-part uploads.
        verify_retry: Retry policy for the post-upload existence check.
        refresh_margin: Seconds before expiry at which a token is refreshed.
        timeout: REST request timeout in seconds.
        max_workers: Concurrent transfers for batch operations.
    """

    multipart_part_size: int = MULTIPART_PART_SIZE
    convenience_part_size: int = CONVENIENCE_PART_SIZE
    multipart_threshold: int | None = None
    put_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(3, 2.0))
    verify_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(3, 3.0))
    refresh_margin: float = DEFAULT_REFRESH_MARGIN
    timeout: float = 30.0
    max_workers: int = 4

    def __post_init__(self) -> None:
        """Default the threshold to the multipart part size."""
        if self.multipart_part_size <= 0 or self.convenience_part_size <= 0:
            raise ValueError("part sizes must be positive")
        if self.multipart_threshold is None:
            self.multipart_threshold = self.multipart_part_size


def get_config_dir(override: Path | str | None = None) -> Path:
    """Get the configuration directory for cloudxfer.

    Resolution order: explicit override, ``CLOUDXFER_CONFIG_DIR``,
    ``%APPDATA%`` on Windows, then ``$XDG_CONFIG_HOME`` (``~/.config``).

    Args:
        override: Optional explicit directory.

    Returns:
        Path to the config directory (not created).
    """
    if override:
        return Path(override).expanduser()
    env_override = os.environ.get(CONFIG_DIR_ENV)
    if env_override:
        return Path(env_override).expanduser()
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / APP_NAME


def get_config_file(override: Path | str | None = None) -> Path:
    """Get the path to the config file."""
    return get_config_dir(override) / CONFIG_FILE_NAME
