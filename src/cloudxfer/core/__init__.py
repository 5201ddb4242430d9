"""Core module - Settings, config locations and shared types."""

from cloudxfer.core.config import (
    CONVENIENCE_PART_SIZE,
    MULTIPART_PART_SIZE,
    RetryPolicy,
    TransferSettings,
    get_config_dir,
    get_config_file,
)
from cloudxfer.core.types import AuthKind

__all__ = [
    # Config
    "CONVENIENCE_PART_SIZE",
    "MULTIPART_PART_SIZE",
    "RetryPolicy",
    "TransferSettings",
    "get_config_dir",
    "get_config_file",
    # Types
    "AuthKind",
]
