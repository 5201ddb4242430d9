"""Shared types for cloudxfer.

This module defines enums used by both the credential layer and the
transfer layer.
"""

from __future__ import annotations

from enum import Enum


class AuthKind(str, Enum):
    """How a credential record authenticates against the server.

    The value is what gets written to the on-disk config file.
    """

    PERSONAL_ACCESS_TOKEN = "token"
    OAUTH = "oauth"
    CLIENT_PASSWORD = "client-auth"

    @classmethod
    def parse(cls, value: str | None) -> AuthKind | None:
        """Parse a stored auth kind, tolerating empty values."""
        if not value:
            return None
        return cls(value)
