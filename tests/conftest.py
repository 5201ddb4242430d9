"""Shared fixtures: in-memory keyring backends and credential records."""

from __future__ import annotations

from collections.abc import Iterator

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from cloudxfer.client.credentials import CredentialRecord
from cloudxfer.core.types import AuthKind


class MemoryKeyring(KeyringBackend):
    """Keyring backend storing entries in a dict."""

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> str | None:
        return self.entries.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.entries[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError(f"No entry for {username}") from None


class BrokenKeyring(KeyringBackend):
    """Keyring backend that fails every operation."""

    priority = 1  # type: ignore[assignment]

    def get_password(self, service: str, username: str) -> str | None:
        raise KeyringError("no backend")

    def set_password(self, service: str, username: str, password: str) -> None:
        raise KeyringError("no backend")

    def delete_password(self, service: str, username: str) -> None:
        raise KeyringError("no backend")


@pytest.fixture
def memory_keyring() -> Iterator[MemoryKeyring]:
    """Install an in-memory keyring for the duration of a test."""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def broken_keyring() -> Iterator[BrokenKeyring]:
    """Install a keyring that rejects every call."""
    previous = keyring.get_keyring()
    backend = BrokenKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture(autouse=True)
def reset_keyring_warning(monkeypatch: pytest.MonkeyPatch) -> None:
    """Let every test observe the one-time keyring warning."""
    monkeypatch.setattr("cloudxfer.client.keystore._keyring_warning_shown", False)


def make_record(auth_type: AuthKind = AuthKind.OAUTH, **kwargs: object) -> CredentialRecord:
    """Create a credential record for tests."""
    defaults: dict[str, object] = {
        "url": "https://files.example.com",
        "user": "alice",
        "auth_type": auth_type,
    }
    if auth_type is AuthKind.OAUTH:
        defaults.update(id_token="id-1", refresh_token="refresh-1", token_expires_at=2_000_000_000)
    elif auth_type is AuthKind.CLIENT_PASSWORD:
        defaults.update(password="s3cret")
    else:
        defaults.update(id_token="pat-1")
    defaults.update(kwargs)
    return CredentialRecord(**defaults)  # type: ignore[arg-type]


@pytest.fixture
def record_factory():  # type: ignore[no-untyped-def]
    """Expose make_record to tests."""
    return make_record
