"""Secret storage for credential records.

This module provides:
- CredentialStore: Moves secret fields between a CredentialRecord and the
  OS keyring, including migration of entries written by older releases
- check_keyring: Round-trip self test of the keyring on this host
- save_record: Persist a record, falling back to clear text without keyring

Keyring layout:
- key: "<url>::<user>"
- value: "<id_token>__//__<refresh_token>" for OAuth, the bare secret otherwise
"""

from __future__ import annotations

import logging
from pathlib import Path

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from cloudxfer.client.credentials import CredentialRecord, write_record
from cloudxfer.core.types import AuthKind

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "com.cloudxfer.client"

KEY_SEPARATOR = "::"
VALUE_SEPARATOR = "__//__"

# Key suffixes used by releases that stored one entry per secret type
LEGACY_CLIENT_SUFFIX = "ClientCredentials"
LEGACY_OAUTH_SUFFIX = "IdToken"

NO_KEYRING_MSG = (
    "Could not access local keyring: sensitive information like token or "
    "password will end up stored in clear text on this machine."
)

_SELF_TEST_KEY = f"https://test.example.com{KEY_SEPARATOR}john.doe"
_SELF_TEST_VALUE = "A very complicated value !!#%<{}//\\q"


class CredentialError(Exception):
    """Base exception for credential errors."""


class KeyringUnavailableError(CredentialError):
    """The OS keyring cannot be used on this host."""


class CredentialNotFoundError(CredentialError):
    """No secret found for a record, under any key scheme."""


def make_key(prefix: str, suffix: str) -> str:
    """Build a namespaced keyring key."""
    return f"{prefix}{KEY_SEPARATOR}{suffix}"


def join_value(first: str, second: str) -> str:
    """Encode two secrets into one keyring value."""
    return f"{first}{VALUE_SEPARATOR}{second}"


def split_value(value: str) -> tuple[str, str]:
    """Decode a composite keyring value.

    A value without separator decodes to (value, "").
    """
    first, _, second = value.partition(VALUE_SEPARATOR)
    return first, second


class CredentialStore:
    """Stores the secret part of credential records in the OS keyring."""

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        """Initialize the store.

        Args:
            service: Keyring service name under which entries are written.
        """
        self._service = service

    @property
    def service(self) -> str:
        """Get the keyring service name."""
        return self._service

    def store(self, record: CredentialRecord) -> None:
        """Write the record's secret to the keyring and clear it from the record.

        Args:
            record: Record to store. Its secret fields are emptied on success.

        Raises:
            KeyringUnavailableError: If the keyring rejects the write.
        """
        key = make_key(record.url, record.user)
        if record.auth_type is AuthKind.OAUTH:
            value = join_value(record.id_token, record.refresh_token)
        elif record.auth_type is AuthKind.CLIENT_PASSWORD:
            value = record.password
        else:
            value = record.id_token

        try:
            keyring.set_password(self._service, key, value)
        except KeyringError as e:
            raise KeyringUnavailableError(f"Could not write to keyring: {e}") from e

        record.clear_secrets()
        logger.debug(f"Stored {record.auth_type.value} secret for {key} in keyring")

    def load(self, record: CredentialRecord) -> bool:
        """Populate the record's secret fields from the keyring.

        Falls back to the legacy key schemes when the current key is missing;
        a legacy hit is migrated to the current scheme.

        Returns:
            True if a legacy entry was migrated. The record's auth kind may
            have changed and the caller must rewrite the config file.

        Raises:
            CredentialNotFoundError: If no entry exists under any scheme.
        """
        key = make_key(record.url, record.user)
        value = self._get(key)
        migrated = False
        if value is None:
            migrated = self._migrate_legacy(record)
            if not migrated:
                raise CredentialNotFoundError(f"No credential found in keyring for {key}")
            value = self._get(key)
            if value is None:
                raise CredentialNotFoundError(
                    f"Credential for {key} missing after legacy migration"
                )

        if record.auth_type is AuthKind.OAUTH:
            record.id_token, record.refresh_token = split_value(value)
        elif record.auth_type is AuthKind.CLIENT_PASSWORD:
            record.password = value
        else:
            record.id_token = value
        return migrated

    def clear(self, record: CredentialRecord) -> None:
        """Remove the record's keyring entry. A missing entry is not an error."""
        key = make_key(record.url, record.user)
        try:
            keyring.delete_password(self._service, key)
        except PasswordDeleteError:
            logger.debug(f"No keyring entry to remove for {key}")

    def self_test(self) -> None:
        """Write, read back, verify and delete a throwaway entry.

        Raises:
            KeyringUnavailableError: If any step fails or the value differs.
        """
        logger.info(f"Checking keyring service for {self._service}")
        try:
            keyring.set_password(self._service, _SELF_TEST_KEY, _SELF_TEST_VALUE)
        except KeyringError as e:
            raise KeyringUnavailableError(f"Keyring write failed: {e}") from e

        try:
            value = keyring.get_password(self._service, _SELF_TEST_KEY)
        except KeyringError as e:
            raise KeyringUnavailableError(f"Keyring read failed: {e}") from e
        finally:
            try:
                keyring.delete_password(self._service, _SELF_TEST_KEY)
            except KeyringError:
                logger.debug("Could not remove keyring self-test entry")

        if value != _SELF_TEST_VALUE:
            raise KeyringUnavailableError(
                "Keyring seems to be broken on this machine: retrieved value "
                "differs from the one that was stored"
            )

    def _get(self, key: str) -> str | None:
        try:
            return keyring.get_password(self._service, key)
        except KeyringError as e:
            raise KeyringUnavailableError(f"Keyring read failed: {e}") from e

    def _delete_quietly(self, key: str) -> None:
        try:
            keyring.delete_password(self._service, key)
        except KeyringError:
            logger.debug(f"Could not remove legacy keyring entry {key}")

    def _migrate_legacy(self, record: CredentialRecord) -> bool:
        """Upgrade an entry written under a previous key layout.

        Returns:
            True if a legacy entry was found and rewritten.
        """
        if record.user and not record.password:
            legacy_key = make_key(record.url, LEGACY_CLIENT_SUFFIX)
            value = self._get(legacy_key)
            if value is not None:
                _, record.password = split_value(value)
                record.auth_type = AuthKind.CLIENT_PASSWORD
                self._delete_quietly(legacy_key)
                self.store(record.copy())
                logger.info(f"Migrated legacy client credentials for {record.url}")
                return True

        if not record.has_secret:
            legacy_key = make_key(record.url, LEGACY_OAUTH_SUFFIX)
            value = self._get(legacy_key)
            if value is not None:
                record.id_token, record.refresh_token = split_value(value)
                record.auth_type = AuthKind.OAUTH
                self._delete_quietly(legacy_key)
                self.store(record.copy())
                logger.info(f"Migrated legacy OAuth tokens for {record.url}")
                return True

        return False


_keyring_warning_shown = False


def warn_no_keyring() -> None:
    """Log the clear-text fallback warning, once per process."""
    global _keyring_warning_shown
    if not _keyring_warning_shown:
        logger.warning(NO_KEYRING_MSG)
        _keyring_warning_shown = True


def check_keyring(store: CredentialStore | None = None) -> bool:
    """Check that the keyring works on this host.

    Returns:
        True if the keyring passed the self test, False otherwise (a warning
        is logged once).
    """
    store = store or CredentialStore()
    try:
        store.self_test()
    except KeyringUnavailableError as e:
        logger.debug(f"Keyring self test failed: {e}")
        warn_no_keyring()
        return False
    return True


def save_record(
    record: CredentialRecord,
    config_file: Path,
    store: CredentialStore | None = None,
) -> None:
    """Persist a record: secrets to the keyring, the rest to the config file.

    The live record keeps its secrets. When the keyring is unavailable the
    record is switched to skip_keyring and its secrets go to the file.
    """
    store = store or CredentialStore()
    on_disk = record.copy()
    if not record.skip_keyring:
        try:
            store.store(on_disk)
        except KeyringUnavailableError as e:
            logger.debug(f"Keyring store failed: {e}")
            warn_no_keyring()
            record.skip_keyring = True
            on_disk = record.copy()
    write_record(on_disk, config_file)
