"""Token refresh and the credential refresh guard.

This module provides:
- TokenRefresher: Obtains new tokens from the identity endpoint
- RefreshGuard: Serializes expiry checks, refreshes and their persistence

All concurrent transfers of a process share one RefreshGuard. Readers get
snapshots of the record, never the live object.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from cloudxfer.client.credentials import CredentialRecord, write_record
from cloudxfer.client.keystore import CredentialError, CredentialStore, save_record
from cloudxfer.core.config import DEFAULT_REFRESH_MARGIN
from cloudxfer.core.types import AuthKind

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT_PATH = "/oidc/oauth2/token"
DEFAULT_CLIENT_ID = "cloudxfer"
# Lifetime assumed when the token endpoint omits expires_in
DEFAULT_TOKEN_LIFETIME = 3600
PASSWORD_GRANT_SCOPE = "openid email profile offline"


class CredentialRefreshError(CredentialError):
    """The identity endpoint could not renew the credential.

    This is fatal for the running process: transfers must not go on with an
    expired token.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        # Set when a transfer aborted because of this error and the abort failed too
        self.abort_error: Exception | None = None


@dataclass
class TokenResponse:
    """Tokens returned by the identity endpoint."""

    id_token: str
    refresh_token: str
    expires_at: int

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        previous_refresh_token: str,
        now: float,
    ) -> TokenResponse:
        """Create from the token endpoint JSON payload."""
        token = data.get("id_token") or data.get("access_token")
        if not token:
            raise CredentialRefreshError("Token endpoint returned no token")
        expires_in = data.get("expires_in")
        if not expires_in:
            logger.warning(
                f"Token endpoint returned no expiry, assuming {DEFAULT_TOKEN_LIFETIME}s"
            )
            expires_in = DEFAULT_TOKEN_LIFETIME
        return cls(
            id_token=token,
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            expires_at=int(now + float(expires_in)),
        )


class TokenRefresher:
    """Client for the OAuth2 token endpoint of the server."""

    def __init__(
        self,
        client_id: str = DEFAULT_CLIENT_ID,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the refresher.

        Args:
            client_id: OAuth client identifier registered on the server.
            timeout: Request timeout in seconds.
            clock: Time source, used to compute the new expiry.
        """
        self._client_id = client_id
        self._timeout = timeout
        self._clock = clock

    def refresh(self, record: CredentialRecord) -> TokenResponse:
        """Obtain a new token for the record.

        OAuth records exchange their refresh token; client-password records
        log in again with their password.

        Args:
            record: Record holding the refresh token or password.

        Returns:
            The new tokens.

        Raises:
            CredentialRefreshError: On transport error, error status or a
                payload without token.
        """
        if record.auth_type is AuthKind.OAUTH:
            if not record.refresh_token:
                raise CredentialRefreshError(
                    f"No refresh token available for {record.user}@{record.url}"
                )
            form = {
                "grant_type": "refresh_token",
                "refresh_token": record.refresh_token,
                "client_id": self._client_id,
            }
        elif record.auth_type is AuthKind.CLIENT_PASSWORD:
            if not record.password:
                raise CredentialRefreshError(
                    f"No password available for {record.user}@{record.url}"
                )
            form = {
                "grant_type": "password",
                "username": record.user,
                "password": record.password,
                "scope": PASSWORD_GRANT_SCOPE,
                "client_id": self._client_id,
            }
        else:
            raise CredentialRefreshError(
                f"Credentials of kind {record.auth_type.value} cannot be refreshed"
            )

        return self._request_token(record, form)

    def _request_token(
        self, record: CredentialRecord, form: dict[str, str]
    ) -> TokenResponse:
        url = f"{record.url}{TOKEN_ENDPOINT_PATH}"
        try:
            with httpx.Client(
                timeout=self._timeout, verify=not record.skip_verify
            ) as client:
                response = client.post(
                    url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise CredentialRefreshError(f"Could not reach {url}: {e}") from e

        if response.status_code >= 400:
            raise CredentialRefreshError(
                f"Token refresh rejected with status {response.status_code}",
                response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise CredentialRefreshError("Token endpoint returned invalid JSON") from e
        return TokenResponse.from_dict(payload, record.refresh_token, self._clock())


class RefreshGuard:
    """Single authority over the active credential record.

    The check-then-refresh-then-persist sequence runs under one lock, so
    concurrent callers never refresh twice nor write a stale record after a
    fresh one. Each successful refresh bumps the record version.
    """

    def __init__(
        self,
        record: CredentialRecord,
        config_file: Path | None = None,
        store: CredentialStore | None = None,
        refresher: TokenRefresher | None = None,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the guard.

        Args:
            record: Active record; the guard takes ownership of it.
            config_file: Where refreshed records are written (None: memory only).
            store: Keyring store for refreshed secrets.
            refresher: Token endpoint client.
            refresh_margin: Refresh tokens expiring within this many seconds.
            clock: Time source.
        """
        self._record = record.copy()
        self._config_file = config_file
        self._store = store or CredentialStore()
        self._refresher = refresher or TokenRefresher(clock=clock)
        self._margin = refresh_margin
        self._clock = clock
        self._lock = threading.Lock()
        self._version = 0

    @property
    def version(self) -> int:
        """Get the number of refreshes (or replacements) applied so far."""
        with self._lock:
            return self._version

    def snapshot(self) -> CredentialRecord:
        """Get a copy of the current record."""
        with self._lock:
            return self._record.copy()

    def replace(self, record: CredentialRecord) -> None:
        """Swap in a new record (login, logout)."""
        with self._lock:
            self._record = record.copy()
            self._version += 1

    def persist(self, record: CredentialRecord | None = None) -> None:
        """Save a record (the active one by default) and make it active.

        Saving and swapping happen under the lock, so a concurrent refresh
        either completes before (and is saved) or runs after.

        Raises:
            ValueError: If the guard has no config file.
        """
        if self._config_file is None:
            raise ValueError("No config file configured for this credential")
        with self._lock:
            if record is not None:
                self._record = record.copy()
                self._version += 1
            # save_record may switch the live record to clear-text storage
            save_record(self._record, self._config_file, self._store)

    def reload(self) -> CredentialRecord:
        """Re-read the active record's secrets from the keyring.

        A legacy keyring entry found on the way is migrated and the config
        file rewritten with the record's new auth kind.

        Returns:
            A snapshot of the reloaded record.
        """
        with self._lock:
            record = self._record.copy()
            migrated = False
            if not record.skip_keyring:
                migrated = self._store.load(record)
            self._record = record
            self._version += 1
            if migrated and self._config_file is not None:
                write_record(record, self._config_file)
            return record.copy()

    def logout(self) -> CredentialRecord:
        """Remove the keyring entry, zero the secrets and rewrite the file.

        Returns:
            A snapshot of the cleared record.
        """
        with self._lock:
            record = self._record.copy()
            self._store.clear(record)
            record.clear_secrets()
            record.token_expires_at = 0
            self._record = record
            self._version += 1
            if self._config_file is not None:
                write_record(record, self._config_file)
            return record.copy()

    def refresh_and_persist_if_needed(self) -> bool:
        """Refresh the credential if it is about to expire, then persist it.

        Returns:
            True if a refresh happened; callers holding clients built from the
            previous token must rebuild them.

        Raises:
            CredentialRefreshError: If the refresh failed.
        """
        with self._lock:
            if not self._record.is_expiring(self._margin, self._clock()):
                return False

            logger.info(f"Refreshing credential for {self._record.user}@{self._record.url}")
            try:
                tokens = self._refresher.refresh(self._record)
            except CredentialRefreshError as e:
                logger.error(f"Could not refresh authentication token: {e}")
                raise

            updated = self._record.copy()
            updated.id_token = tokens.id_token
            updated.refresh_token = tokens.refresh_token
            updated.token_expires_at = tokens.expires_at
            self._record = updated
            self._version += 1

            if self._config_file is not None:
                save_record(self._record, self._config_file, self._store)
            logger.info(f"Credential refreshed, valid until {tokens.expires_at}")
            return True
