"""Client context threaded through every core operation.

This module provides:
- ClientContext: Owns the settings, the credential refresh guard, the
  keyring store and the lazily created REST and transfer clients

One context is created per process (or per account) and passed explicitly;
there is no module-level default configuration.
"""

from __future__ import annotations

import logging
from pathlib import Path

from cloudxfer.client.api import HTTPClient, TreeNode
from cloudxfer.client.auth import RefreshGuard, TokenRefresher
from cloudxfer.client.credentials import CredentialRecord, load_record, write_record
from cloudxfer.client.keystore import CredentialStore
from cloudxfer.client.transfer.engine import TransferEngine
from cloudxfer.client.transfer.gateway import S3ClientFactory, create_s3_client
from cloudxfer.core.config import TransferSettings, get_config_file

logger = logging.getLogger(__name__)


class ClientContext:
    """Everything a transfer needs, in one explicitly passed object."""

    def __init__(
        self,
        record: CredentialRecord,
        settings: TransferSettings | None = None,
        config_file: Path | None = None,
        store: CredentialStore | None = None,
        refresher: TokenRefresher | None = None,
        s3_client_factory: S3ClientFactory = create_s3_client,
    ) -> None:
        """Initialize the context.

        Args:
            record: Active credential record, secrets populated.
            settings: Transfer settings.
            config_file: Config file rewritten after refreshes (None: memory only).
            store: Keyring store.
            refresher: Token endpoint client.
            s3_client_factory: Builds S3 clients from credential snapshots.
        """
        self.settings = settings or TransferSettings()
        self.config_file = config_file
        self.store = store or CredentialStore()
        self.s3_client_factory = s3_client_factory
        self.guard = RefreshGuard(
            record,
            config_file=config_file,
            store=self.store,
            refresher=refresher or TokenRefresher(timeout=self.settings.timeout),
            refresh_margin=self.settings.refresh_margin,
        )
        self._http: HTTPClient | None = None
        self._engine: TransferEngine | None = None

    @classmethod
    def from_record(
        cls,
        record: CredentialRecord,
        settings: TransferSettings | None = None,
        s3_client_factory: S3ClientFactory = create_s3_client,
    ) -> ClientContext:
        """Create a context for a record that is not persisted."""
        return cls(record, settings=settings, s3_client_factory=s3_client_factory)

    @classmethod
    def from_config_file(
        cls,
        config_dir: Path | str | None = None,
        settings: TransferSettings | None = None,
        store: CredentialStore | None = None,
        s3_client_factory: S3ClientFactory = create_s3_client,
    ) -> ClientContext:
        """Load the active record from disk and the keyring.

        Raises:
            FileNotFoundError: If no configuration was saved yet.
            ConfigFileError: If the config file is invalid.
            CredentialNotFoundError: If the keyring holds no secret for it.
        """
        config_file = get_config_file(config_dir)
        record = load_record(config_file)
        store = store or CredentialStore()
        if not record.skip_keyring and store.load(record):
            # the migration may have changed the auth kind
            write_record(record, config_file)
            logger.info(f"Rewrote {config_file} after keyring migration")
        logger.debug(f"Loaded configuration for {record.user}@{record.url} from {config_file}")
        return cls(
            record,
            settings=settings,
            config_file=config_file,
            store=store,
            s3_client_factory=s3_client_factory,
        )

    # === Credential operations ===

    def current_record(self) -> CredentialRecord:
        """Get a snapshot of the active record."""
        return self.guard.snapshot()

    def refresh_and_persist_if_needed(self) -> bool:
        """Refresh the credential if needed. See RefreshGuard."""
        return self.guard.refresh_and_persist_if_needed()

    def store_credential(self, record: CredentialRecord | None = None) -> None:
        """Persist a record (the active one by default) and make it active."""
        self.guard.persist(record)

    def load_credential(self) -> CredentialRecord:
        """Reload the active record's secrets from the keyring."""
        return self.guard.reload()

    def clear_credential(self) -> None:
        """Log out: remove the keyring entry, zero secrets, rewrite the file."""
        record = self.guard.logout()
        logger.info(f"Cleared credential for {record.user}@{record.url}")

    # === Collaborators ===

    @property
    def http(self) -> HTTPClient:
        """Get the REST client, creating it on first use."""
        if self._http is None:
            self._http = HTTPClient(self.guard, timeout=self.settings.timeout)
        return self._http

    def metadata_lookup(self, path: str) -> tuple[bool, TreeNode | None]:
        """Check whether a node exists on the server."""
        return self.http.lookup(path)

    @property
    def transfers(self) -> TransferEngine:
        """Get the transfer engine, creating it on first use."""
        if self._engine is None:
            self._engine = TransferEngine(
                self.guard,
                self.s3_client_factory,
                self.metadata_lookup,
                settings=self.settings,
            )
        return self._engine

    def close(self) -> None:
        """Close the REST client."""
        if self._http is not None:
            self._http.close()
            self._http = None

    def __enter__(self) -> ClientContext:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()
