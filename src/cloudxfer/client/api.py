"""HTTP client for the server REST API.

This module provides:
- HTTPClient: Authenticated REST calls, refreshing the token when needed
- TreeNode: Node metadata returned by the tree service
- Node lookup used to confirm that an uploaded object is indexed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from cloudxfer import __version__

if TYPE_CHECKING:
    from cloudxfer.client.auth import RefreshGuard

logger = logging.getLogger(__name__)

USER_AGENT = f"cloudxfer/{__version__}"


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


@dataclass
class TreeNode:
    """Node metadata from the tree service."""

    path: str
    uuid: str
    is_leaf: bool
    size: int
    mtime: int
    etag: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TreeNode:
        """Create from API response dictionary.

        int64 fields are serialized as strings by the server.
        """
        return cls(
            path=data.get("Path", ""),
            uuid=data.get("Uuid", ""),
            is_leaf=data.get("Type", "LEAF") == "LEAF",
            size=int(data.get("Size") or 0),
            mtime=int(data.get("MTime") or 0),
            etag=data.get("Etag", ""),
        )


class HTTPClient:
    """Authenticated client for the server REST API."""

    def __init__(
        self,
        guard: RefreshGuard,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            guard: Refresh guard providing the bearer token.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        record = guard.snapshot()
        self._guard = guard
        self._client = httpx.Client(
            base_url=record.url,
            timeout=timeout,
            verify=not record.skip_verify,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _auth_headers(self) -> dict[str, str]:
        """Build the Authorization header, refreshing the token first."""
        self._guard.refresh_and_persist_if_needed()
        token = self._guard.snapshot().id_token
        return {"Authorization": f"Bearer {token}"}

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError("Resource not found", 404)
        if response.status_code >= 400:
            try:
                detail = response.json().get("Title") or "Unknown error"
            except ValueError:
                detail = response.text or "Unknown error"
            raise APIError(detail, response.status_code)
        return response

    def stat_node(self, path: str) -> TreeNode:
        """Get node metadata by path.

        Args:
            path: Node path, with or without leading slash.

        Returns:
            Node metadata.

        Raises:
            NotFoundError: If the node is not (yet) indexed.
        """
        response = self._handle_response(
            self._client.get(
                f"/a/tree/stat/{path.lstrip('/')}",
                headers=self._auth_headers(),
            )
        )
        node = response.json().get("Node")
        if not node:
            raise NotFoundError(f"Node not found: {path}", 404)
        return TreeNode.from_dict(node)

    def lookup(self, path: str) -> tuple[bool, TreeNode | None]:
        """Check whether a node exists.

        Any API or transport error is reported as "not found" so that callers
        polling for indexing can simply retry.

        Returns:
            (found, node) tuple.
        """
        try:
            return True, self.stat_node(path)
        except (APIError, httpx.HTTPError) as e:
            logger.debug(f"Lookup of {path} failed: {e}")
            return False, None
