"""Post-upload consistency check.

The gateway acknowledges an object before the server has indexed it. The
verifier polls the metadata lookup until the node shows up.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from cloudxfer.client.api import TreeNode
from cloudxfer.client.transfer.retry import RetryAttempt, retry_with_policy
from cloudxfer.client.transfer.types import IndexingTimeoutError
from cloudxfer.core.config import RetryPolicy

logger = logging.getLogger(__name__)

# Type alias for metadata lookups: path -> (found, node)
MetadataLookup = Callable[[str], tuple[bool, TreeNode | None]]


class _NotIndexedYet(Exception):
    """The lookup did not find the node."""


class IndexVerifier:
    """Wait until an uploaded path is visible through the metadata lookup."""

    def __init__(self, lookup: MetadataLookup, policy: RetryPolicy | None = None) -> None:
        """Initialize the verifier.

        Args:
            lookup: Metadata lookup returning (found, node).
            policy: Attempts and delay between lookups.
        """
        self._lookup = lookup
        self._policy = policy or RetryPolicy(3, 3.0)

    def wait_until_indexed(self, path: str) -> TreeNode | None:
        """Poll the lookup until the node is found.

        Errors other than "not found" (e.g. a failed credential refresh)
        propagate immediately.

        Returns:
            The node descriptor returned by the lookup.

        Raises:
            IndexingTimeoutError: If every attempt missed the node.
        """
        logger.info(f"Waiting for {path} to be indexed...")

        def check() -> TreeNode | None:
            found, node = self._lookup(path)
            if not found:
                raise _NotIndexedYet(path)
            return node

        def report(attempt: RetryAttempt) -> None:
            logger.debug(f"{path} not indexed yet (attempt {attempt.attempt}/{attempt.max_attempts})")

        try:
            node = retry_with_policy(
                check,
                self._policy,
                on_failure=report,
                retryable_exceptions=(_NotIndexedYet,),
            )
        except _NotIndexedYet as e:
            raise IndexingTimeoutError(path, self._policy.max_attempts) from e

        logger.info(f"{path} correctly indexed")
        return node
