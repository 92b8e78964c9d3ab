"""HTTP remote store for tab snapshots.

This module provides:
- HTTPRemoteStore: Stores the snapshot document on an HTTP server
- StoreError, AuthenticationError, NotFoundError: Store failures

API:
    GET  /health                 -> 200 when the server is up
    GET  /api/snapshots/{name}   -> snapshot JSON (404 if none yet)
    PUT  /api/snapshots/{name}   -> store snapshot JSON
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

import httpx

from tabsync.client.sync.retry import (
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_RETRIES,
    NETWORK_EXCEPTIONS,
    retry_with_backoff,
)
from tabsync.client.sync.types import (
    AuthenticationError,
    NotFoundError,
    RetrieveResult,
    StoreError,
    StoreResult,
    now_ms,
)
from tabsync.core.config import SyncConfig

logger = logging.getLogger(__name__)

__all__ = [
    "AuthenticationError",
    "HTTPRemoteStore",
    "NotFoundError",
    "StoreError",
]


class HTTPRemoteStore:
    """HTTP client for a snapshot server.

    Network errors are retried with exponential backoff; HTTP errors are not.
    """

    def __init__(
        self,
        config: SyncConfig,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    ) -> None:
        """Initialize the store client.

        Args:
            config: Store URL, token, timeout and SSL settings.
            max_retries: Retries for network errors.
            initial_backoff: First retry delay in seconds.
        """
        self._config = config
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff
        headers = {"Accept": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._client = httpx.Client(
            base_url=config.store_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers=headers,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPRemoteStore:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying network errors."""
        try:
            response = retry_with_backoff(
                lambda: self._client.request(method, url, **kwargs),
                max_retries=self._max_retries,
                initial_backoff=self._initial_backoff,
                retryable_exceptions=NETWORK_EXCEPTIONS,
            )
        except httpx.RequestError as e:
            raise StoreError(f"Network error: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError("Snapshot not found", 404)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", "Unknown error")
            except ValueError:
                detail = response.text or "Unknown error"
            raise StoreError(detail, response.status_code)
        return response

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Snapshot operations ===

    def retrieve(self, name: str) -> RetrieveResult:
        """Fetch a snapshot document.

        Args:
            name: Snapshot name.

        Returns:
            Decoded document and response metadata.

        Raises:
            NotFoundError: If no snapshot exists yet.
            StoreError: On any other failure.
        """
        response = self._request("GET", f"/api/snapshots/{name}")
        try:
            data = response.json()
        except ValueError as e:
            raise StoreError(f"Snapshot {name} is not valid JSON") from e

        metadata = {
            "size": len(response.content),
            "etag": response.headers.get("ETag"),
            "last_modified": response.headers.get("Last-Modified"),
        }
        logger.debug("Retrieved snapshot %s (%d bytes)", name, metadata["size"])
        return RetrieveResult(data=data, metadata=metadata)

    def store(
        self,
        name: str,
        data: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> StoreResult:
        """Store a snapshot document.

        Args:
            name: Snapshot name.
            data: JSON document.
            options: Optional settings (commit_message).

        Returns:
            Checksum and size of the stored body.
        """
        body = json.dumps(data, separators=(",", ":")).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        message = (options or {}).get("commit_message")
        if message:
            headers["X-Commit-Message"] = message

        self._request("PUT", f"/api/snapshots/{name}", content=body, headers=headers)
        result = StoreResult(
            checksum=hashlib.sha256(body).hexdigest(),
            size=len(body),
            timestamp=now_ms(),
        )
        logger.info("Stored snapshot %s (%d bytes)", name, result.size)
        return result
