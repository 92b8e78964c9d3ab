"""Shared-folder remote store.

Keeps the snapshot document as a JSON file in a directory that other devices
also see (a network share or a folder synced by another tool). Writes are
atomic: the file is written next to its target and renamed over it.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from tabsync.client.sync.types import (
    NotFoundError,
    RetrieveResult,
    StoreError,
    StoreResult,
    now_ms,
)

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: Any) -> bytes:
    """Atomically replace path with the JSON encoding of data.

    Returns:
        The bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    body = json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(path.parent),
            prefix=".tmp_",
            suffix=".json",
            delete=False,
        ) as tmp_file:
            tmp_file.write(body)
            tmp_path = Path(tmp_file.name)
        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
    return body


class DirectoryRemoteStore:
    """Remote store backed by a directory."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, name: str) -> Path:
        path = (self._root / name).resolve()
        if path.parent != self._root.resolve():
            raise StoreError(f"Invalid snapshot name: {name}")
        return path

    def retrieve(self, name: str) -> RetrieveResult:
        """Read a snapshot document.

        Raises:
            NotFoundError: If the file does not exist.
            StoreError: If it cannot be read or decoded.
        """
        path = self._path(name)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"Snapshot not found: {path}") from e
        except OSError as e:
            raise StoreError(f"Failed to read {path}: {e}") from e

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise StoreError(f"Snapshot {path} is not valid JSON") from e

        stat = path.stat()
        return RetrieveResult(
            data=data,
            metadata={"size": len(raw), "modified": int(stat.st_mtime * 1000), "path": str(path)},
        )

    def store(
        self,
        name: str,
        data: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> StoreResult:
        """Write a snapshot document atomically."""
        path = self._path(name)
        try:
            body = write_json_atomic(path, data)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}") from e

        message = (options or {}).get("commit_message")
        logger.info("Stored snapshot %s (%d bytes)%s", path, len(body), f": {message}" if message else "")
        return StoreResult(
            checksum=hashlib.sha256(body).hexdigest(),
            size=len(body),
            timestamp=now_ms(),
        )
