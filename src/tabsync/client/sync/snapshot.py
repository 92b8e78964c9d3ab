"""Snapshot wire format.

This module provides:
- TabModel, DeviceMetadataModel, SnapshotModel: pydantic schemas for the
  JSON document kept in the remote store
- create_snapshot: Build a checksummed snapshot from local tabs
- snapshot_to_dict / parse_snapshot: Convert between JSON data and SyncSnapshot
- compute_checksum: SHA-256 over the canonical JSON of tabs and metadata

Document layout (camelCase keys):
    {
        "version": "1.0.0",
        "deviceId": "...",
        "timestamp": 1700000000000,
        "tabs": [{"id", "url", "title", "favicon", "windowId", "index",
                  "pinned", "active", "timestamp", "deviceId"}, ...],
        "metadata": {"deviceId", "deviceName", "browserName",
                     "browserVersion", "platform", "lastSeen", ...},
        "checksum": "<sha256 hex>"
    }
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Sequence
from typing import Any
from urllib.parse import urlparse

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tabsync.client.sync.types import (
    Clock,
    DeviceMetadata,
    SyncSnapshot,
    Tab,
    ValidationError,
    now_ms,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0.0"


# === Schemas ===


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TabModel(_CamelModel):
    """One tab in a snapshot."""

    id: str = Field(min_length=1)
    url: str
    title: str = Field(min_length=1)
    window_id: int = Field(ge=0)
    index: int = Field(ge=0)
    timestamp: int = Field(gt=0)
    device_id: str = Field(min_length=1)
    favicon: str | None = None
    pinned: bool = False
    active: bool = False

    @field_validator("url")
    @classmethod
    def _url_has_scheme(cls, value: str) -> str:
        if not urlparse(value).scheme:
            raise ValueError("must be a valid URL")
        return value


class DeviceMetadataModel(_CamelModel):
    """Device metadata. Unknown keys are kept (they count for the checksum)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    device_id: str = Field(min_length=1)
    device_name: str = ""
    browser_name: str = ""
    browser_version: str = ""
    platform: str = ""
    last_seen: int = 0


class SnapshotModel(_CamelModel):
    """The whole snapshot document."""

    version: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    timestamp: int = Field(gt=0)
    tabs: list[TabModel]
    metadata: DeviceMetadataModel | None = None
    checksum: str | None = None


# === Conversion ===


def tab_to_dict(tab: Tab) -> dict[str, Any]:
    return {
        "id": tab.id,
        "url": tab.url,
        "title": tab.title,
        "favicon": tab.favicon,
        "windowId": tab.window_id,
        "index": tab.index,
        "pinned": tab.pinned,
        "active": tab.active,
        "timestamp": tab.timestamp,
        "deviceId": tab.device_id,
    }


def metadata_to_dict(metadata: DeviceMetadata) -> dict[str, Any]:
    return {
        "deviceId": metadata.device_id,
        "deviceName": metadata.device_name,
        "browserName": metadata.browser_name,
        "browserVersion": metadata.browser_version,
        "platform": metadata.platform,
        "lastSeen": metadata.last_seen,
    }


def compute_checksum(tabs: Any, metadata: Any) -> str:
    """SHA-256 hex digest of the canonical JSON of {"tabs", "metadata"}."""
    canonical = json.dumps(
        {"tabs": tabs, "metadata": metadata},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def snapshot_to_dict(snapshot: SyncSnapshot) -> dict[str, Any]:
    """JSON document for a snapshot."""
    data: dict[str, Any] = {
        "version": snapshot.version,
        "deviceId": snapshot.device_id,
        "timestamp": snapshot.timestamp,
        "tabs": [tab_to_dict(tab) for tab in snapshot.tabs],
        "metadata": metadata_to_dict(snapshot.metadata) if snapshot.metadata else None,
    }
    if snapshot.checksum:
        data["checksum"] = snapshot.checksum
    return data


def create_snapshot(
    tabs: Sequence[Tab],
    device_id: str,
    metadata: DeviceMetadata | None = None,
    clock: Clock | None = None,
) -> SyncSnapshot:
    """Build a checksummed snapshot of the given tabs.

    Args:
        tabs: Tabs to include
        device_id: Id of the device writing the snapshot
        metadata: Metadata of that device
        clock: Millisecond clock (default: wall clock)

    Returns:
        SyncSnapshot with its checksum set
    """
    timestamp = (clock or now_ms)()
    checksum = compute_checksum(
        [tab_to_dict(tab) for tab in tabs],
        metadata_to_dict(metadata) if metadata else None,
    )
    logger.debug("Created snapshot of %d tabs (checksum %s)", len(tabs), checksum[:8])
    return SyncSnapshot(
        device_id=device_id,
        timestamp=timestamp,
        tabs=tuple(tabs),
        metadata=metadata,
        version=SNAPSHOT_VERSION,
        checksum=checksum,
    )


def is_version_compatible(version: str) -> bool:
    """Same major version as SNAPSHOT_VERSION."""
    return version.split(".")[0] == SNAPSHOT_VERSION.split(".")[0]


def parse_snapshot(data: Any) -> SyncSnapshot:
    """Validate a JSON document and convert it to a SyncSnapshot.

    Args:
        data: Decoded JSON document

    Returns:
        The validated snapshot

    Raises:
        ValidationError: Schema errors, checksum mismatch or incompatible version
    """
    try:
        model = SnapshotModel.model_validate(data)
    except pydantic.ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ValidationError("Invalid snapshot data", errors) from e

    if model.checksum:
        expected = compute_checksum(data.get("tabs"), data.get("metadata"))
        if model.checksum != expected:
            raise ValidationError(
                "Invalid snapshot data",
                ["Checksum validation failed - data may be corrupted"],
            )

    if not is_version_compatible(model.version):
        raise ValidationError(
            "Invalid snapshot data",
            [f"Incompatible sync data version: {model.version}"],
        )

    metadata = None
    if model.metadata is not None:
        metadata = DeviceMetadata(
            device_id=model.metadata.device_id,
            device_name=model.metadata.device_name,
            browser_name=model.metadata.browser_name,
            browser_version=model.metadata.browser_version,
            platform=model.metadata.platform,
            last_seen=model.metadata.last_seen,
        )

    return SyncSnapshot(
        device_id=model.device_id,
        timestamp=model.timestamp,
        tabs=tuple(
            Tab(
                id=t.id,
                url=t.url,
                title=t.title,
                window_id=t.window_id,
                index=t.index,
                timestamp=t.timestamp,
                device_id=t.device_id,
                favicon=t.favicon,
                pinned=t.pinned,
                active=t.active,
            )
            for t in model.tabs
        ),
        metadata=metadata,
        version=model.version,
        checksum=model.checksum,
    )
