"""JSON file tab source.

A browser extension mirrors the open tabs into a JSON file and watches it for
changes; this module reads tabs from that file and writes the tab set the
browser should converge to.

File format:
    {"tabs": [{"id": "12", "url": "...", "title": "...", "windowId": 1,
               "index": 0, "pinned": false, "active": true,
               "favicon": "...", "timestamp": 1700000000000}, ...]}

A bare list of tab objects is accepted too.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from tabsync.client.store import write_json_atomic
from tabsync.client.sync.types import ApplyResult, Clock, Tab, now_ms

logger = logging.getLogger(__name__)

# Fields compared to decide whether an existing tab needs an update
UPDATE_FIELDS = ("title", "window_id", "index", "pinned", "active", "favicon")


class JsonFileTabSource:
    """Tab source backed by a JSON file.

    Tabs read from the file belong to this device: their device_id is the
    current device id, and the browser's own tab id is kept as the opaque
    external handle.
    """

    def __init__(
        self,
        path: Path | str,
        device_id: Callable[[], str],
        clock: Clock | None = None,
    ) -> None:
        """Initialize the tab source.

        Args:
            path: JSON file shared with the browser extension
            device_id: Returns the current device id
            clock: Millisecond clock for tabs without a timestamp
        """
        self._path = Path(path).expanduser()
        self._device_id = device_id
        self._clock = clock or now_ms

    @property
    def path(self) -> Path:
        return self._path

    def _read_entries(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        data = json.loads(self._path.read_text(encoding="utf-8"))
        entries = data.get("tabs", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise ValueError(f"{self._path}: 'tabs' must be a list")
        return [e for e in entries if isinstance(e, dict) and e.get("url")]

    def get_current_tabs(self) -> list[Tab]:
        """Read the tabs currently open in the browser."""
        device_id = self._device_id()
        default_ts = self._clock()
        tabs = []
        for position, entry in enumerate(self._read_entries()):
            handle = entry.get("id", position)
            tabs.append(
                Tab(
                    id=str(handle),
                    url=entry["url"],
                    title=entry.get("title") or entry["url"],
                    window_id=int(entry.get("windowId", 0)),
                    index=int(entry.get("index", position)),
                    timestamp=int(entry.get("timestamp") or default_ts),
                    device_id=device_id,
                    favicon=entry.get("favicon"),
                    pinned=bool(entry.get("pinned", False)),
                    active=bool(entry.get("active", False)),
                    external_handle=handle,
                )
            )
        logger.debug("Read %d tabs from %s", len(tabs), self._path)
        return tabs

    def apply_tab_set(self, tabs: Sequence[Tab]) -> ApplyResult:
        """Write the target tab set and report what changed (by URL).

        Writing the whole file makes a retry after a partial failure safe.
        """
        current = {tab.url: tab for tab in self.get_current_tabs()}
        target = {tab.url: tab for tab in tabs}
        result = ApplyResult()

        for url, tab in target.items():
            existing = current.get(url)
            if existing is None:
                result.created.append(tab)
            elif any(getattr(existing, f) != getattr(tab, f) for f in UPDATE_FIELDS):
                result.updated.append(tab)
        result.closed.extend(tab for url, tab in current.items() if url not in target)

        entries = []
        for tab in tabs:
            existing = current.get(tab.url)
            # Keep the browser's id for tabs it already has open
            handle = existing.external_handle if existing is not None else tab.external_handle
            entries.append(
                {
                    "id": str(handle) if handle is not None else tab.id,
                    "url": tab.url,
                    "title": tab.title,
                    "windowId": tab.window_id,
                    "index": tab.index,
                    "pinned": tab.pinned,
                    "active": tab.active,
                    "favicon": tab.favicon,
                    "timestamp": tab.timestamp,
                }
            )

        try:
            write_json_atomic(self._path, {"tabs": entries})
        except OSError as e:
            result.errors.append(f"Failed to write {self._path}: {e}")
            return result

        logger.info(
            "Applied tab set: %d created, %d closed, %d updated",
            len(result.created),
            len(result.closed),
            len(result.updated),
        )
        return result
