"""Sync coordinator for orchestrating one tab sync pass.

This module provides:
- SyncCoordinator: Sequences a sync pass through the session state machine
- Protocols for its collaborators (tab source, remote store, presenter,
  device identity, last sync store, history sink)

The coordinator is the "brain" of a sync pass:
1. Reads local tabs and the remote snapshot
2. Detects and prioritizes conflicts
3. Asks the presenter for choices (bounded wait), falls back to defaults
4. Merges, lays out and applies the result, then stores the new snapshot

Direction table:
    | Direction     | Remote snapshot | Action                               |
    |---------------|-----------------|--------------------------------------|
    | upload        | any             | Store local tabs                     |
    | download      | missing/invalid | Skip                                 |
    | download      | valid           | Apply remote (or local + remote)     |
    | bidirectional | missing/invalid | Store local tabs                     |
    | bidirectional | no conflicts    | Newer side wins, equal = no change   |
    | bidirectional | conflicts       | Resolve, merge, apply and store      |
"""

from __future__ import annotations

import logging
import queue
import secrets
import threading
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Protocol

from tabsync.client.sync.domain.conflicts import ConflictKind, ResolutionStrategy
from tabsync.client.sync.domain.detector import detect_conflicts
from tabsync.client.sync.domain.layout import apply_layout
from tabsync.client.sync.domain.merge import MergeEngine
from tabsync.client.sync.domain.session import SyncPhase, SyncSession
from tabsync.client.sync.guard import SingleFlightGuard
from tabsync.client.sync.snapshot import create_snapshot, parse_snapshot, snapshot_to_dict
from tabsync.client.sync.types import (
    DeviceIdentityCollision,
    ExternalIOError,
    NotFoundError,
    StoreError,
    SyncCancelledError,
    SyncDirection,
    SyncError,
    SyncOperationRecord,
    SyncOptions,
    ValidationError,
    now_ms,
)
from tabsync.core.config import DEFAULT_PRESENTER_TIMEOUT, DEFAULT_SNAPSHOT_NAME

if TYPE_CHECKING:
    from tabsync.client.sync.domain.conflicts import Conflict
    from tabsync.client.sync.types import (
        ApplyResult,
        Clock,
        DeviceMetadata,
        RetrieveResult,
        StoreResult,
        SyncSnapshot,
        Tab,
    )
    from tabsync.core.config import SyncConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Collaborator protocols
# =============================================================================


class TabSource(Protocol):
    """Enumerates and applies browser tabs."""

    def get_current_tabs(self) -> list[Tab]:
        ...

    def apply_tab_set(self, tabs: Sequence[Tab]) -> ApplyResult:
        """Make the browser match tabs. Re-invokable after partial failure."""
        ...


class RemoteStore(Protocol):
    """Stores the shared snapshot document."""

    def retrieve(self, name: str) -> RetrieveResult:
        """Fetch a document.

        Raises:
            NotFoundError: If the document does not exist
        """
        ...

    def store(
        self, name: str, data: dict[str, Any], options: dict[str, Any] | None = None
    ) -> StoreResult:
        ...


class ConflictPresenter(Protocol):
    """Human resolution channel."""

    def present(
        self, conflicts: Sequence[Conflict], context: dict[str, Any]
    ) -> dict[str, str] | None:
        """Return conflict id -> strategy choices, or None to use defaults."""
        ...


class DeviceIdentity(Protocol):
    def current_id(self) -> str:
        ...

    def regenerate_id(self) -> str:
        ...


class LastSyncStore(Protocol):
    def get_last_sync_at(self) -> int | None:
        ...

    def set_last_sync_at(self, timestamp: int) -> None:
        ...


class SyncHistory(Protocol):
    def record(self, record: SyncOperationRecord) -> None:
        ...


# device id -> metadata of this device
MetadataProvider = Callable[[str], "DeviceMetadata"]


# =============================================================================
# Coordinator
# =============================================================================


class SyncCoordinator:
    """Central orchestrator for tab sync passes.

    Usage:
        coordinator = SyncCoordinator(tab_source, remote_store, identity,
                                      last_sync_store=state, history=state)
        record = coordinator.run_sync_pass(SyncDirection.BIDIRECTIONAL)
        if record.status is OperationStatus.FAILED:
            print(record.error_message)
    """

    def __init__(
        self,
        tab_source: TabSource,
        remote_store: RemoteStore,
        device_identity: DeviceIdentity,
        *,
        last_sync_store: LastSyncStore | None = None,
        history: SyncHistory | None = None,
        presenter: ConflictPresenter | None = None,
        guard: SingleFlightGuard | None = None,
        config: SyncConfig | None = None,
        metadata_provider: MetadataProvider | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            tab_source: Reads and applies local tabs
            remote_store: Holds the shared snapshot
            device_identity: Provides (and regenerates) this device's id
            last_sync_store: Persists the last successful sync time
            history: Receives one record per pass
            presenter: Optional human resolution channel
            guard: Single-flight guard, shareable between coordinators
            config: Snapshot name and presenter timeout
            metadata_provider: Builds this device's metadata from its id
            clock: Millisecond clock (default: wall clock)
        """
        self._tab_source = tab_source
        self._remote_store = remote_store
        self._identity = device_identity
        self._last_sync = last_sync_store
        self._history = history
        self._presenter = presenter
        self._guard = guard or SingleFlightGuard()
        self._metadata_provider = metadata_provider
        self._clock = clock or now_ms

        self._snapshot_name = config.snapshot_name if config else DEFAULT_SNAPSHOT_NAME
        self._presenter_timeout = (
            config.presenter_timeout if config else DEFAULT_PRESENTER_TIMEOUT
        )

    @property
    def guard(self) -> SingleFlightGuard:
        return self._guard

    def run_sync_pass(
        self,
        direction: SyncDirection | str = SyncDirection.BIDIRECTIONAL,
        options: SyncOptions | None = None,
    ) -> SyncOperationRecord:
        """Run one sync pass.

        Args:
            direction: upload, download or bidirectional
            options: Force overwrite, dry run and cancellation

        Returns:
            Terminal record (status completed or failed)

        Raises:
            ConcurrentSyncError: A pass is already running for this device
        """
        direction = SyncDirection(direction)
        options = options or SyncOptions()
        device_id = self._identity.current_id()

        with self._guard.hold(device_id):
            return self._run(device_id, direction, options)

    def preview_conflicts(self) -> list[Conflict]:
        """Detect conflicts against the remote snapshot without syncing."""
        device_id = self._identity.current_id()
        remote, reason = self._fetch_remote()
        if remote is None:
            logger.info("No conflicts to preview: %s", reason)
            return []
        return detect_conflicts(
            self._get_local_tabs(),
            remote,
            self._get_last_sync(),
            device_id=device_id,
            device_metadata=self._metadata(device_id),
            clock=self._clock,
        )

    # === Pass driver ===

    def _run(
        self, device_id: str, direction: SyncDirection, options: SyncOptions
    ) -> SyncOperationRecord:
        start = self._clock()
        record = SyncOperationRecord(
            sync_id=f"sync_{start}_{secrets.token_hex(4)}",
            device_id=device_id,
            start_time=start,
            direction=direction,
            dry_run=options.dry_run,
        )
        session = SyncSession(record=record, options=options)
        logger.info("Starting %s sync %s", direction.value, record.sync_id)

        try:
            if direction is SyncDirection.UPLOAD:
                self._advance(session, SyncPhase.UPLOADING)
                self._upload(session, self._get_local_tabs())
            elif direction is SyncDirection.DOWNLOAD:
                self._advance(session, SyncPhase.DOWNLOADING)
                self._download(session)
            else:
                self._bidirectional(session)

            session.complete(self._clock())
            if self._last_sync is not None and not options.dry_run:
                self._last_sync.set_last_sync_at(record.end_time)

            logger.info(
                "Sync %s completed in %dms (%d operations, %d conflicts)",
                record.sync_id,
                record.duration,
                len(record.operations),
                len(record.conflicts),
            )
        except SyncCancelledError as e:
            logger.info("Sync %s cancelled during %s", record.sync_id, session.phase.name)
            session.fail("cancelled", str(e), self._clock())
        except ExternalIOError as e:
            logger.error("Sync %s failed: %s", record.sync_id, e)
            session.fail(f"{e.source}_error", str(e), self._clock())
        except SyncError as e:
            logger.error("Sync %s failed: %s", record.sync_id, e)
            session.fail("sync_error", str(e), self._clock())

        self._record_history(record)
        return record

    def _advance(self, session: SyncSession, phase: SyncPhase) -> None:
        """Check for cancellation, then enter the next phase."""
        session.check_cancelled()
        session.transition_to(phase)

    # === Directions ===

    def _upload(self, session: SyncSession, tabs: Sequence[Tab], **fields: Any) -> None:
        record = session.record
        if session.options.dry_run:
            record.add_operation(
                "upload", "dry_run", self._clock(), tabCount=len(tabs), **fields
            )
            logger.info("Dry run: would upload %d tabs", len(tabs))
            return

        snapshot = create_snapshot(
            tabs, record.device_id, self._metadata(record.device_id), self._clock
        )
        result = self._store(snapshot, f"Upload sync from {record.device_id}")
        record.add_operation(
            "upload",
            "store",
            self._clock(),
            tabCount=len(tabs),
            fileSize=result.size,
            checksum=result.checksum,
            **fields,
        )

    def _download(self, session: SyncSession) -> None:
        record = session.record
        remote, reason = self._fetch_remote()
        if remote is None:
            logger.info("No usable remote snapshot, skipping download (%s)", reason)
            record.add_operation("download", "skip", self._clock(), reason=reason)
            return

        local_tabs = self._get_local_tabs()
        self._apply_remote(session, local_tabs, remote)

    def _apply_remote(
        self, session: SyncSession, local_tabs: Sequence[Tab], remote: SyncSnapshot
    ) -> None:
        """Make local match remote (force) or local plus remote."""
        record = session.record
        if session.options.force_overwrite:
            target = list(remote.tabs)
        else:
            target = MergeEngine(record.device_id, clock=self._clock).merge(
                local_tabs, remote.tabs, []
            ).merged_tabs

        if session.options.dry_run:
            record.add_operation(
                "download", "dry_run", self._clock(), tabCount=len(remote.tabs)
            )
            logger.info("Dry run: would download %d tabs", len(remote.tabs))
            return

        self._advance(session, SyncPhase.APPLYING)
        result = self._apply(target)
        record.add_operation(
            "download",
            "apply",
            self._clock(),
            tabCount=len(remote.tabs),
            created=len(result.created),
            closed=len(result.closed),
            updated=len(result.updated),
            errors=len(result.errors),
        )

    def _bidirectional(self, session: SyncSession) -> None:
        record = session.record
        self._advance(session, SyncPhase.DETECTING_CONFLICTS)

        local_tabs = self._get_local_tabs()
        remote, reason = self._fetch_remote()
        if remote is None:
            logger.info("No usable remote snapshot, performing upload (%s)", reason)
            self._advance(session, SyncPhase.UPLOADING)
            self._upload(session, local_tabs, reason=reason)
            return

        conflicts = detect_conflicts(
            local_tabs,
            remote,
            self._get_last_sync(),
            device_id=record.device_id,
            device_metadata=self._metadata(record.device_id),
            clock=self._clock,
        )
        record.conflicts = list(conflicts)

        if not conflicts:
            self._advance(session, SyncPhase.NO_CONFLICTS)
            self._simple_merge(session, local_tabs, remote)
        else:
            self._advance(session, SyncPhase.HAS_CONFLICTS)
            self._advanced_merge(session, local_tabs, remote, conflicts)

    def _simple_merge(
        self, session: SyncSession, local_tabs: Sequence[Tab], remote: SyncSnapshot
    ) -> None:
        self._advance(session, SyncPhase.SIMPLE_MERGE)
        local_ts = max((tab.timestamp for tab in local_tabs), default=0)

        if local_ts > remote.timestamp:
            logger.info("Local data is newer, uploading")
            self._advance(session, SyncPhase.UPLOADING)
            self._upload(session, local_tabs)
        elif remote.timestamp > local_ts:
            logger.info("Remote data is newer, downloading")
            self._apply_remote(session, local_tabs, remote)
        else:
            logger.info("Data is synchronized, no action needed")
            session.record.add_operation(
                "bidirectional", "no_change", self._clock(), reason="data_synchronized"
            )

    def _advanced_merge(
        self,
        session: SyncSession,
        local_tabs: Sequence[Tab],
        remote: SyncSnapshot,
        conflicts: Sequence[Conflict],
    ) -> None:
        record = session.record
        self._advance(session, SyncPhase.RESOLVING)
        choices = self._ask_presenter(session, conflicts, local_tabs, remote)

        self._advance(session, SyncPhase.ADVANCED_MERGE)
        result = MergeEngine(record.device_id, clock=self._clock).merge(
            local_tabs, remote.tabs, conflicts, choices
        )
        merged = apply_layout(result.merged_tabs, result.merge_operations)

        if session.options.dry_run:
            record.add_operation(
                "bidirectional",
                "dry_run_conflicts",
                self._clock(),
                conflictCount=len(conflicts),
                conflictsResolved=len(result.applied_resolutions),
                unresolvedConflicts=len(result.unresolved_conflicts),
                finalTabCount=len(merged),
            )
            return

        old_id = record.device_id
        for op in result.operations_of(ConflictKind.SAME_DEVICE_ID):
            if op.strategy is ResolutionStrategy.REGENERATE_DEVICE_ID:
                self._regenerate_device_id(session)
        if record.device_id != old_id:
            merged = [
                replace(tab, device_id=record.device_id) if tab.device_id == old_id else tab
                for tab in merged
            ]

        # Each side effect is recorded as soon as it is committed, so a pass
        # that fails or is cancelled later still reports it
        self._advance(session, SyncPhase.APPLYING)
        apply_result = self._apply(merged)
        record.add_operation(
            "advanced_merge",
            "apply",
            self._clock(),
            conflictsResolved=len(result.applied_resolutions),
            unresolvedConflicts=len(result.unresolved_conflicts),
            finalTabCount=len(merged),
            created=len(apply_result.created),
            closed=len(apply_result.closed),
            updated=len(apply_result.updated),
            errors=len(apply_result.errors),
            mergeOperations=[op.to_dict() for op in result.merge_operations],
        )

        self._advance(session, SyncPhase.UPLOADING)
        snapshot = create_snapshot(
            merged, record.device_id, self._metadata(record.device_id), self._clock
        )
        store_result = self._store(snapshot, f"Advanced merge from {record.device_id}")
        record.add_operation(
            "advanced_merge",
            "store",
            self._clock(),
            tabCount=len(merged),
            fileSize=store_result.size,
            checksum=store_result.checksum,
        )

    # === Collaborators ===

    def _ask_presenter(
        self,
        session: SyncSession,
        conflicts: Sequence[Conflict],
        local_tabs: Sequence[Tab],
        remote: SyncSnapshot,
    ) -> dict[str, str] | None:
        """Ask the presenter for choices, waiting at most presenter_timeout."""
        if self._presenter is None:
            return None

        context = {
            "sync_id": session.record.sync_id,
            "device_id": session.record.device_id,
            "direction": session.record.direction.value,
            "local_tab_count": len(local_tabs),
            "remote_tab_count": len(remote.tabs),
            "remote_device_id": remote.device_id,
        }
        answers: queue.Queue[tuple[dict[str, str] | None, Exception | None]] = queue.Queue(
            maxsize=1
        )
        presenter = self._presenter

        def ask() -> None:
            try:
                answers.put((presenter.present(list(conflicts), context), None))
            except Exception as e:
                answers.put((None, e))

        # Daemon: an unanswered prompt must not keep the process alive
        thread = threading.Thread(target=ask, name="ConflictPresenter", daemon=True)
        thread.start()
        try:
            choices, error = answers.get(timeout=self._presenter_timeout)
        except queue.Empty:
            logger.warning(
                "No conflict choices after %.1fs, using default strategies",
                self._presenter_timeout,
            )
            return None

        if error is not None:
            logger.error(
                "Conflict presenter failed, using default strategies", exc_info=error
            )
            return None
        if choices is None:
            logger.info("Presenter returned no choices, using default strategies")
        return choices

    def _regenerate_device_id(self, session: SyncSession) -> None:
        record = session.record
        old_id = record.device_id
        new_id = self._identity.regenerate_id()
        if new_id == old_id:
            raise DeviceIdentityCollision(f"Device id {old_id} could not be regenerated")

        logger.warning("Device id %s collided with remote, now %s", old_id, new_id)
        record.device_id = new_id
        record.add_operation(
            "device", "regenerate_id", self._clock(), oldDeviceId=old_id, newDeviceId=new_id
        )

    def _get_local_tabs(self) -> list[Tab]:
        try:
            return list(self._tab_source.get_current_tabs())
        except Exception as e:
            raise ExternalIOError(f"Failed to read local tabs: {e}", "tab_source") from e

    def _apply(self, tabs: Sequence[Tab]) -> ApplyResult:
        try:
            result = self._tab_source.apply_tab_set(tabs)
        except Exception as e:
            raise ExternalIOError(f"Failed to apply tabs: {e}", "tab_source") from e

        for error in result.errors:
            logger.warning("Tab apply error: %s", error)
        return result

    def _fetch_remote(self) -> tuple[SyncSnapshot | None, str | None]:
        """Retrieve and validate the remote snapshot.

        Returns:
            (snapshot, None), or (None, reason) when missing or invalid
        """
        try:
            retrieved = self._remote_store.retrieve(self._snapshot_name)
        except NotFoundError:
            return None, "no_remote_data"
        except (StoreError, OSError) as e:
            raise ExternalIOError(
                f"Failed to retrieve remote snapshot: {e}", "remote_store"
            ) from e

        try:
            return parse_snapshot(retrieved.data), None
        except ValidationError as e:
            logger.warning("Invalid remote sync data: %s", "; ".join(e.errors))
            return None, "invalid_remote_data"

    def _store(self, snapshot: SyncSnapshot, message: str) -> StoreResult:
        try:
            return self._remote_store.store(
                self._snapshot_name,
                snapshot_to_dict(snapshot),
                {"commit_message": message},
            )
        except (StoreError, OSError) as e:
            raise ExternalIOError(
                f"Failed to store remote snapshot: {e}", "remote_store"
            ) from e

    def _metadata(self, device_id: str) -> DeviceMetadata | None:
        if self._metadata_provider is None:
            return None
        return self._metadata_provider(device_id)

    def _get_last_sync(self) -> int:
        if self._last_sync is None:
            return 0
        return self._last_sync.get_last_sync_at() or 0

    def _record_history(self, record: SyncOperationRecord) -> None:
        if self._history is None:
            return
        try:
            self._history.record(record)
        except Exception:
            logger.exception("Failed to record sync %s in history", record.sync_id)
