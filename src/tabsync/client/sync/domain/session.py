"""Sync pass state machine.

States:
    IDLE -> DETECTING_CONFLICTS -> NO_CONFLICTS -> SIMPLE_MERGE ----> APPLYING -> COMPLETED
                                -> HAS_CONFLICTS -> RESOLVING
                                   -> ADVANCED_MERGE ------------^
    IDLE -> UPLOADING | DOWNLOADING (one-way passes)

Any non-terminal state may go to FAILED. Dry runs may complete straight
from a merge state. All state transitions are validated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum, auto
from typing import TYPE_CHECKING

from tabsync.client.sync.types import (
    OperationStatus,
    SyncCancelledError,
    SyncOperationRecord,
)

if TYPE_CHECKING:
    from tabsync.client.sync.types import SyncOptions

logger = logging.getLogger(__name__)


class SyncPhase(IntEnum):
    """Phase of a sync pass."""

    IDLE = auto()
    DETECTING_CONFLICTS = auto()
    NO_CONFLICTS = auto()
    SIMPLE_MERGE = auto()
    HAS_CONFLICTS = auto()
    RESOLVING = auto()
    ADVANCED_MERGE = auto()
    APPLYING = auto()
    UPLOADING = auto()
    DOWNLOADING = auto()
    COMPLETED = auto()
    FAILED = auto()


_P = SyncPhase

# Valid state transitions
VALID_TRANSITIONS: dict[SyncPhase, set[SyncPhase]] = {
    _P.IDLE: {_P.DETECTING_CONFLICTS, _P.UPLOADING, _P.DOWNLOADING, _P.FAILED},
    _P.DETECTING_CONFLICTS: {
        _P.NO_CONFLICTS,
        _P.HAS_CONFLICTS,
        _P.UPLOADING,  # No usable remote snapshot
        _P.FAILED,
    },
    _P.NO_CONFLICTS: {_P.SIMPLE_MERGE, _P.FAILED},
    _P.SIMPLE_MERGE: {_P.APPLYING, _P.UPLOADING, _P.COMPLETED, _P.FAILED},
    _P.HAS_CONFLICTS: {_P.RESOLVING, _P.FAILED},
    _P.RESOLVING: {_P.ADVANCED_MERGE, _P.FAILED},
    _P.ADVANCED_MERGE: {_P.APPLYING, _P.COMPLETED, _P.FAILED},
    _P.APPLYING: {_P.UPLOADING, _P.COMPLETED, _P.FAILED},
    _P.UPLOADING: {_P.COMPLETED, _P.FAILED},
    _P.DOWNLOADING: {_P.APPLYING, _P.COMPLETED, _P.FAILED},
    _P.COMPLETED: set(),  # Terminal
    _P.FAILED: set(),  # Terminal
}


class InvalidTransitionError(Exception):
    """Raised when attempting invalid state transition."""

    pass


@dataclass
class SyncSession:
    """State of one sync pass.

    Attributes:
        record: History record being built for this pass
        options: Options the pass was started with
        phase: Current phase
        phases: Every phase entered, in order
    """

    record: SyncOperationRecord
    options: SyncOptions
    phase: SyncPhase = SyncPhase.IDLE
    phases: list[SyncPhase] = field(default_factory=lambda: [SyncPhase.IDLE])

    def transition_to(self, new_phase: SyncPhase) -> None:
        """Transition to a new phase with validation."""
        if new_phase not in VALID_TRANSITIONS[self.phase]:
            raise InvalidTransitionError(
                f"Cannot transition from {self.phase.name} to {new_phase.name}"
            )
        logger.debug("Sync %s: %s -> %s", self.record.sync_id, self.phase.name, new_phase.name)
        self.phase = new_phase
        self.phases.append(new_phase)

    def check_cancelled(self) -> None:
        """Raise SyncCancelledError if cancellation was requested."""
        if self.options.cancel_requested:
            raise SyncCancelledError(f"Sync {self.record.sync_id} cancelled")

    def complete(self, end_time: int) -> None:
        """Mark the pass as completed."""
        self.transition_to(SyncPhase.COMPLETED)
        self.record.status = OperationStatus.COMPLETED
        self.record.end_time = end_time

    def fail(self, error_type: str, message: str, end_time: int) -> None:
        """Mark the pass as failed, keeping operations recorded so far."""
        if not self.is_terminal:
            self.transition_to(SyncPhase.FAILED)
        self.record.add_error(error_type, message, end_time)
        self.record.status = OperationStatus.FAILED
        self.record.end_time = end_time

    @property
    def is_terminal(self) -> bool:
        """Check if the pass is in a terminal phase."""
        return self.phase in (SyncPhase.COMPLETED, SyncPhase.FAILED)
