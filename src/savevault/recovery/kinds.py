from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple

from ..persistence.errors import (
    BackupNotFoundError,
    CorruptSaveError,
    EmptySaveFileError,
    SaveValidationError,
    SlotNotFoundError,
)


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    PERMISSION_DENIED = "PermissionDenied"
    MALFORMED_DATA = "MalformedData"
    RESOURCE_EXHAUSTED = "ResourceExhausted"
    IO_FAILURE = "IOFailure"
    UNKNOWN = "Unknown"


class Strategy(str, Enum):
    RETRY_WITH_DELAY = "RetryWithDelay"
    RESTORE_FROM_BACKUP = "RestoreFromBackup"
    REPAIR_SAVE_FILE = "RepairSaveFile"
    PARTIAL_DATA_RECOVERY = "PartialDataRecovery"
    FALLBACK_TO_DEFAULT = "FallbackToDefault"

    @property
    def priority(self) -> int:
        return STRATEGY_PRIORITY[self]


STRATEGY_PRIORITY: Dict[Strategy, int] = {
    Strategy.RETRY_WITH_DELAY: 1,
    Strategy.RESTORE_FROM_BACKUP: 2,
    Strategy.REPAIR_SAVE_FILE: 3,
    Strategy.PARTIAL_DATA_RECOVERY: 4,
    Strategy.FALLBACK_TO_DEFAULT: 5,
}

CANDIDATES: Dict[ErrorKind, Tuple[Strategy, ...]] = {
    ErrorKind.NOT_FOUND: (Strategy.RESTORE_FROM_BACKUP, Strategy.FALLBACK_TO_DEFAULT),
    ErrorKind.PERMISSION_DENIED: (Strategy.RETRY_WITH_DELAY, Strategy.RESTORE_FROM_BACKUP),
    ErrorKind.MALFORMED_DATA: (
        Strategy.REPAIR_SAVE_FILE,
        Strategy.RESTORE_FROM_BACKUP,
        Strategy.PARTIAL_DATA_RECOVERY,
    ),
    ErrorKind.RESOURCE_EXHAUSTED: (Strategy.RETRY_WITH_DELAY, Strategy.PARTIAL_DATA_RECOVERY),
    ErrorKind.IO_FAILURE: (Strategy.RETRY_WITH_DELAY, Strategy.RESTORE_FROM_BACKUP),
    ErrorKind.UNKNOWN: (
        Strategy.RETRY_WITH_DELAY,
        Strategy.RESTORE_FROM_BACKUP,
        Strategy.REPAIR_SAVE_FILE,
    ),
}

_NEEDS_SLOT_FILE = (Strategy.REPAIR_SAVE_FILE, Strategy.PARTIAL_DATA_RECOVERY)


def classify(exc: BaseException) -> ErrorKind:
    if isinstance(exc, (SlotNotFoundError, BackupNotFoundError, FileNotFoundError)):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION_DENIED
    if isinstance(exc, (CorruptSaveError, SaveValidationError, EmptySaveFileError, UnicodeDecodeError)):
        return ErrorKind.MALFORMED_DATA
    if isinstance(exc, MemoryError):
        return ErrorKind.RESOURCE_EXHAUSTED
    if isinstance(exc, OSError):
        return ErrorKind.IO_FAILURE
    return ErrorKind.UNKNOWN


def plan_strategies(kind: ErrorKind, has_backups: bool, slot_exists: bool) -> List[Strategy]:
    """Candidate strategies for ``kind``, filtered by what is on disk and ordered by priority."""
    planned = []
    for strategy in CANDIDATES[kind]:
        if strategy is Strategy.RESTORE_FROM_BACKUP and not has_backups:
            continue
        if strategy in _NEEDS_SLOT_FILE and not slot_exists:
            continue
        planned.append(strategy)
    return sorted(planned, key=lambda s: s.priority)


@dataclass(frozen=True)
class LoadFailure:
    """A classified load failure with the context recovery planning needs."""

    slot: str
    kind: ErrorKind
    cause: BaseException
    has_backups: bool
    slot_exists: bool

    @classmethod
    def from_exception(cls, slot: str, exc: BaseException, has_backups: bool, slot_exists: bool) -> "LoadFailure":
        return cls(slot=slot, kind=classify(exc), cause=exc, has_backups=has_backups, slot_exists=slot_exists)

    @property
    def message(self) -> str:
        return f"{type(self.cause).__name__}: {self.cause}"

    def plan(self) -> List[Strategy]:
        return plan_strategies(self.kind, self.has_backups, self.slot_exists)
