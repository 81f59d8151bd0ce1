from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:  # pragma: no cover
    from ..integrity.validator import ValidationResult


class SaveError(Exception):
    """Base exception for save/load errors."""


class InvalidSlotNameError(SaveError, ValueError):
    """Raised when a slot name cannot be mapped safely onto the save directory."""


class SlotNotFoundError(SaveError, FileNotFoundError):
    """Raised when a slot has no payload file on disk."""


class EmptySaveFileError(SaveError):
    """Raised when a payload file exists but holds no bytes."""


class BackupNotFoundError(SaveError, FileNotFoundError):
    """Raised when a backup id does not exist for the slot."""


class CorruptSaveError(SaveError):
    """Raised when payload bytes cannot be decoded into a SavePayload."""


class SaveValidationError(SaveError):
    """Raised when a decoded payload is rejected by validation."""

    def __init__(self, message: str, result: Optional["ValidationResult"] = None) -> None:
        super().__init__(message)
        self.result = result


class MigrationError(SaveError):
    """Raised when a migration cannot be planned or a step fails."""


class RecoveryError(SaveError):
    """Terminal load failure.

    ``attempt`` is None when no recovery strategy applied to the failure, otherwise it is
    the exhausted RecoveryAttempt with every strategy that was tried.
    """

    def __init__(self, message: str, slot: str, kind: Any, original: BaseException, attempt: Any = None) -> None:
        super().__init__(message)
        self.slot = slot
        self.kind = kind
        self.original = original
        self.attempt = attempt

    @property
    def recovery_attempted(self) -> bool:
        return self.attempt is not None
