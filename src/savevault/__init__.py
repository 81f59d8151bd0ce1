"""SaveVault: durable storage for game save slots.

This package provides headless persistence for a game's save data including:
- Atomic slot writes with timestamped, rotated backups
- Payload validation, checksums and best-effort sanitizing
- Per-slot health grading and discovery
- Ordered recovery strategies for failed loads
- Version migration with rollback
- Size- and memory-aware loading

Game and UI layers should go through SaveService and subscribe to its EventBus.
"""
from .config import SaveVaultConfig
from .events import EventBus
from .integrity import HealthInspector, HealthLevel, HealthReport, IntegrityValidator, Severity, ValidationResult
from .loading import LoadMethod, LoadScheduler
from .migration import MigrationPipeline, MigrationRegistry, MigrationResult, RollbackStatus
from .persistence import (
    PayloadStore,
    RecoveryError,
    SaveError,
    SaveLayout,
    SaveMetadata,
    SavePayload,
)
from .recovery import ErrorKind, RecoveryOrchestrator, Strategy
from .service import SaveService

__version__ = "0.1.0"

__all__ = [
    "SaveVaultConfig",
    "EventBus",
    "HealthInspector",
    "HealthLevel",
    "HealthReport",
    "IntegrityValidator",
    "Severity",
    "ValidationResult",
    "LoadMethod",
    "LoadScheduler",
    "MigrationPipeline",
    "MigrationRegistry",
    "MigrationResult",
    "RollbackStatus",
    "PayloadStore",
    "RecoveryError",
    "SaveError",
    "SaveLayout",
    "SaveMetadata",
    "SavePayload",
    "ErrorKind",
    "RecoveryOrchestrator",
    "Strategy",
    "SaveService",
]
