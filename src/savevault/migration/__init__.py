"""Schema version migration for save payloads."""

from .pipeline import MigrationPipeline, MigrationResult, RollbackStatus
from .registry import MigrationRegistry, MigrationStep
from .steps import default_registry, register_builtin_steps

__all__ = [
    "MigrationPipeline",
    "MigrationResult",
    "RollbackStatus",
    "MigrationRegistry",
    "MigrationStep",
    "default_registry",
    "register_builtin_steps",
]
