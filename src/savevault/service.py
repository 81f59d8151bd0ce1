from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .config import SaveVaultConfig
from .events import (
    LOAD_COMPLETED,
    LOAD_FAILED,
    LOAD_STARTED,
    SAVE_COMPLETED,
    SAVE_FAILED,
    EventBus,
)
from .integrity.checksum import compute_checksum
from .integrity.health import HealthInspector, HealthReport
from .integrity.validator import IntegrityValidator, Severity
from .loading.memory import MemoryProbe, process_memory
from .loading.metrics import LoadMethod
from .loading.scheduler import LoadScheduler
from .migration.pipeline import MigrationPipeline, MigrationResult
from .migration.registry import MigrationRegistry
from .migration.steps import default_registry
from .persistence.codec import encode_payload
from .persistence.errors import RecoveryError, SaveValidationError
from .persistence.models import SaveMetadata, SavePayload
from .persistence.paths import SaveLayout, validate_slot_name
from .persistence.store import PayloadStore
from .recovery.orchestrator import RecoveryOrchestrator

logger = logging.getLogger(__name__)


class SaveService:
    """save / load / discover_health for the rest of the game.

    One instance owns one data root; components are built here and shared,
    so two services pointed at different roots never see each other's caches.
    """

    def __init__(
        self,
        config: Optional[SaveVaultConfig] = None,
        data_root: Optional[Path] = None,
        events: Optional[EventBus] = None,
        registry: Optional[MigrationRegistry] = None,
        memory_probe: MemoryProbe = process_memory,
    ) -> None:
        self.config = config or SaveVaultConfig()
        self.events = events or EventBus()
        root = data_root or self.config.storage.resolved_root()

        self.store = PayloadStore(
            SaveLayout.at(root),
            max_backups=self.config.storage.max_backups,
            metadata_ttl=self.config.storage.metadata_cache_ttl,
            temp_file_max_age=self.config.storage.temp_file_max_age,
        )
        self.validator = IntegrityValidator(
            app_version=self.config.app_version,
            balance_tolerance=self.config.validation.balance_tolerance,
            reject_severity=self.config.validation.severity,
        )
        self.inspector = HealthInspector(
            self.store,
            self.validator,
            cache_ttl=self.config.health.cache_ttl,
            max_concurrency=self.config.health.max_concurrent_checks,
        )
        loading = self.config.loading
        self.scheduler = LoadScheduler(
            self.store,
            events=self.events,
            memory_probe=memory_probe,
            large_file_threshold=loading.large_file_threshold,
            huge_file_threshold=loading.huge_file_threshold,
            low_memory_threshold=loading.low_memory_threshold,
            chunk_size=loading.chunk_size,
            cleanup_every=loading.cleanup_every,
            yield_every=loading.yield_every,
            slow_load_seconds=loading.slow_load_seconds,
            monitor_interval=loading.monitor_interval,
            cleanup_pause=loading.cleanup_pause,
            enable_memory_optimization=loading.enable_memory_optimization,
            enable_chunked_loading=loading.enable_chunked_loading,
            enable_performance_monitoring=loading.enable_performance_monitoring,
        )
        if registry is None:
            registry = default_registry()
            registry.max_depth = self.config.migration.max_path_depth
        self.migrations = MigrationPipeline(
            self.store,
            self.validator,
            registry,
            events=self.events,
            max_attempts=self.config.migration.max_attempts,
            backoff_base=self.config.migration.backoff_base,
            backup_before_migration=self.config.migration.backup_before_migration,
        )
        recovery = self.config.recovery
        self.recovery = RecoveryOrchestrator(
            self.store,
            self.inspector,
            self.validator,
            loader=self._load_validated,
            events=self.events,
            strategy_delay=recovery.strategy_delay,
            retry_base_delay=recovery.retry_base_delay,
            retry_attempts=recovery.retry_attempts,
            max_backup_candidates=recovery.max_backup_candidates,
            history_limit=recovery.history_limit,
        )

    # Boundary contract

    async def save(self, slot: str, payload: SavePayload) -> None:
        """Persist ``payload`` under ``slot``. The payload's timestamp and checksum are refreshed."""
        try:
            payload.touch()
            payload.checksum = compute_checksum(payload)
            result = self.validator.validate(payload)
            if result.severity is Severity.CRITICAL:
                raise SaveValidationError(f"Refusing to save {slot}: {'; '.join(result.errors)}", result)
            await self.store.save(slot, encode_payload(payload))
            await self.store.save_metadata(slot, SaveMetadata.from_payload(slot, payload))
        except Exception as e:
            logger.error("Saving %s failed: %s", slot, e)
            self.events.publish(SAVE_FAILED, {"slot": slot, "error": str(e)})
            raise
        self.events.publish(SAVE_COMPLETED, {"slot": slot, "checksum": payload.checksum})

    async def load(self, slot: str, method: Optional[LoadMethod] = None) -> SavePayload:
        """Load ``slot``, migrating or recovering as needed. Terminal failures raise RecoveryError."""
        self.events.publish(LOAD_STARTED, {"slot": slot, "method": method.value if method else None})
        validate_slot_name(slot)
        try:
            try:
                payload = await self._load_validated(slot, method)
                payload = await self._maybe_migrate(slot, payload)
            except Exception as e:
                logger.warning("Load of %s failed, starting recovery: %s", slot, e)
                payload = (await self.recovery.recover(slot, e)).payload
        except RecoveryError as e:
            self.events.publish(LOAD_FAILED, {"slot": slot, "error": str(e), "kind": e.kind.value})
            raise
        self.events.publish(LOAD_COMPLETED, {"slot": slot, "version": payload.save_version})
        return payload

    async def discover_health(self, force_refresh: bool = False) -> List[HealthReport]:
        return await self.inspector.discover(force_refresh=force_refresh)

    # Maintenance

    async def list_slots(self) -> List[str]:
        return await self.store.list_slots()

    async def delete(self, slot: str, purge_backups: bool = False) -> bool:
        return await self.store.delete_slot(slot, purge_backups=purge_backups)

    async def migrate(self, slot: str, target_version: Optional[str] = None) -> MigrationResult:
        return await self.migrations.migrate(slot, target_version or self.config.app_version)

    async def repair(self, slot: str) -> bool:
        return await self.inspector.repair(slot)

    async def compact(self) -> int:
        return await self.store.compact(keep_backups=self.config.storage.compact_keep_backups)

    # Internals

    async def _load_validated(self, slot: str, method: Optional[LoadMethod] = None) -> SavePayload:
        payload = await self.scheduler.load(slot, method)
        result = self.validator.validate(payload)
        if not self.validator.is_acceptable(result):
            raise SaveValidationError(f"Save {slot} failed validation: {result.summary()}", result)
        payload.requires_migration = result.requires_migration
        return payload

    async def _maybe_migrate(self, slot: str, payload: SavePayload) -> SavePayload:
        target = self.config.app_version
        if not (payload.requires_migration and self.config.migration.auto_migrate):
            return payload
        if not self.migrations.can_migrate(payload.save_version, target):
            logger.info("No migration path for %s from %s to %s", slot, payload.save_version, target)
            return payload
        result = await self.migrate(slot, target)
        if not result.success:
            logger.warning("Keeping %s at version %s: %s", slot, payload.save_version, result.message)
            return payload
        return await self._load_validated(slot)
