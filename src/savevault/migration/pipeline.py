from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..events import MIGRATION_COMPLETED, MIGRATION_FAILED, MIGRATION_STARTED, MIGRATION_STEP, EventBus
from ..integrity.checksum import compute_checksum
from ..integrity.validator import IntegrityValidator, Severity, ValidationResult
from ..persistence.codec import decode_payload, encode_payload
from ..persistence.errors import MigrationError
from ..persistence.models import SaveMetadata, SavePayload
from ..persistence.store import PayloadStore
from .registry import MigrationRegistry, MigrationStep

logger = logging.getLogger(__name__)


class RollbackStatus(str, Enum):
    NOT_NEEDED = "not_needed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"


_ROLLBACK_MESSAGES = {
    RollbackStatus.SUCCEEDED: "Rollback successful",
    RollbackStatus.FAILED: "Rollback failed",
    RollbackStatus.UNAVAILABLE: "No backup available for rollback",
}


@dataclass
class MigrationResult:
    slot: str
    source_version: str
    target_version: str
    success: bool = False
    completed_steps: List[str] = field(default_factory=list)
    backup_created: bool = False
    backup_id: Optional[str] = None
    final_validation: Optional[ValidationResult] = None
    rollback: RollbackStatus = RollbackStatus.NOT_NEEDED
    message: str = ""
    duration: float = 0.0


class MigrationPipeline:
    """Moves a slot's payload along the registered version chain.

    Each step gets a fresh copy of the payload and a bounded number of
    attempts. The payload is re-checksummed and validated after every step;
    a Critical result aborts the migration and the pre-migration backup is
    restored.
    """

    def __init__(
        self,
        store: PayloadStore,
        validator: IntegrityValidator,
        registry: MigrationRegistry,
        events: Optional[EventBus] = None,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backup_before_migration: bool = True,
    ) -> None:
        self.store = store
        self.validator = validator
        self.registry = registry
        self.events = events or EventBus()
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backup_before_migration = backup_before_migration

    def can_migrate(self, from_version: str, to_version: str) -> bool:
        return self.registry.can_migrate(from_version, to_version)

    async def migrate(self, slot: str, target_version: str) -> MigrationResult:
        result = MigrationResult(slot=slot, source_version="", target_version=target_version)
        started = time.perf_counter()
        backup_attempted = False
        self.events.publish(MIGRATION_STARTED, {"slot": slot, "target": target_version})
        try:
            meta = await self.store.load_metadata(slot)
            if meta is None:
                raise MigrationError(f"Cannot migrate {slot}: no metadata found")
            result.source_version = meta.version
            if meta.version == target_version:
                result.success = True
                result.message = f"{slot} is already at version {target_version}"
                result.duration = time.perf_counter() - started
                self.events.publish(MIGRATION_COMPLETED, {"slot": slot, "steps": 0})
                return result

            plan = self.registry.plan_path(meta.version, target_version)
            if not plan:
                raise MigrationError(f"No migration path from {meta.version} to {target_version}")

            if self.backup_before_migration:
                backup_attempted = True
                try:
                    backup = await self.store.create_backup(slot)
                    result.backup_created = True
                    result.backup_id = backup.backup_id
                except Exception as e:
                    logger.warning("Pre-migration backup of %s failed, continuing: %s", slot, e)

            payload = decode_payload(await self.store.load(slot))
            for index, step in enumerate(plan):
                payload = await self._run_step(step, payload)
                payload.save_version = step.to_version
                payload.checksum = compute_checksum(payload)
                check = self.validator.validate(payload)
                if check.severity is Severity.CRITICAL:
                    raise MigrationError(f"Validation failed after step {step.name}: {'; '.join(check.errors)}")
                result.completed_steps.append(step.name)
                self.events.publish(
                    MIGRATION_STEP,
                    {"slot": slot, "step": step.name, "index": index + 1, "total": len(plan)},
                )

            final = self.validator.validate(payload)
            result.final_validation = final
            if final.severity is Severity.CRITICAL:
                raise MigrationError(f"Final validation failed: {'; '.join(final.errors)}")

            payload.requires_migration = False
            payload.touch()
            await self.store.save(slot, encode_payload(payload))
            await self.store.save_metadata(slot, SaveMetadata.from_payload(slot, payload))
            result.success = True
            result.message = f"Migrated {slot} from {result.source_version} to {target_version}"
            logger.info(result.message)
            self.events.publish(MIGRATION_COMPLETED, {"slot": slot, "steps": len(result.completed_steps)})
        except Exception as e:
            result.success = False
            if result.backup_created:
                result.rollback = await self._rollback(slot, result.backup_id)
            elif backup_attempted:
                result.rollback = RollbackStatus.UNAVAILABLE
            result.message = f"Migration of {slot} failed: {e}"
            if result.rollback in _ROLLBACK_MESSAGES:
                result.message += f". {_ROLLBACK_MESSAGES[result.rollback]}"
            logger.error(result.message)
            self.events.publish(
                MIGRATION_FAILED, {"slot": slot, "error": str(e), "rollback": result.rollback.value}
            )
        result.duration = time.perf_counter() - started
        return result

    async def _run_step(self, step: MigrationStep, payload: SavePayload) -> SavePayload:
        last: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await step.apply(payload.copy())
            except Exception as e:
                last = e
                logger.warning("Migration step %s attempt %d/%d failed: %s", step.name, attempt, self.max_attempts, e)
            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff_base * 2 ** (attempt - 1))
        raise MigrationError(f"Step {step.name} failed after {self.max_attempts} attempts: {last}") from last

    async def _rollback(self, slot: str, backup_id: Optional[str]) -> RollbackStatus:
        if backup_id is None:
            return RollbackStatus.UNAVAILABLE
        try:
            await self.store.restore_from_backup(slot, backup_id)
        except Exception as e:
            logger.error("Rollback of %s to %s failed: %s", slot, backup_id, e)
            return RollbackStatus.FAILED
        logger.info("Rolled back %s to backup %s", slot, backup_id)
        return RollbackStatus.SUCCEEDED
