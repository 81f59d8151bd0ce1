from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from ..events import RECOVERY_COMPLETED, RECOVERY_FAILED, RECOVERY_STARTED, RECOVERY_STEP, EventBus
from ..integrity.checksum import compute_checksum
from ..integrity.health import HealthInspector
from ..integrity.validator import IntegrityValidator, Severity
from ..loading.memory import cleanup_memory
from ..persistence.codec import decode_payload, encode_payload
from ..persistence.errors import (
    BackupNotFoundError,
    CorruptSaveError,
    RecoveryError,
    SaveError,
    SaveValidationError,
)
from ..persistence.models import SaveMetadata, SavePayload, utc_now
from ..persistence.store import PayloadStore
from .kinds import ErrorKind, LoadFailure, Strategy

logger = logging.getLogger(__name__)

Loader = Callable[[str], Awaitable[SavePayload]]

DEFAULT_HISTORY_LIMIT = 10

_NAME_RE = re.compile(r'"save_name"\s*:\s*"([^"]+)"')
_VERSION_RE = re.compile(r'"save_version"\s*:\s*"([^"]+)"')


@dataclass
class StrategyOutcome:
    strategy: Strategy
    success: bool
    duration: float
    error: Optional[str] = None


@dataclass
class RecoveryAttempt:
    slot: str
    original_exception: BaseException
    kind: ErrorKind
    planned_strategies: List[Strategy]
    attempted_strategies: List[Strategy] = field(default_factory=list)
    outcomes: List[StrategyOutcome] = field(default_factory=list)
    successful_strategy: Optional[Strategy] = None
    started_at: datetime = field(default_factory=utc_now)
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.successful_strategy is not None


@dataclass
class RecoveryResult:
    payload: SavePayload
    attempt: RecoveryAttempt


@dataclass
class RecoveryAnalysis:
    total_attempts: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = 0.0
    average_duration: float = 0.0
    most_successful_strategy: Optional[Strategy] = None


class RecoveryOrchestrator:
    """Turns a failed load into a sequence of recovery strategies.

    Analyze classifies the failure, plan filters and orders candidate
    strategies, and each strategy runs in turn until one yields a payload the
    validator accepts. Exhaustion raises RecoveryError.
    """

    def __init__(
        self,
        store: PayloadStore,
        inspector: HealthInspector,
        validator: IntegrityValidator,
        loader: Loader,
        events: Optional[EventBus] = None,
        strategy_delay: float = 1.0,
        retry_base_delay: float = 1.0,
        retry_attempts: int = 3,
        max_backup_candidates: int = 3,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        cleanup: Callable[[], Awaitable[None]] = cleanup_memory,
    ) -> None:
        self.store = store
        self.inspector = inspector
        self.validator = validator
        self.events = events or EventBus()
        self.strategy_delay = strategy_delay
        self.retry_base_delay = retry_base_delay
        self.retry_attempts = retry_attempts
        self.max_backup_candidates = max_backup_candidates
        self.history_limit = history_limit
        self._loader = loader
        self._cleanup = cleanup
        self._history: Dict[str, Deque[RecoveryAttempt]] = {}
        self._handlers = {
            Strategy.RETRY_WITH_DELAY: self._retry_with_delay,
            Strategy.RESTORE_FROM_BACKUP: self._restore_from_backup,
            Strategy.REPAIR_SAVE_FILE: self._repair_save_file,
            Strategy.PARTIAL_DATA_RECOVERY: self._partial_data_recovery,
            Strategy.FALLBACK_TO_DEFAULT: self._fallback_to_default,
        }

    async def analyze(self, slot: str, exc: BaseException) -> LoadFailure:
        has_backups = bool(await self.store.list_backups(slot))
        slot_exists = await self.store.slot_exists(slot)
        failure = LoadFailure.from_exception(slot, exc, has_backups=has_backups, slot_exists=slot_exists)
        logger.info("Load failure for %s classified as %s", slot, failure.kind.value)
        return failure

    async def recover(self, slot: str, exc: BaseException) -> RecoveryResult:
        failure = await self.analyze(slot, exc)
        planned = failure.plan()
        attempt = RecoveryAttempt(slot=slot, original_exception=exc, kind=failure.kind, planned_strategies=planned)
        self.events.publish(
            RECOVERY_STARTED,
            {"slot": slot, "kind": failure.kind.value, "strategies": [s.value for s in planned]},
        )
        if not planned:
            self._record(attempt)
            self.events.publish(RECOVERY_FAILED, {"slot": slot, "reason": "no applicable strategy"})
            raise RecoveryError(
                f"No recovery strategy applies to {failure.message} for slot {slot}",
                slot=slot,
                kind=failure.kind,
                original=exc,
            )

        started = time.perf_counter()
        for index, strategy in enumerate(planned):
            if index > 0 and self.strategy_delay > 0:
                await asyncio.sleep(self.strategy_delay)
            self.events.publish(
                RECOVERY_STEP,
                {
                    "slot": slot,
                    "strategy": strategy.value,
                    "index": index + 1,
                    "total": len(planned),
                    "progress": index / len(planned),
                },
            )
            attempt.attempted_strategies.append(strategy)
            step_started = time.perf_counter()
            try:
                payload = await self._handlers[strategy](slot)
                result = self.validator.validate(payload)
                if not self.validator.is_acceptable(result):
                    raise SaveValidationError(f"Recovered payload rejected: {result.summary()}", result)
            except Exception as e:
                logger.warning("Recovery strategy %s failed for %s: %s", strategy.value, slot, e)
                attempt.outcomes.append(
                    StrategyOutcome(strategy, False, time.perf_counter() - step_started, str(e))
                )
                continue
            attempt.outcomes.append(StrategyOutcome(strategy, True, time.perf_counter() - step_started))
            attempt.successful_strategy = strategy
            attempt.duration = time.perf_counter() - started
            self._record(attempt)
            logger.info("Recovered slot %s with %s", slot, strategy.value)
            self.events.publish(
                RECOVERY_COMPLETED, {"slot": slot, "strategy": strategy.value, "duration": attempt.duration}
            )
            return RecoveryResult(payload=payload, attempt=attempt)

        attempt.duration = time.perf_counter() - started
        self._record(attempt)
        logger.error("All %d recovery strategies failed for %s", len(planned), slot)
        self.events.publish(
            RECOVERY_FAILED,
            {"slot": slot, "reason": "exhausted", "attempted": [s.value for s in attempt.attempted_strategies]},
        )
        raise RecoveryError(
            f"Recovery exhausted for slot {slot} after {len(planned)} strategies",
            slot=slot,
            kind=failure.kind,
            original=exc,
            attempt=attempt,
        )

    # Strategies

    async def _retry_with_delay(self, slot: str) -> SavePayload:
        last: Optional[BaseException] = None
        for n in range(1, self.retry_attempts + 1):
            await self._cleanup()
            try:
                return await self._loader(slot)
            except Exception as e:
                last = e
                logger.debug("Retry %d/%d for %s failed: %s", n, self.retry_attempts, slot, e)
            if n < self.retry_attempts:
                await asyncio.sleep(self.retry_base_delay * 2 ** (n - 1))
        raise SaveError(f"Retries exhausted for {slot}: {last}") from last

    async def _restore_from_backup(self, slot: str) -> SavePayload:
        backups = (await self.store.list_backups(slot))[: self.max_backup_candidates]
        if not backups:
            raise BackupNotFoundError(f"No backups available for {slot}")
        last: Optional[BaseException] = None
        previous = await self.store.read_raw(slot)
        for backup in backups:
            try:
                if await self.inspector.restore_checked(slot, backup, require_acceptable=True) is None:
                    continue
                return await self._loader(slot)
            except Exception as e:
                last = e
                logger.warning("Backup %s unusable for %s: %s", backup.backup_id, slot, e)
                await self.inspector.put_back(slot, previous)
        raise SaveError(f"No usable backup among {len(backups)} candidates for {slot}") from last

    async def _repair_save_file(self, slot: str) -> SavePayload:
        if not await self.inspector.repair(slot):
            raise SaveError(f"Repair failed for {slot}")
        return await self._loader(slot)

    async def _partial_data_recovery(self, slot: str) -> SavePayload:
        raw = await self.store.load(slot)
        try:
            payload = decode_payload(raw)
        except CorruptSaveError:
            text = raw.decode("utf-8", errors="replace")
            name = _extract(_NAME_RE, text) or f"Recovered {slot}"
            version = _extract(_VERSION_RE, text) or self.validator.app_version
            logger.info("Seeding partial recovery of %s from name=%r version=%r", slot, name, version)
            payload = SavePayload.create_default(name, version)
        payload = self.validator.sanitize(payload)
        result = self.validator.validate(payload)
        if result.severity is Severity.CRITICAL:
            raise SaveValidationError(f"Partial recovery still critical: {result.summary()}", result)
        return payload

    async def _fallback_to_default(self, slot: str) -> SavePayload:
        payload = SavePayload.create_default(f"Recovered {slot}", self.validator.app_version)
        payload.checksum = compute_checksum(payload)
        await self.store.save(slot, encode_payload(payload))
        await self.store.save_metadata(slot, SaveMetadata.from_payload(slot, payload))
        logger.warning("Slot %s replaced with a default save", slot)
        return payload

    # History

    def _record(self, attempt: RecoveryAttempt) -> None:
        history = self._history.setdefault(attempt.slot, deque(maxlen=self.history_limit))
        history.append(attempt)

    def history(self, slot: str) -> List[RecoveryAttempt]:
        return list(self._history.get(slot, ()))

    def clear_history(self, slot: Optional[str] = None) -> None:
        if slot is None:
            self._history.clear()
        else:
            self._history.pop(slot, None)

    def analysis(self) -> RecoveryAnalysis:
        attempts = [a for history in self._history.values() for a in history]
        if not attempts:
            return RecoveryAnalysis()
        successes = [a for a in attempts if a.success]
        winners = Counter(a.successful_strategy for a in successes)
        return RecoveryAnalysis(
            total_attempts=len(attempts),
            successful=len(successes),
            failed=len(attempts) - len(successes),
            success_rate=len(successes) / len(attempts),
            average_duration=sum(a.duration for a in attempts) / len(attempts),
            most_successful_strategy=winners.most_common(1)[0][0] if winners else None,
        )


def _extract(pattern: "re.Pattern[str]", text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(1) if match else None
