from __future__ import annotations

import asyncio
import json
import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

from ..persistence.cache import TTLCache
from ..persistence.codec import decode_payload, encode_payload
from ..persistence.errors import CorruptSaveError, EmptySaveFileError
from ..persistence.models import SaveMetadata, utc_now
from ..persistence.store import BackupInfo, PayloadStore
from .validator import IntegrityValidator, Severity, ValidationResult, mentions_marker

logger = logging.getLogger(__name__)

MIN_FILE_SIZE = 100
MAX_FILE_SIZE = 100 * 1024 * 1024
MAX_FILE_AGE = timedelta(days=5 * 365)
METADATA_DRIFT = timedelta(minutes=5)
MAX_HEALTHY_BACKUPS = 10
DEFAULT_HEALTH_TTL = 600.0

# An issue template mentioning any of these makes the slot Critical
CRITICAL_ISSUE_MARKERS = ("corrupt", "missing", "integrity", "permission")


class HealthLevel(str, Enum):
    MISSING = "Missing"
    CRITICAL = "Critical"
    POOR = "Poor"
    DEGRADED = "Degraded"
    FAIR = "Fair"
    GOOD = "Good"
    EXCELLENT = "Excellent"


ATTENTION_LEVELS = (HealthLevel.MISSING, HealthLevel.CRITICAL, HealthLevel.POOR, HealthLevel.DEGRADED)


@dataclass
class HealthReport:
    slot: str
    overall_health: HealthLevel = HealthLevel.EXCELLENT
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    file_size: int = 0
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    checked_at: datetime = field(default_factory=utc_now)
    exists: bool = True
    has_integrity: bool = False
    is_data_valid: bool = False
    has_metadata: bool = False
    backup_count: int = 0
    requires_migration: bool = False
    validation: Optional[ValidationResult] = None
    has_critical_issue: bool = False

    def add_issue(self, template: str, **values: Any) -> None:
        """Record an issue; only the fixed ``template`` can make the slot Critical."""
        self.issues.append(template.format(**values) if values else template)
        if mentions_marker(template, CRITICAL_ISSUE_MARKERS):
            self.has_critical_issue = True

    @property
    def needs_attention(self) -> bool:
        return self.overall_health in ATTENTION_LEVELS

    def summary(self) -> str:
        return (
            f"{self.slot}: {self.overall_health.value} "
            f"({len(self.issues)} issues, {len(self.warnings)} warnings, {self.backup_count} backups)"
        )


def classify_health(report: HealthReport) -> HealthLevel:
    if not report.exists:
        return HealthLevel.MISSING
    if report.has_critical_issue:
        return HealthLevel.CRITICAL
    if len(report.issues) >= 3:
        return HealthLevel.POOR
    if report.issues or not report.is_data_valid:
        return HealthLevel.DEGRADED
    if len(report.warnings) >= 5:
        return HealthLevel.FAIR
    if report.warnings:
        return HealthLevel.GOOD
    return HealthLevel.EXCELLENT


def summarize(reports: Iterable[HealthReport]) -> str:
    reports = list(reports)
    counts = Counter(r.overall_health for r in reports)
    parts = [f"{level.value}: {counts[level]}" for level in HealthLevel if counts[level]]
    return f"{len(reports)} save files checked" + (f" ({', '.join(parts)})" if parts else "")


def brace_balance(text: str) -> int:
    """Net count of '{' over '}' outside JSON string literals."""
    balance = 0
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            balance += 1
        elif ch == "}":
            balance -= 1
    return balance


class HealthInspector:
    """Grades each slot from Missing to Excellent.

    Five phases (file system, integrity, data, metadata, backups) each add
    issues or warnings; an exception inside one phase becomes an issue and
    the remaining phases still run. Reports are cached per slot and dropped
    whenever the store writes that slot.
    """

    def __init__(
        self,
        store: PayloadStore,
        validator: IntegrityValidator,
        cache_ttl: float = DEFAULT_HEALTH_TTL,
        max_concurrency: int = 4,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.validator = validator
        self.max_concurrency = max_concurrency
        self._now = now
        self._cache: TTLCache[HealthReport] = TTLCache(cache_ttl, name="health cache")
        store.add_change_listener(self.invalidate)

    # Cache

    def invalidate(self, slot: str) -> None:
        self._cache.invalidate(slot)

    def clear_cache(self) -> None:
        self._cache.clear()

    def cached_report(self, slot: str) -> Optional[HealthReport]:
        return self._cache.get(slot)

    def reports_with(self, level: HealthLevel) -> List[HealthReport]:
        return [r for r in self._cache.values() if r.overall_health is level]

    def requiring_attention(self) -> List[HealthReport]:
        return [r for r in self._cache.values() if r.needs_attention]

    # Checks

    async def check_health(self, slot: str, use_cache: bool = True) -> HealthReport:
        if use_cache:
            cached = self._cache.get(slot)
            if cached is not None:
                return cached

        report = HealthReport(slot=slot, checked_at=self._now())
        if not await self.store.slot_exists(slot):
            report.exists = False
            report.add_issue("Save file does not exist")
            report.has_metadata = await self.store.read_metadata_file(slot) is not None
            report.overall_health = classify_health(report)
            self._cache.put(slot, report)
            return report

        raw: Optional[bytes] = None
        await self._run_phase("File system", report, self._check_file_system(report))
        try:
            raw = await self.store.load(slot)
        except EmptySaveFileError:
            report.add_issue("File is empty")
        except PermissionError as e:
            report.add_issue("Permission denied reading save file: {error}", error=e)
        except OSError as e:
            report.add_issue("File could not be read: {error}", error=e)
        if raw is not None:
            await self._run_phase("Integrity", report, self._check_integrity(report, raw))
            await self._run_phase("Data validation", report, self._check_data(report, raw))
        await self._run_phase("Metadata", report, self._check_metadata(report))
        await self._run_phase("Backup", report, self._check_backups(report))

        report.overall_health = classify_health(report)
        self._cache.put(slot, report)
        logger.debug("Health of %s", report.summary())
        return report

    @staticmethod
    async def _run_phase(name: str, report: HealthReport, phase) -> None:
        try:
            await phase
        except Exception as e:
            logger.warning("%s check failed for %s: %s", name, report.slot, e)
            report.add_issue(name + " check failed: {error}", error=e)

    async def _check_file_system(self, report: HealthReport) -> None:
        info = await self.store.file_info(report.slot)
        if info is None:
            return
        report.file_size = info.size
        report.created_at = info.created_at
        report.modified_at = info.modified_at
        if info.size < MIN_FILE_SIZE:
            report.add_issue("File size too small ({size} bytes)", size=info.size)
        elif info.size > MAX_FILE_SIZE:
            report.add_issue("File size too large ({size} bytes)", size=info.size)
        if self._now() - info.created_at > MAX_FILE_AGE:
            report.warnings.append("Save file is more than 5 years old")
        if not os.access(info.path, os.R_OK | os.W_OK):
            report.add_issue("Insufficient file permissions")

    async def _check_integrity(self, report: HealthReport, raw: bytes) -> None:
        text = raw.decode("utf-8", errors="replace")
        found_before = len(report.issues)
        if "\0" in text:
            report.add_issue("File contains null characters (possible corruption)")
        stripped = text.strip()
        if not stripped.startswith("{"):
            report.add_issue("File does not start with a JSON object marker")
        if not stripped.endswith("}"):
            report.add_issue("File does not end with a JSON object marker")
        balance = brace_balance(text)
        if balance != 0:
            report.add_issue("Unbalanced braces in JSON: {balance}", balance=balance)
        try:
            json.loads(text)
        except ValueError:
            report.add_issue("File integrity validation failed")
        report.has_integrity = len(report.issues) == found_before

    async def _check_data(self, report: HealthReport, raw: bytes) -> None:
        if not report.has_integrity:
            return
        try:
            payload = decode_payload(raw)
        except CorruptSaveError as e:
            report.add_issue("Data validation failed: {error}", error=e)
            return
        result = self.validator.validate(payload)
        report.validation = result
        report.is_data_valid = result.is_valid
        report.requires_migration = result.requires_migration
        for template, values in result.error_sources:
            report.add_issue("Validation Error: " + template, **values)
        report.warnings.extend(f"Validation Warning: {w}" for w in result.warnings)
        if payload.last_modified is not None and payload.last_modified > self._now() + timedelta(days=1):
            report.warnings.append("Save modification date is in the future")

    async def _check_metadata(self, report: HealthReport) -> None:
        meta = await self.store.read_metadata_file(report.slot)
        if meta is None:
            report.warnings.append("No metadata file found")
            return
        report.has_metadata = True
        if not meta.slot_name:
            report.warnings.append("Metadata has no save name")
        if not meta.version:
            report.warnings.append("Metadata has no version")
        if meta.play_time_hours < 0:
            report.add_issue("Metadata play time is negative")
        if meta.current_credits < 0:
            report.add_issue("Metadata credits are negative")
        if report.modified_at is not None and abs(meta.last_modified - report.modified_at) > METADATA_DRIFT:
            report.warnings.append("Metadata modification time does not match the save file")

    async def _check_backups(self, report: HealthReport) -> None:
        report.backup_count = len(await self.store.list_backups(report.slot))
        if report.backup_count == 0:
            report.warnings.append("No backup files available")
        elif report.backup_count > MAX_HEALTHY_BACKUPS:
            report.warnings.append(f"Excessive backup files ({report.backup_count})")

    # Discovery

    async def discover(self, force_refresh: bool = False) -> List[HealthReport]:
        """Health-check every slot and flag metadata files whose slot is gone."""
        slots = await self.store.list_slots()
        limiter = asyncio.Semaphore(self.max_concurrency)

        async def check(slot: str) -> HealthReport:
            async with limiter:
                return await self.check_health(slot, use_cache=not force_refresh)

        reports = list(await asyncio.gather(*(check(s) for s in slots)))
        for orphan in sorted(set(await self.store.list_metadata_slots()) - set(slots)):
            logger.warning("Orphaned metadata file for slot %s", orphan)
            report = HealthReport(slot=orphan, exists=False, has_metadata=True, checked_at=self._now())
            report.add_issue("Orphaned metadata file with no matching save file: {slot}", slot=orphan)
            report.overall_health = classify_health(report)
            reports.append(report)
        logger.info(summarize(reports))
        return reports

    # Repair

    async def check_backup(self, slot: str, backup: BackupInfo) -> HealthReport:
        """Grade the bytes of ``backup`` without touching the slot."""
        report = HealthReport(slot=slot, checked_at=self._now(), file_size=backup.size)
        try:
            raw = await self.store.read_backup(slot, backup.backup_id)
        except OSError as e:
            report.add_issue("Backup file is missing or unreadable: {error}", error=e)
        else:
            await self._run_phase("Integrity", report, self._check_integrity(report, raw))
            await self._run_phase("Data validation", report, self._check_data(report, raw))
        report.overall_health = classify_health(report)
        return report

    def _usable(self, report: HealthReport, require_acceptable: bool) -> bool:
        if report.overall_health in (HealthLevel.CRITICAL, HealthLevel.MISSING):
            return False
        if require_acceptable:
            return report.validation is not None and self.validator.is_acceptable(report.validation)
        return True

    async def restore_checked(
        self, slot: str, backup: BackupInfo, require_acceptable: bool = False
    ) -> Optional[HealthReport]:
        """Restore ``backup`` over ``slot`` and return the slot's new report.

        The backup is graded first; an unusable one leaves the slot untouched and
        yields None. If the restored slot still grades as unusable, the bytes it
        held before are written back. ``require_acceptable`` also demands that the
        backup passes the validator's load threshold.
        """
        candidate = await self.check_backup(slot, backup)
        if not self._usable(candidate, require_acceptable):
            logger.warning(
                "Backup %s of %s is %s, not restoring it", backup.backup_id, slot, candidate.overall_health.value
            )
            return None
        previous = await self.store.read_raw(slot)
        await self.store.restore_from_backup(slot, backup.backup_id)
        report = await self.check_health(slot, use_cache=False)
        if not self._usable(report, require_acceptable):
            logger.warning(
                "Backup %s restored for %s is %s, reverting", backup.backup_id, slot, report.overall_health.value
            )
            await self.put_back(slot, previous)
            return None
        return report

    async def put_back(self, slot: str, previous: Optional[bytes]) -> None:
        """Write back payload bytes captured with ``store.read_raw``."""
        if previous:
            await self.store.replace(slot, previous)

    async def repair(self, slot: str) -> bool:
        """Repair ``slot`` in place.

        A Critical slot is first restored from the newest healthy backup; otherwise a
        decodable payload is sanitized and written back.
        """
        report = await self.check_health(slot, use_cache=False)
        if report.overall_health is HealthLevel.MISSING:
            return False
        if report.overall_health is HealthLevel.CRITICAL:
            for backup in await self.store.list_backups(slot):
                if await self.restore_checked(slot, backup) is not None:
                    logger.info("Repaired %s from backup %s", slot, backup.backup_id)
                    return True
        if not report.issues:
            return True
        try:
            payload = decode_payload(await self.store.load(slot))
        except (CorruptSaveError, EmptySaveFileError) as e:
            logger.warning("Cannot repair %s, payload unreadable: %s", slot, e)
            return False
        fixed = self.validator.sanitize(payload)
        fixed.touch()
        if self.validator.validate(fixed).severity is Severity.CRITICAL:
            return False
        await self.store.save(slot, encode_payload(fixed))
        await self.store.save_metadata(slot, SaveMetadata.from_payload(slot, fixed))
        logger.info("Repaired %s by sanitizing its payload", slot)
        return True

