from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional

import aiofiles
import aiofiles.os

from .cache import TTLCache
from .codec import decode_metadata, decode_payload, encode_metadata
from .errors import BackupNotFoundError, CorruptSaveError, EmptySaveFileError, SlotNotFoundError
from .models import SaveMetadata
from .paths import BACKUP_SUFFIX, PAYLOAD_SUFFIX, TEMP_SUFFIX, SaveLayout, parse_backup_id, validate_slot_name

logger = logging.getLogger(__name__)

DEFAULT_MAX_BACKUPS = 5
DEFAULT_METADATA_TTL = 300.0
TEMP_FILE_MAX_AGE = 3600.0


@dataclass(frozen=True)
class BackupInfo:
    backup_id: str
    slot: str
    path: Path
    created_at: datetime
    sequence: int
    size: int

    @property
    def sort_key(self):
        return (self.created_at, self.sequence)


@dataclass(frozen=True)
class SaveFileInfo:
    slot: str
    path: Path
    size: int
    created_at: datetime
    modified_at: datetime


class PayloadStore:
    """Owns the on-disk bytes of every slot under one SaveData directory.

    Writes go through a temp file followed by an atomic rename, so a reader sees
    either the previous payload or the new one. Nothing here retries; errors are
    logged and re-raised for the recovery layer to classify.
    """

    def __init__(
        self,
        layout: SaveLayout,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        metadata_ttl: float = DEFAULT_METADATA_TTL,
        temp_file_max_age: float = TEMP_FILE_MAX_AGE,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.layout = layout.ensure()
        self.max_backups = max_backups
        self.temp_file_max_age = temp_file_max_age
        self._now = now
        self._metadata_cache: TTLCache[SaveMetadata] = TTLCache(metadata_ttl, name="metadata cache")
        self._listeners: List[Callable[[str], None]] = []

    # Change notification

    def add_change_listener(self, callback: Callable[[str], None]) -> None:
        self._listeners.append(callback)

    def _changed(self, slot: str) -> None:
        self._metadata_cache.invalidate(slot)
        for cb in self._listeners:
            cb(slot)

    # Payload I/O

    async def save(self, slot: str, data: bytes) -> Path:
        """Atomically replace the payload of ``slot``, backing up the previous file."""
        target = self.layout.payload_path(slot)
        await self._atomic_write(slot, target, data, backup=True)
        logger.info("Saved slot %s (%d bytes)", slot, len(data))
        self._changed(slot)
        return target

    async def load(self, slot: str) -> bytes:
        path = self.layout.payload_path(slot)
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except FileNotFoundError as e:
            raise SlotNotFoundError(f"Save slot not found: {slot}") from e
        if not data:
            raise EmptySaveFileError(f"Save file is empty: {path}")
        logger.debug("Loaded %d bytes from %s", len(data), path)
        return data

    async def iter_chunks(self, slot: str, chunk_size: int) -> AsyncIterator[bytes]:
        """Yield the payload of ``slot`` in pieces of at most ``chunk_size`` bytes."""
        path = self.layout.payload_path(slot)
        try:
            f = await aiofiles.open(path, "rb")
        except FileNotFoundError as e:
            raise SlotNotFoundError(f"Save slot not found: {slot}") from e
        try:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await f.close()

    async def _atomic_write(self, slot: str, target: Path, data: bytes, backup: bool) -> None:
        tmp = self.layout.temp_path(slot)
        try:
            logger.debug("Writing slot %s to temporary file: %s", slot, tmp)
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(data)
                await f.flush()
                os.fsync(f.fileno())
            if not await aiofiles.os.path.exists(tmp) or (await aiofiles.os.stat(tmp)).st_size == 0:
                raise OSError(f"Temporary file was not written: {tmp}")
            if backup and await aiofiles.os.path.exists(target):
                await self.create_backup(slot)
            # os.replace removes the old file and moves the new one in a single step
            await aiofiles.os.replace(tmp, target)
        except Exception:
            logger.exception("Atomic write failed for %s", target)
            await self._discard(tmp)
            raise

    @staticmethod
    async def _discard(path: Path) -> None:
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            logger.warning("Could not remove temporary file %s: %s", path, e)

    # Backups

    async def create_backup(self, slot: str) -> BackupInfo:
        """Copy the current payload into Backups/ and prune beyond the cap."""
        source = self.layout.payload_path(slot)
        async with aiofiles.open(source, "rb") as f:
            data = await f.read()
        when = self._now()
        base_id = self.layout.backup_id_for(slot, when)
        # Past the highest sequence of this second, so a new backup never sorts below an older one
        taken = [
            b.sequence
            for b in await self.list_backups(slot)
            if self.layout.backup_id_for(slot, b.created_at) == base_id
        ]
        sequence = max(taken) + 1 if taken else 0
        backup_id = self.layout.backup_id_for(slot, when, sequence)
        path = self.layout.backup_path(backup_id)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
        logger.info("Created backup %s for slot %s", backup_id, slot)
        await self.prune_backups(slot, self.max_backups)
        return BackupInfo(
            backup_id=backup_id,
            slot=slot,
            path=path,
            created_at=when.replace(microsecond=0),
            sequence=sequence,
            size=len(data),
        )

    async def prune_backups(self, slot: str, keep: int) -> List[str]:
        backups = await self.list_backups(slot)
        removed = []
        for info in backups[keep:]:
            await aiofiles.os.remove(info.path)
            removed.append(info.backup_id)
            logger.debug("Pruned backup %s", info.backup_id)
        return removed

    async def list_backups(self, slot: str) -> List[BackupInfo]:
        """Backups of ``slot``, newest first."""
        validate_slot_name(slot)
        return await asyncio.to_thread(self._scan_backups, slot)

    def _scan_backups(self, slot: str) -> List[BackupInfo]:
        found = []
        if not self.layout.backup_dir.is_dir():
            return found
        for path in self.layout.backup_dir.glob(f"*{BACKUP_SUFFIX}"):
            parsed = parse_backup_id(path.stem)
            if parsed is None or parsed[0] != slot:
                continue
            _, created_at, sequence = parsed
            found.append(
                BackupInfo(
                    backup_id=path.stem,
                    slot=slot,
                    path=path,
                    created_at=created_at,
                    sequence=sequence,
                    size=path.stat().st_size,
                )
            )
        found.sort(key=lambda b: b.sort_key, reverse=True)
        return found

    async def read_backup(self, slot: str, backup_id: str) -> bytes:
        parsed = parse_backup_id(backup_id)
        if parsed is None or parsed[0] != slot:
            raise BackupNotFoundError(f"Backup {backup_id} not found for slot {slot}")
        try:
            async with aiofiles.open(self.layout.backup_path(backup_id), "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise BackupNotFoundError(f"Backup {backup_id} not found for slot {slot}") from e

    async def restore_from_backup(self, slot: str, backup_id: str) -> None:
        """Replace the slot payload with a backup copy. The current payload is not backed up."""
        data = await self.read_backup(slot, backup_id)
        await self.replace(slot, data)
        logger.info("Restored slot %s from backup %s", slot, backup_id)

    async def read_raw(self, slot: str) -> Optional[bytes]:
        """Current payload bytes of ``slot`` as stored, or None when there is no file."""
        try:
            async with aiofiles.open(self.layout.payload_path(slot), "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return None

    async def replace(self, slot: str, data: bytes) -> None:
        """Atomically write ``data`` as the payload of ``slot`` without taking a backup."""
        await self._atomic_write(slot, self.layout.payload_path(slot), data, backup=False)
        self._changed(slot)

    # Slots

    async def list_slots(self) -> List[str]:
        return await asyncio.to_thread(self._scan_slots)

    def _scan_slots(self) -> List[str]:
        return sorted(
            p.stem
            for p in self.layout.root.glob(f"*{PAYLOAD_SUFFIX}")
            if p.is_file() and not self.layout.is_metadata_file(p)
        )

    async def list_metadata_slots(self) -> List[str]:
        """Slot names for which a metadata file exists, whether or not the payload does."""
        return await asyncio.to_thread(
            lambda: sorted(
                self.layout.slot_of_metadata(p)
                for p in self.layout.root.glob(f"*{PAYLOAD_SUFFIX}")
                if self.layout.is_metadata_file(p)
            )
        )

    async def slot_exists(self, slot: str) -> bool:
        return await aiofiles.os.path.isfile(self.layout.payload_path(slot))

    async def delete_slot(self, slot: str, purge_backups: bool = False) -> bool:
        """Delete a slot's payload and metadata. Returns False if neither existed."""
        deleted = False
        for path in (self.layout.payload_path(slot), self.layout.metadata_path(slot)):
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
                deleted = True
        if purge_backups:
            for info in await self.list_backups(slot):
                await aiofiles.os.remove(info.path)
        if deleted:
            logger.info("Deleted slot %s", slot)
        self._changed(slot)
        return deleted

    # Metadata

    async def save_metadata(self, slot: str, meta: SaveMetadata) -> None:
        path = self.layout.metadata_path(slot)
        await self._atomic_write(slot, path, encode_metadata(meta), backup=False)
        self._changed(slot)
        self._metadata_cache.put(slot, meta)

    async def load_metadata(self, slot: str) -> Optional[SaveMetadata]:
        """Return metadata for ``slot``, regenerating the file from the payload when missing."""
        cached = self._metadata_cache.get(slot)
        if cached is not None:
            logger.debug("Metadata cache hit for %s", slot)
            return cached
        path = self.layout.metadata_path(slot)
        if await aiofiles.os.path.exists(path):
            async with aiofiles.open(path, "rb") as f:
                meta = decode_metadata(await f.read())
            self._metadata_cache.put(slot, meta)
            return meta
        if not await self.slot_exists(slot):
            return None
        meta = await self._regenerate_metadata(slot)
        await self.save_metadata(slot, meta)
        logger.info("Regenerated missing metadata for slot %s", slot)
        return meta

    async def read_metadata_file(self, slot: str) -> Optional[SaveMetadata]:
        """Read the metadata file as stored, bypassing cache and regeneration."""
        path = self.layout.metadata_path(slot)
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, "rb") as f:
            return decode_metadata(await f.read())

    async def _regenerate_metadata(self, slot: str) -> SaveMetadata:
        try:
            payload = decode_payload(await self.load(slot))
            return SaveMetadata.from_payload(slot, payload)
        except (CorruptSaveError, EmptySaveFileError) as e:
            logger.warning("Payload of %s unreadable, deriving metadata from file times: %s", slot, e)
        info = await self.file_info(slot)
        return SaveMetadata(
            slot_name=slot,
            version="",
            creation_time=info.created_at,
            last_modified=info.modified_at,
            checksum="generated",
        )

    def clear_metadata_cache(self) -> None:
        self._metadata_cache.clear()

    # Maintenance

    async def file_info(self, slot: str) -> Optional[SaveFileInfo]:
        path = self.layout.payload_path(slot)
        try:
            st = await aiofiles.os.stat(path)
        except FileNotFoundError:
            return None
        modified = datetime.fromtimestamp(st.st_mtime).astimezone()
        created = datetime.fromtimestamp(min(st.st_ctime, st.st_mtime)).astimezone()
        return SaveFileInfo(slot=slot, path=path, size=st.st_size, created_at=created, modified_at=modified)

    async def cleanup_temp_files(self, max_age: Optional[float] = None) -> int:
        """Remove temp files older than ``max_age`` seconds left behind by interrupted writes."""
        cutoff = time.time() - (self.temp_file_max_age if max_age is None else max_age)
        stale = await asyncio.to_thread(
            lambda: [p for p in self.layout.temp_dir.glob(f"*{TEMP_SUFFIX}") if p.stat().st_mtime < cutoff]
        )
        for path in stale:
            await self._discard(path)
        if stale:
            logger.info("Removed %d stale temporary files", len(stale))
        return len(stale)

    async def total_size(self) -> int:
        """Bytes used by payloads, metadata and backups."""
        return await asyncio.to_thread(
            lambda: sum(p.stat().st_size for p in self.layout.root.rglob("*") if p.is_file())
        )

    async def compact(self, keep_backups: int = 3) -> int:
        """Trim every slot's backups to ``keep_backups`` and clear stale temp files."""
        removed = 0
        slots = set(await self.list_slots())
        slots.update(await asyncio.to_thread(self._backup_slots))
        for slot in sorted(slots):
            removed += len(await self.prune_backups(slot, keep_backups))
        await self.cleanup_temp_files()
        self.clear_metadata_cache()
        logger.info("Compaction removed %d backups", removed)
        return removed

    def _backup_slots(self) -> List[str]:
        slots = []
        for path in self.layout.backup_dir.glob(f"*{BACKUP_SUFFIX}"):
            parsed = parse_backup_id(path.stem)
            if parsed is not None:
                slots.append(parsed[0])
        return slots
