from __future__ import annotations

import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from platformdirs import PlatformDirs

from .errors import InvalidSlotNameError

APP_NAME = "SaveVault"

# Environment override for the data root (useful for tests and power users)
ENV_DATA_DIR = "SAVEVAULT_DATA_DIR"

SAVE_DIR_NAME = "SaveData"
BACKUP_DIR_NAME = "Backups"
TEMP_DIR_NAME = "Temp"
PAYLOAD_SUFFIX = ".json"
METADATA_SUFFIX = "_metadata"
BACKUP_SUFFIX = ".bak"
TEMP_SUFFIX = ".tmp"
BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_BACKUP_RE = re.compile(
    r"^(?P<slot>.+)_(?P<stamp>\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})(?:_(?P<seq>\d{3}))?$"
)
_FORBIDDEN_SLOT_CHARS = set('/\\:*?"<>|\0')


def default_data_root() -> Path:
    """Return the application data root.

    SAVEVAULT_DATA_DIR wins when set; otherwise the platformdirs user data dir.
    """
    override = os.getenv(ENV_DATA_DIR)
    if override:
        return Path(override).expanduser().resolve()
    dirs = PlatformDirs(appname=APP_NAME, appauthor=False)
    return Path(dirs.user_data_dir).expanduser().resolve()


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def validate_slot_name(slot: str) -> str:
    if not slot or not isinstance(slot, str) or not slot.strip():
        raise InvalidSlotNameError("Slot name must be a non-empty string")
    if slot in (".", "..") or any(ch in _FORBIDDEN_SLOT_CHARS for ch in slot):
        raise InvalidSlotNameError(f"Slot name contains forbidden characters: {slot!r}")
    if slot.endswith(METADATA_SUFFIX):
        raise InvalidSlotNameError(f"Slot name may not end with {METADATA_SUFFIX!r}: {slot!r}")
    return slot


def parse_backup_id(backup_id: str) -> Optional[Tuple[str, datetime, int]]:
    """Split a backup id into (slot, timestamp, sequence); None if it is not a backup id."""
    match = _BACKUP_RE.match(backup_id)
    if not match:
        return None
    try:
        stamp = datetime.strptime(match.group("stamp"), BACKUP_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return match.group("slot"), stamp, int(match.group("seq") or 0)


@dataclass(frozen=True)
class SaveLayout:
    """On-disk layout of one data root.

    SaveData/<slot>.json, SaveData/<slot>_metadata.json,
    SaveData/Backups/<slot>_<stamp>.bak and SaveData/Temp/<slot>_<uuid>.tmp
    """

    root: Path

    @classmethod
    def at(cls, data_root: Optional[Path] = None) -> "SaveLayout":
        return cls(root=Path(data_root or default_data_root()) / SAVE_DIR_NAME)

    @property
    def backup_dir(self) -> Path:
        return self.root / BACKUP_DIR_NAME

    @property
    def temp_dir(self) -> Path:
        return self.root / TEMP_DIR_NAME

    def ensure(self) -> "SaveLayout":
        for d in (self.root, self.backup_dir, self.temp_dir):
            ensure_dir(d)
        return self

    def payload_path(self, slot: str) -> Path:
        return self.root / f"{validate_slot_name(slot)}{PAYLOAD_SUFFIX}"

    def metadata_path(self, slot: str) -> Path:
        return self.root / f"{validate_slot_name(slot)}{METADATA_SUFFIX}{PAYLOAD_SUFFIX}"

    def backup_path(self, backup_id: str) -> Path:
        return self.backup_dir / f"{backup_id}{BACKUP_SUFFIX}"

    def temp_path(self, slot: str) -> Path:
        return self.temp_dir / f"{validate_slot_name(slot)}_{uuid.uuid4().hex}{TEMP_SUFFIX}"

    @staticmethod
    def backup_id_for(slot: str, when: datetime, sequence: int = 0) -> str:
        base = f"{slot}_{when.strftime(BACKUP_TIMESTAMP_FORMAT)}"
        return base if sequence == 0 else f"{base}_{sequence:03d}"

    @staticmethod
    def is_metadata_file(path: Path) -> bool:
        return path.suffix == PAYLOAD_SUFFIX and path.stem.endswith(METADATA_SUFFIX)

    @staticmethod
    def slot_of_metadata(path: Path) -> str:
        return path.stem[: -len(METADATA_SUFFIX)]
