"""Durable storage for save slots.

This package provides:
- Data models for the persisted game state and its per-slot metadata
- Encoding/decoding to a stable JSON document
- A PayloadStore that handles atomic disk I/O, backup rotation and the metadata cache

Design goals:
- Robustness: temp-file writes with atomic rename, timestamped backups, explicit errors
- Isolation: every store, cache and layout is an instance; nothing is process-global
"""

from .cache import TTLCache
from .codec import decode_metadata, decode_payload, encode_metadata, encode_payload
from .errors import (
    BackupNotFoundError,
    CorruptSaveError,
    EmptySaveFileError,
    InvalidSlotNameError,
    MigrationError,
    RecoveryError,
    SaveError,
    SaveValidationError,
    SlotNotFoundError,
)
from .models import (
    CityData,
    CityInstance,
    ContractData,
    ContractInstance,
    ContractStatus,
    GameState,
    SaveMetadata,
    SavePayload,
    VehicleData,
    VehicleInstance,
)
from .paths import SaveLayout, default_data_root
from .store import BackupInfo, PayloadStore, SaveFileInfo

__all__ = [
    "TTLCache",
    "decode_metadata",
    "decode_payload",
    "encode_metadata",
    "encode_payload",
    "BackupNotFoundError",
    "CorruptSaveError",
    "EmptySaveFileError",
    "InvalidSlotNameError",
    "MigrationError",
    "RecoveryError",
    "SaveError",
    "SaveValidationError",
    "SlotNotFoundError",
    "CityData",
    "CityInstance",
    "ContractData",
    "ContractInstance",
    "ContractStatus",
    "GameState",
    "SaveMetadata",
    "SavePayload",
    "VehicleData",
    "VehicleInstance",
    "SaveLayout",
    "default_data_root",
    "BackupInfo",
    "PayloadStore",
    "SaveFileInfo",
]
