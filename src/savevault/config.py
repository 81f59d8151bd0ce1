from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationInfo, field_validator

from .integrity.validator import Severity
from .persistence.paths import default_data_root

logger = logging.getLogger(__name__)

DEFAULTS_RESOURCE = "defaults.yaml"


class StorageConfig(BaseModel):
    """Where saves live and how many backups are kept."""

    data_root: Optional[Path] = Field(default=None, description="Data root; platform default when unset")
    max_backups: int = Field(5, ge=1, description="Backups kept per slot")
    metadata_cache_ttl: float = Field(300.0, ge=0, description="Seconds a metadata entry stays cached")
    temp_file_max_age: float = Field(3600.0, ge=0, description="Age in seconds after which temp files are stale")
    compact_keep_backups: int = Field(3, ge=0, description="Backups kept per slot by compaction")

    def resolved_root(self) -> Path:
        return Path(self.data_root).expanduser() if self.data_root else default_data_root()


class ValidationConfig(BaseModel):
    balance_tolerance: float = Field(1000.0, ge=0, description="Allowed drift between credits and earnings minus expenses")
    reject_severity: str = Field("error", description="Lowest severity that makes a load fail")

    @field_validator("reject_severity")
    @classmethod
    def known_severity(cls, v: str) -> str:
        try:
            Severity.parse(v)
        except KeyError:
            raise ValueError(f"Unknown severity: {v}") from None
        return v.lower()

    @property
    def severity(self) -> Severity:
        return Severity.parse(self.reject_severity)


class HealthConfig(BaseModel):
    cache_ttl: float = Field(600.0, ge=0, description="Seconds a health report stays cached")
    max_concurrent_checks: int = Field(4, ge=1, description="Slots health-checked at once during discovery")


class RecoveryConfig(BaseModel):
    strategy_delay: float = Field(1.0, ge=0, description="Pause between recovery strategies")
    retry_base_delay: float = Field(1.0, ge=0, description="First backoff delay of RetryWithDelay")
    retry_attempts: int = Field(3, ge=1, description="Sub-attempts of RetryWithDelay")
    max_backup_candidates: int = Field(3, ge=1, description="Newest backups tried by RestoreFromBackup")
    history_limit: int = Field(10, ge=1, description="Recovery attempts remembered per slot")


class MigrationConfig(BaseModel):
    auto_migrate: bool = Field(True, description="Migrate outdated saves to the app version on load")
    max_attempts: int = Field(3, ge=1, description="Attempts per migration step")
    backoff_base: float = Field(1.0, ge=0, description="First backoff delay between step attempts")
    max_path_depth: int = Field(20, ge=1, description="Longest migration chain followed")
    backup_before_migration: bool = Field(True, description="Back up the slot before migrating")


class LoadingConfig(BaseModel):
    large_file_threshold: int = Field(5 * 1024 * 1024, ge=0)
    huge_file_threshold: int = Field(50 * 1024 * 1024, ge=0)
    low_memory_threshold: int = Field(100 * 1024 * 1024, ge=0)
    chunk_size: int = Field(1024 * 1024, ge=1)
    cleanup_every: int = Field(10, ge=1)
    yield_every: int = Field(5, ge=1)
    slow_load_seconds: float = Field(10.0, ge=0)
    monitor_interval: float = Field(1.0, gt=0)
    cleanup_pause: float = Field(0.05, ge=0)
    enable_memory_optimization: bool = True
    enable_chunked_loading: bool = True
    enable_performance_monitoring: bool = True

    @field_validator("huge_file_threshold")
    @classmethod
    def huge_not_below_large(cls, v: int, info: ValidationInfo) -> int:
        large = info.data.get("large_file_threshold")
        if large is not None and v < large:
            raise ValueError("huge_file_threshold must not be below large_file_threshold")
        return v


class SaveVaultConfig(BaseModel):
    """All tunables of the save engine."""

    app_version: str = Field("1.4.0", description="Version new saves are written with")
    storage: StorageConfig = Field(default_factory=StorageConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    migration: MigrationConfig = Field(default_factory=MigrationConfig)
    loading: LoadingConfig = Field(default_factory=LoadingConfig)

    @staticmethod
    def _load_yaml(path: Path) -> dict:
        with path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    @classmethod
    def _deep_merge(cls, base: dict, overlay: dict) -> dict:
        merged = dict(base)
        for k, v in (overlay or {}).items():
            if isinstance(v, dict) and isinstance(base.get(k), dict):
                merged[k] = cls._deep_merge(base[k], v)
            else:
                merged[k] = v
        return merged

    @classmethod
    def load(cls, user_path: Optional[Path] = None, overrides: Optional[dict] = None) -> "SaveVaultConfig":
        """Load packaged defaults, overlay an optional user YAML file and explicit overrides."""
        try:
            with resources.files("savevault").joinpath(DEFAULTS_RESOURCE).open("r", encoding="utf-8") as f:
                default_data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Default config not found; falling back to model defaults.")
            default_data = cls().model_dump(mode="json")

        user_data = {}
        if user_path is not None:
            if user_path.exists():
                user_data = cls._load_yaml(user_path)
                logger.info("Loaded user config from %s", user_path)
            else:
                logger.warning("User config file not found: %s", user_path)

        merged = cls._deep_merge(cls._deep_merge(default_data, user_data), overrides or {})
        config = cls.model_validate(merged)
        logger.debug("Config merged: %s", config)
        return config

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, sort_keys=False)
        logger.info("Saved config to %s", path)
