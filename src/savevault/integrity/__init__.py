"""Integrity checks for save payloads: checksum, validation, sanitizing and slot health."""

from .checksum import canonical_string, compute_checksum
from .health import HealthInspector, HealthLevel, HealthReport, classify_health, summarize
from .sanitizer import sanitize
from .validator import IntegrityValidator, Severity, ValidationResult, derive_severity

__all__ = [
    "canonical_string",
    "compute_checksum",
    "HealthInspector",
    "HealthLevel",
    "HealthReport",
    "classify_health",
    "summarize",
    "sanitize",
    "IntegrityValidator",
    "Severity",
    "ValidationResult",
    "derive_severity",
]
