from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..persistence.models import ContractStatus, SavePayload, utc_now
from .checksum import compute_checksum
from .sanitizer import sanitize

logger = logging.getLogger(__name__)

MIN_CHECKSUM_LENGTH = 8
MAX_CREDITS = 999_999_999.0
MAX_PLAY_TIME_HOURS = 100_000.0
MAX_CONTRACTS = 100_000
MAX_VEHICLES = 1_000
MAX_CITIES = 10_000
BALANCE_TOLERANCE = 1_000.0
FUEL_OVERFILL_FACTOR = 1.1
OVERWEIGHT_FACTOR = 1.05
WARNING_THRESHOLD = 5

# An error template mentioning any of these makes the whole result Critical
CRITICAL_MARKERS = ("corrupt", "null", "required", "checksum")


def mentions_marker(text: str, markers: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in markers)


class Severity(IntEnum):
    VALID = 0
    INFO = 1
    WARNING = 2
    ERROR = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: Union[str, "Severity"]) -> "Severity":
        if isinstance(value, Severity):
            return value
        return cls[str(value).upper()]

    @property
    def label(self) -> str:
        return self.name.capitalize()


def derive_severity(errors: List[str], warnings: List[str]) -> Severity:
    """Severity of a result whose error templates are ``errors``."""
    if any(mentions_marker(e, CRITICAL_MARKERS) for e in errors):
        return Severity.CRITICAL
    if errors:
        return Severity.ERROR
    if len(warnings) >= WARNING_THRESHOLD:
        return Severity.WARNING
    if warnings:
        return Severity.INFO
    return Severity.VALID


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    severity: Severity = Severity.VALID
    requires_migration: bool = False
    # (template, values) behind each entry of ``errors``
    error_sources: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list, repr=False)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error_templates(self) -> List[str]:
        return [template for template, _ in self.error_sources]

    def add_error(self, template: str, **values: Any) -> None:
        """Record an error built from a fixed ``template``.

        Severity is judged on the template alone, so ids and names taken from
        the payload never make an error Critical.
        """
        self.errors.append(template.format(**values))
        self.error_sources.append((template, values))

    def summary(self) -> str:
        return (
            f"Validation {self.severity.label}: {len(self.errors)} errors, "
            f"{len(self.warnings)} warnings"
        )

    def detailed_report(self) -> str:
        lines = [self.summary()]
        if self.requires_migration:
            lines.append("Migration required")
        if self.errors:
            lines.append("Errors:")
            lines.extend(f"  - {e}" for e in self.errors)
        if self.warnings:
            lines.append("Warnings:")
            lines.extend(f"  - {w}" for w in self.warnings)
        return "\n".join(lines)


class IntegrityValidator:
    """Structural and semantic checks on a decoded SavePayload.

    All phases run and accumulate messages; severity is derived from the
    final lists. The result is never cached or persisted.
    """

    def __init__(
        self,
        app_version: str,
        balance_tolerance: float = BALANCE_TOLERANCE,
        reject_severity: Severity = Severity.ERROR,
        future_tolerance: timedelta = timedelta(days=1),
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.app_version = app_version
        self.balance_tolerance = balance_tolerance
        self.reject_severity = Severity.parse(reject_severity)
        self.future_tolerance = future_tolerance
        self._now = now

    def checksum(self, payload: SavePayload) -> str:
        return compute_checksum(payload)

    def sanitize(self, payload: SavePayload) -> SavePayload:
        return sanitize(payload, default_version=self.app_version, now=self._now)

    def is_acceptable(self, result: ValidationResult) -> bool:
        """True if a load may hand this payload to the caller."""
        return result.severity < self.reject_severity

    def validate(self, payload: Optional[SavePayload]) -> ValidationResult:
        result = ValidationResult()
        if payload is None:
            result.add_error("Save data is null")
            result.severity = derive_severity(result.error_templates, result.warnings)
            return result

        future_limit = self._now() + self.future_tolerance
        self._validate_core(payload, result, future_limit)
        self._validate_financial(payload, result)
        vehicle_ids = self._validate_vehicles(payload, result, future_limit)
        contract_ids = self._validate_contracts(payload, result, future_limit)
        self._validate_cities(payload, result, future_limit)
        self._validate_references(payload, result, vehicle_ids, contract_ids)
        self._validate_version(payload, result)
        self._validate_checksum(payload, result)

        result.severity = derive_severity(result.error_templates, result.warnings)
        logger.debug("Validated %r: %s", payload.save_name, result.summary())
        return result

    # Phases

    def _validate_core(self, payload: SavePayload, r: ValidationResult, future_limit: datetime) -> None:
        if not payload.save_name or not payload.save_name.strip():
            r.add_error("Save name is required")
        if not payload.save_version or not payload.save_version.strip():
            r.add_error("Save version is required")
        if payload.creation_date is None:
            r.add_error("Creation date is required")
        elif payload.creation_date > future_limit:
            r.warnings.append("Creation date is in the future")
        if payload.last_modified is None:
            r.add_error("Last modified date is required")
        elif payload.creation_date is not None and payload.last_modified < payload.creation_date:
            r.add_error("Last modified date precedes creation date")
        if payload.game_state is None:
            r.add_error("Game state is required")
        if payload.player_progress is None:
            r.warnings.append("Player progress is missing")
        if payload.settings is None:
            r.warnings.append("Game settings are missing")

    def _validate_financial(self, payload: SavePayload, r: ValidationResult) -> None:
        state = payload.game_state
        if state is None:
            return
        if state.current_credits < 0:
            r.add_error("Credits cannot be negative: {value}", value=state.current_credits)
        elif state.current_credits > MAX_CREDITS:
            r.warnings.append(f"Credits unusually high: {state.current_credits}")
        if state.total_earnings < 0:
            r.add_error("Total earnings cannot be negative: {value}", value=state.total_earnings)
        if state.total_expenses < 0:
            r.add_error("Total expenses cannot be negative: {value}", value=state.total_expenses)
        if state.outstanding_loans < 0:
            r.add_error("Outstanding loans cannot be negative: {value}", value=state.outstanding_loans)
        if state.total_play_time < 0:
            r.add_error("Play time cannot be negative: {value}", value=state.total_play_time)
        elif state.total_play_time > MAX_PLAY_TIME_HOURS:
            r.warnings.append(f"Play time unusually high: {state.total_play_time} hours")
        if state.total_contracts > MAX_CONTRACTS:
            r.warnings.append(f"Contract count unusually high: {state.total_contracts}")

        expected = state.total_earnings - state.total_expenses
        drift = abs(state.current_credits - expected)
        if drift > self.balance_tolerance:
            r.warnings.append(
                f"Financial inconsistency: credits {state.current_credits} differ from "
                f"earnings minus expenses {expected} by {drift}"
            )

    def _validate_vehicles(self, payload: SavePayload, r: ValidationResult, future_limit: datetime) -> Set[str]:
        seen: Set[str] = set()
        if len(payload.vehicle_instances) > MAX_VEHICLES:
            r.warnings.append(f"Vehicle count unusually high: {len(payload.vehicle_instances)}")
        for index, v in enumerate(payload.vehicle_instances):
            if not v.instance_id:
                r.add_error("Vehicle #{index}: instance ID is required", index=index)
                continue
            label = f"Vehicle {v.instance_id}"
            if v.instance_id in seen:
                r.add_error("Duplicate vehicle ID: {id}", id=v.instance_id)
            seen.add(v.instance_id)

            if v.vehicle_data is None:
                r.add_error("{label}: vehicle data reference is required", label=label)
            else:
                capacity = v.vehicle_data.fuel_capacity
                if v.current_fuel < 0 or v.current_fuel > capacity * FUEL_OVERFILL_FACTOR:
                    r.add_error(
                        "{label}: fuel level {fuel} outside 0..{capacity}",
                        label=label,
                        fuel=v.current_fuel,
                        capacity=capacity,
                    )
                if v.current_weight > v.vehicle_data.weight_capacity * OVERWEIGHT_FACTOR:
                    r.warnings.append(
                        f"{label}: cargo weight {v.current_weight} exceeds capacity {v.vehicle_data.weight_capacity}"
                    )
            if v.current_weight < 0:
                r.add_error("{label}: cargo weight cannot be negative", label=label)
            if not 0.0 <= v.wear_level <= 1.0:
                r.add_error("{label}: wear level {wear_level} outside 0..1", label=label, wear_level=v.wear_level)
            if v.total_distance < 0:
                r.add_error("{label}: total distance cannot be negative", label=label)
            if v.total_revenue < 0:
                r.add_error("{label}: total revenue cannot be negative", label=label)
            if v.total_expenses < 0:
                r.add_error("{label}: total expenses cannot be negative", label=label)
            if v.purchase_date is not None and v.purchase_date > future_limit:
                r.warnings.append(f"{label}: purchase date is in the future")
            if v.last_maintenance is not None and v.last_maintenance > future_limit:
                r.warnings.append(f"{label}: last maintenance date is in the future")
        return seen

    def _validate_contracts(self, payload: SavePayload, r: ValidationResult, future_limit: datetime) -> Set[str]:
        seen: Set[str] = set()
        for index, c in enumerate(payload.contract_instances):
            if not c.instance_id:
                r.add_error("Contract #{index}: instance ID is required", index=index)
                continue
            label = f"Contract {c.instance_id}"
            if c.instance_id in seen:
                r.add_error("Duplicate contract ID: {id}", id=c.instance_id)
            seen.add(c.instance_id)

            if c.contract_data is None:
                r.add_error("{label}: contract data reference is required", label=label)
            if c.acceptance_time is not None:
                if c.acceptance_time > future_limit:
                    r.warnings.append(f"{label}: acceptance time is in the future")
                if c.deadline is not None and c.deadline < c.acceptance_time:
                    r.add_error("{label}: deadline precedes acceptance time", label=label)
            if not 0.0 <= c.progress_percentage <= 100.0:
                r.add_error("{label}: progress {progress}% outside 0..100", label=label, progress=c.progress_percentage)
            if c.agreed_reward < 0:
                r.add_error("{label}: agreed reward cannot be negative", label=label)
            if c.actual_reward < 0:
                r.add_error("{label}: actual reward cannot be negative", label=label)
            if c.penalty_amount < 0:
                r.add_error("{label}: penalty amount cannot be negative", label=label)
            self._validate_contract_status(c, label, r)
        return seen

    @staticmethod
    def _validate_contract_status(c, label: str, r: ValidationResult) -> None:
        if c.status is ContractStatus.AVAILABLE and c.assigned_vehicle_id:
            r.warnings.append(f"{label}: available contract has an assigned vehicle")
        elif c.status in (ContractStatus.ACCEPTED, ContractStatus.IN_PROGRESS) and not c.assigned_vehicle_id:
            r.warnings.append(f"{label}: accepted contract has no assigned vehicle")
        elif c.status is ContractStatus.COMPLETED:
            if c.progress_percentage < 100.0:
                r.warnings.append(f"{label}: completed contract shows {c.progress_percentage}% progress")
            if c.actual_reward == 0 and c.agreed_reward > 0:
                r.warnings.append(f"{label}: completed contract paid no reward")
        elif c.status in (ContractStatus.CANCELLED, ContractStatus.EXPIRED) and c.actual_reward > 0:
            r.warnings.append(f"{label}: {c.status.value.lower()} contract paid a reward")

    def _validate_cities(self, payload: SavePayload, r: ValidationResult, future_limit: datetime) -> None:
        seen: Set[str] = set()
        if len(payload.city_instances) > MAX_CITIES:
            r.warnings.append(f"City count unusually high: {len(payload.city_instances)}")
        for index, c in enumerate(payload.city_instances):
            if not c.instance_id:
                r.add_error("City #{index}: instance ID is required", index=index)
                continue
            label = f"City {c.instance_id}"
            if c.instance_id in seen:
                r.add_error("Duplicate city ID: {id}", id=c.instance_id)
            seen.add(c.instance_id)

            if c.city_data is None:
                r.add_error("{label}: city data reference is required", label=label)
            if c.current_fuel_price <= 0:
                r.add_error("{label}: fuel price must be positive", label=label)
            if c.economic_multiplier <= 0:
                r.add_error("{label}: economic multiplier must be positive", label=label)
            if c.current_population < 0:
                r.add_error("{label}: population cannot be negative", label=label)
            if c.player_reputation < 0:
                r.add_error("{label}: reputation cannot be negative", label=label)
            if c.traffic_level < 0:
                r.add_error("{label}: traffic level cannot be negative", label=label)
            if c.is_discovered and c.discovery_date is not None and c.discovery_date > future_limit:
                r.warnings.append(f"{label}: discovery date is in the future")

    @staticmethod
    def _validate_references(
        payload: SavePayload, r: ValidationResult, vehicle_ids: Set[str], contract_ids: Set[str]
    ) -> None:
        for c in payload.contract_instances:
            if c.instance_id and c.assigned_vehicle_id and c.assigned_vehicle_id not in vehicle_ids:
                r.add_error(
                    "Contract {contract} references non-existent vehicle {vehicle}",
                    contract=c.instance_id,
                    vehicle=c.assigned_vehicle_id,
                )

        city_names = {c.name for c in payload.city_instances if c.name}
        for v in payload.vehicle_instances:
            if not v.instance_id:
                continue
            if v.assigned_contract_id and v.assigned_contract_id not in contract_ids:
                r.warnings.append(f"Vehicle {v.instance_id} references unknown contract {v.assigned_contract_id}")
            if v.current_city and v.current_city not in city_names:
                r.warnings.append(f"Vehicle {v.instance_id} is in unknown city {v.current_city}")
            if v.destination_city and v.destination_city not in city_names:
                r.warnings.append(f"Vehicle {v.instance_id} is heading to unknown city {v.destination_city}")

    def _validate_version(self, payload: SavePayload, r: ValidationResult) -> None:
        if not payload.save_version or payload.save_version == self.app_version:
            return
        r.warnings.append(f"Save version ({payload.save_version}) differs from current version ({self.app_version})")
        r.warnings.append("Save file requires migration to current version")
        r.requires_migration = True

    @staticmethod
    def _validate_checksum(payload: SavePayload, r: ValidationResult) -> None:
        if not payload.checksum:
            r.warnings.append("No checksum present")
            return
        if len(payload.checksum) < MIN_CHECKSUM_LENGTH:
            r.warnings.append("Checksum is shorter than expected")
            return
        if payload.checksum != compute_checksum(payload):
            r.add_error("Checksum validation failed - possible corruption")
