from datetime import timedelta

import pytest

from savevault.integrity import IntegrityValidator, Severity, compute_checksum, derive_severity
from savevault.persistence.models import (
    CityData,
    CityInstance,
    ContractData,
    ContractInstance,
    ContractStatus,
    VehicleData,
    VehicleInstance,
    utc_now,
)


@pytest.fixture()
def validator() -> IntegrityValidator:
    return IntegrityValidator(app_version="1.4.0")


def test_valid_save_then_corrupted_checksum_then_sanitized(validator, payload):
    payload.checksum = compute_checksum(payload)
    result = validator.validate(payload)
    assert result.severity is Severity.VALID
    assert result.errors == [] and result.warnings == []

    payload.checksum = "AAAAAAAAAAAAAAAA"
    result = validator.validate(payload)
    assert result.severity is Severity.CRITICAL
    assert any("checksum" in e.lower() for e in result.errors)
    assert not validator.is_acceptable(result)

    fixed = validator.sanitize(payload)
    assert fixed.checksum == compute_checksum(fixed)
    assert validator.validate(fixed).severity is Severity.VALID
    # sanitize works on a copy
    assert payload.checksum == "AAAAAAAAAAAAAAAA"


def test_checksum_covers_scalars_but_not_collection_order(payload):
    payload.vehicle_instances = [
        VehicleInstance("v1", VehicleData("Van")),
        VehicleInstance("v2", VehicleData("Truck")),
    ]
    base = compute_checksum(payload)
    assert len(base) == 16

    payload.vehicle_instances.reverse()
    assert compute_checksum(payload) == base

    payload.game_state.current_credits += 0.5
    assert compute_checksum(payload) != base


def test_short_or_missing_checksum_only_warns(validator, payload):
    payload.checksum = ""
    assert validator.validate(payload).warnings == ["No checksum present"]
    payload.checksum = "abc"
    result = validator.validate(payload)
    assert result.warnings == ["Checksum is shorter than expected"]
    assert result.severity is Severity.INFO


def test_severity_thresholds():
    assert derive_severity([], []) is Severity.VALID
    assert derive_severity([], ["w"] * 4) is Severity.INFO
    assert derive_severity([], ["w"] * 5) is Severity.WARNING
    assert derive_severity(["Credits cannot be negative: -1"], []) is Severity.ERROR
    assert derive_severity(["Save name is required"], []) is Severity.CRITICAL
    assert derive_severity(["File looks CORRUPT"], ["w"] * 9) is Severity.CRITICAL


def test_null_payload_is_critical(validator):
    result = validator.validate(None)
    assert result.severity is Severity.CRITICAL
    assert not result.is_valid


def test_missing_name_and_game_state_are_critical(validator, payload):
    payload.save_name = ""
    payload.game_state = None
    payload.checksum = compute_checksum(payload)
    result = validator.validate(payload)
    assert "Save name is required" in result.errors
    assert "Game state is required" in result.errors
    assert result.severity is Severity.CRITICAL


def test_dangling_vehicle_reference_is_an_error(validator, payload):
    payload.contract_instances = [
        ContractInstance("c1", ContractData("Haul"), status=ContractStatus.ACCEPTED, assigned_vehicle_id="v9")
    ]
    payload.checksum = compute_checksum(payload)
    result = validator.validate(payload)
    assert "Contract c1 references non-existent vehicle v9" in result.errors
    assert result.severity is Severity.ERROR
    assert not validator.is_acceptable(result)


def test_version_mismatch_requires_migration(validator, payload):
    payload.save_version = "1.0.0"
    payload.checksum = compute_checksum(payload)
    result = validator.validate(payload)
    assert result.requires_migration
    assert "Save file requires migration to current version" in result.warnings
    assert result.severity is Severity.INFO
    assert validator.is_acceptable(result)


def test_financial_inconsistency_beyond_tolerance_warns(validator, payload):
    payload.game_state.current_credits = 5000.0
    payload.checksum = compute_checksum(payload)
    result = validator.validate(payload)
    assert any(w.startswith("Financial inconsistency") for w in result.warnings)
    assert result.is_valid


def test_vehicle_and_city_ranges(validator, payload):
    payload.vehicle_instances = [
        VehicleInstance("v1", VehicleData("Van", fuel_capacity=50.0), current_fuel=80.0, wear_level=1.5),
        VehicleInstance("v1", VehicleData("Van")),
    ]
    payload.city_instances = [CityInstance("c1", CityData("Springfield"), current_fuel_price=0.0)]
    payload.checksum = compute_checksum(payload)
    result = validator.validate(payload)
    assert "Duplicate vehicle ID: v1" in result.errors
    assert any("fuel level 80.0" in e for e in result.errors)
    assert any("wear level 1.5" in e for e in result.errors)
    assert "City c1: fuel price must be positive" in result.errors
    assert result.severity is Severity.ERROR


def test_future_creation_date_warns(validator, payload):
    payload.creation_date = utc_now() + timedelta(days=3)
    payload.last_modified = payload.creation_date
    payload.checksum = compute_checksum(payload)
    assert "Creation date is in the future" in validator.validate(payload).warnings


def test_reject_severity_is_configurable(payload):
    lenient = IntegrityValidator(app_version="1.4.0", reject_severity="critical")
    payload.game_state.current_credits = -10.0
    payload.checksum = compute_checksum(payload)
    result = lenient.validate(payload)
    assert result.severity is Severity.ERROR
    assert lenient.is_acceptable(result)


def test_detailed_report_lists_messages(validator, payload):
    payload.save_version = "1.0.0"
    report = validator.validate(payload).detailed_report()
    assert report.splitlines()[0].startswith("Validation Info")
    assert "Migration required" in report
    assert "  - No checksum present" in report


def test_contract_status_consistency_warnings(validator, payload):
    payload.vehicle_instances = [VehicleInstance("v1", VehicleData("Van"), assigned_contract_id="k3")]
    payload.contract_instances = [
        ContractInstance(
            "k1",
            ContractData("Haul"),
            status=ContractStatus.COMPLETED,
            progress_percentage=50.0,
            agreed_reward=100.0,
            actual_reward=100.0,
        ),
        ContractInstance(
            "k2",
            ContractData("Haul"),
            status=ContractStatus.COMPLETED,
            progress_percentage=100.0,
            agreed_reward=100.0,
        ),
        ContractInstance("k3", ContractData("Haul"), status=ContractStatus.AVAILABLE, assigned_vehicle_id="v1"),
    ]
    payload.checksum = compute_checksum(payload)
    result = validator.validate(payload)
    assert result.warnings == [
        "Contract k1: completed contract shows 50.0% progress",
        "Contract k2: completed contract paid no reward",
        "Contract k3: available contract has an assigned vehicle",
    ]
    assert result.is_valid
    assert result.severity is Severity.INFO


def test_vehicle_in_unknown_city_warns_even_without_cities(validator, payload):
    payload.vehicle_instances = [VehicleInstance("v1", VehicleData("Van"), current_city="Atlantis")]
    payload.checksum = compute_checksum(payload)
    assert validator.validate(payload).warnings == ["Vehicle v1 is in unknown city Atlantis"]

    payload.vehicle_instances[0].destination_city = "Springfield"
    payload.city_instances = [CityInstance("c1", CityData("Springfield"))]
    payload.checksum = compute_checksum(payload)
    assert validator.validate(payload).warnings == ["Vehicle v1 is in unknown city Atlantis"]


def test_ids_never_make_an_error_critical(validator, payload):
    payload.vehicle_instances = [
        VehicleInstance("null_truck", VehicleData("Truck")),
        VehicleInstance("null_truck", VehicleData("Truck")),
    ]
    payload.checksum = compute_checksum(payload)
    result = validator.validate(payload)
    assert result.errors == ["Duplicate vehicle ID: null_truck"]
    assert result.error_templates == ["Duplicate vehicle ID: {id}"]
    assert result.severity is Severity.ERROR
