import asyncio

from savevault.integrity import HealthLevel, HealthReport, classify_health, summarize
from savevault.integrity.health import brace_balance
from savevault.persistence.models import VehicleData, VehicleInstance


def test_healthy_save_is_good(service, payload):
    async def scenario():
        await service.save("alice", payload)
        return await service.inspector.check_health("alice")

    report = asyncio.run(scenario())
    assert report.exists and report.has_integrity and report.is_data_valid and report.has_metadata
    assert report.issues == []
    assert report.warnings == ["No backup files available"]
    assert report.overall_health is HealthLevel.GOOD
    assert not report.needs_attention


def test_truncated_save_is_critical(service, payload):
    asyncio.run(service.save("alice", payload))
    path = service.store.layout.payload_path("alice")
    raw = path.read_bytes()
    path.write_bytes(raw[: len(raw) // 2])

    report = asyncio.run(service.inspector.check_health("alice", use_cache=False))
    assert report.overall_health is HealthLevel.CRITICAL
    assert not report.has_integrity
    assert any(i.startswith("Unbalanced braces") for i in report.issues)
    assert "File integrity validation failed" in report.issues


def test_missing_slot(service):
    report = asyncio.run(service.inspector.check_health("ghost"))
    assert report.overall_health is HealthLevel.MISSING
    assert report.issues == ["Save file does not exist"]
    assert report.needs_attention


def test_discover_reports_orphaned_metadata(service, payload_factory):
    async def scenario():
        await service.save("kept", payload_factory("kept"))
        await service.save("gone", payload_factory("gone"))
        service.store.layout.payload_path("gone").unlink()
        return await service.discover_health(force_refresh=True)

    reports = {r.slot: r for r in asyncio.run(scenario())}
    assert set(reports) == {"kept", "gone"}
    assert reports["kept"].overall_health is HealthLevel.GOOD
    orphan = reports["gone"]
    assert orphan.overall_health is HealthLevel.MISSING
    assert orphan.has_metadata
    assert orphan.issues == ["Orphaned metadata file with no matching save file: gone"]


def test_cached_report_dropped_when_slot_written(service, payload):
    async def scenario():
        await service.save("alice", payload)
        await service.inspector.check_health("alice")
        cached = service.inspector.cached_report("alice")
        await service.save("alice", payload)
        return cached, service.inspector.cached_report("alice")

    cached, after_write = asyncio.run(scenario())
    assert cached is not None
    assert after_write is None


def test_repair_critical_slot_from_backup(service, payload):
    async def scenario():
        await service.save("alice", payload)
        await service.save("alice", payload)
        path = service.store.layout.payload_path("alice")
        path.write_bytes(path.read_bytes()[:40])
        repaired = await service.repair("alice")
        return repaired, await service.inspector.check_health("alice", use_cache=False)

    repaired, report = asyncio.run(scenario())
    assert repaired is True
    assert report.overall_health not in (HealthLevel.CRITICAL, HealthLevel.MISSING)
    assert report.is_data_valid


def test_repair_degraded_slot_by_sanitizing(service, payload_factory):
    async def scenario():
        await service.save("bob", payload_factory("bob", credits=-10.0))
        before = await service.inspector.check_health("bob")
        repaired = await service.repair("bob")
        after = await service.inspector.check_health("bob")
        return before, repaired, after

    before, repaired, after = asyncio.run(scenario())
    assert before.overall_health is HealthLevel.DEGRADED
    assert repaired is True
    assert after.issues == []
    assert after.is_data_valid


def test_repair_missing_slot_fails(service):
    assert asyncio.run(service.repair("nobody")) is False


def test_classification_ladder():
    def graded(issues=(), warnings=(), valid=True, exists=True):
        report = HealthReport(slot="s", warnings=list(warnings), is_data_valid=valid, exists=exists)
        for issue in issues:
            report.add_issue(issue)
        return classify_health(report)

    assert graded(exists=False) is HealthLevel.MISSING
    assert graded(issues=["Insufficient file permissions"]) is HealthLevel.CRITICAL
    assert graded(issues=["a", "b", "c"]) is HealthLevel.POOR
    assert graded(issues=["a"]) is HealthLevel.DEGRADED
    assert graded(valid=False) is HealthLevel.DEGRADED
    assert graded(warnings=["w"] * 5) is HealthLevel.FAIR
    assert graded(warnings=["w"]) is HealthLevel.GOOD
    assert graded() is HealthLevel.EXCELLENT


def test_ids_in_issue_text_do_not_make_slot_critical():
    report = HealthReport(slot="s", is_data_valid=False)
    report.add_issue("Validation Error: Duplicate vehicle ID: {id}", id="missing_corrupt_truck")
    assert report.issues == ["Validation Error: Duplicate vehicle ID: missing_corrupt_truck"]
    assert classify_health(report) is HealthLevel.DEGRADED


def test_duplicate_vehicle_named_like_a_marker_is_degraded(service, payload):
    truck = VehicleInstance("missing_truck", VehicleData("Truck"))
    payload.vehicle_instances = [truck, VehicleInstance("missing_truck", VehicleData("Truck"))]

    async def scenario():
        await service.save("alice", payload)
        return await service.inspector.check_health("alice", use_cache=False)

    report = asyncio.run(scenario())
    assert "Validation Error: Duplicate vehicle ID: missing_truck" in report.issues
    assert report.overall_health is HealthLevel.DEGRADED


def test_brace_balance_ignores_strings():
    assert brace_balance('{"a": "}}}", "b": {"c": "\\"{"}}') == 0
    assert brace_balance('{"a": {') == 2


def test_summarize_counts_levels():
    reports = [HealthReport(slot="a", overall_health=HealthLevel.GOOD), HealthReport(slot="b")]
    assert summarize(reports) == "2 save files checked (Good: 1, Excellent: 1)"
