import asyncio
import json

import pytest

from savevault.events import RECOVERY_FAILED, RECOVERY_STEP
from savevault.integrity import HealthLevel
from savevault.persistence.errors import (
    CorruptSaveError,
    EmptySaveFileError,
    RecoveryError,
    SaveValidationError,
    SlotNotFoundError,
)
from savevault.persistence.models import VehicleData, VehicleInstance
from savevault.recovery import ErrorKind, RecoveryOrchestrator, Strategy, classify, plan_strategies


def test_classify_maps_exceptions_to_kinds():
    assert classify(SlotNotFoundError("x")) is ErrorKind.NOT_FOUND
    assert classify(FileNotFoundError()) is ErrorKind.NOT_FOUND
    assert classify(PermissionError()) is ErrorKind.PERMISSION_DENIED
    assert classify(CorruptSaveError("x")) is ErrorKind.MALFORMED_DATA
    assert classify(SaveValidationError("x")) is ErrorKind.MALFORMED_DATA
    assert classify(EmptySaveFileError("x")) is ErrorKind.MALFORMED_DATA
    assert classify(MemoryError()) is ErrorKind.RESOURCE_EXHAUSTED
    assert classify(OSError("disk")) is ErrorKind.IO_FAILURE
    assert classify(RuntimeError("?")) is ErrorKind.UNKNOWN


def test_plan_filters_and_orders_by_priority():
    assert plan_strategies(ErrorKind.NOT_FOUND, has_backups=False, slot_exists=False) == [
        Strategy.FALLBACK_TO_DEFAULT
    ]
    assert plan_strategies(ErrorKind.NOT_FOUND, has_backups=True, slot_exists=False) == [
        Strategy.RESTORE_FROM_BACKUP,
        Strategy.FALLBACK_TO_DEFAULT,
    ]
    assert plan_strategies(ErrorKind.MALFORMED_DATA, has_backups=True, slot_exists=True) == [
        Strategy.RESTORE_FROM_BACKUP,
        Strategy.REPAIR_SAVE_FILE,
        Strategy.PARTIAL_DATA_RECOVERY,
    ]
    assert plan_strategies(ErrorKind.MALFORMED_DATA, has_backups=False, slot_exists=False) == []
    assert plan_strategies(ErrorKind.PERMISSION_DENIED, has_backups=False, slot_exists=True) == [
        Strategy.RETRY_WITH_DELAY
    ]


def test_missing_slot_falls_back_to_default(service):
    payload = asyncio.run(service.load("ghost"))
    assert payload.save_name == "Recovered ghost"
    assert payload.save_version == service.config.app_version
    assert service.store.layout.payload_path("ghost").exists()

    (attempt,) = service.recovery.history("ghost")
    assert attempt.kind is ErrorKind.NOT_FOUND
    assert attempt.successful_strategy is Strategy.FALLBACK_TO_DEFAULT


def test_malformed_slot_restored_from_backup(service, payload):
    steps = []
    service.events.subscribe(RECOVERY_STEP, lambda e: steps.append(e["strategy"]))

    async def scenario():
        await service.save("alice", payload)
        await service.save("alice", payload)
        service.store.layout.payload_path("alice").write_bytes(b"this is not json at all")
        return await service.load("alice")

    loaded = asyncio.run(scenario())
    assert loaded.save_name == "alice"
    assert loaded.game_state.current_credits == 1000.0
    assert steps == ["RestoreFromBackup"]
    (attempt,) = service.recovery.history("alice")
    assert attempt.kind is ErrorKind.MALFORMED_DATA
    assert attempt.success


def test_partial_recovery_salvages_name_and_version(service):
    path = service.store.layout.payload_path("carol")
    path.write_bytes(b'{"save_name": "Carol Freight", "save_version": "1.2.0", "game_state": {')

    loaded = asyncio.run(service.load("carol"))
    assert loaded.save_name == "Carol Freight"
    assert loaded.save_version == "1.2.0"
    attempt = service.recovery.history("carol")[-1]
    assert attempt.attempted_strategies == [Strategy.REPAIR_SAVE_FILE, Strategy.PARTIAL_DATA_RECOVERY]
    assert attempt.successful_strategy is Strategy.PARTIAL_DATA_RECOVERY


def test_exhausted_recovery_raises_with_attempt(service, payload):
    asyncio.run(service.save("alice", payload))
    failures = []
    service.events.subscribe(RECOVERY_FAILED, failures.append)

    async def always_denied(slot):
        raise PermissionError(f"locked: {slot}")

    orchestrator = RecoveryOrchestrator(
        service.store,
        service.inspector,
        service.validator,
        loader=always_denied,
        events=service.events,
        strategy_delay=0,
        retry_base_delay=0,
        retry_attempts=2,
    )
    with pytest.raises(RecoveryError) as info:
        asyncio.run(orchestrator.recover("alice", PermissionError("locked")))

    err = info.value
    assert err.kind is ErrorKind.PERMISSION_DENIED
    assert err.recovery_attempted
    assert err.attempt.attempted_strategies == [Strategy.RETRY_WITH_DELAY]
    assert not err.attempt.success
    assert failures and failures[0]["reason"] == "exhausted"
    assert orchestrator.analysis().failed == 1


def test_no_applicable_strategy(service):
    with pytest.raises(RecoveryError) as info:
        asyncio.run(service.recovery.recover("ghost", CorruptSaveError("bad bytes")))
    assert info.value.kind is ErrorKind.MALFORMED_DATA
    assert not info.value.recovery_attempted


def test_history_is_bounded(service):
    service.recovery.history_limit = 2

    async def scenario():
        for _ in range(3):
            with pytest.raises(RecoveryError):
                await service.recovery.recover("ghost", CorruptSaveError("bad"))

    asyncio.run(scenario())
    assert len(service.recovery.history("ghost")) == 2
    analysis = service.recovery.analysis()
    assert analysis.total_attempts == 2
    assert analysis.success_rate == 0.0
    service.recovery.clear_history()
    assert service.recovery.history("ghost") == []


def corrupt_backups(service, slot):
    for backup in asyncio.run(service.store.list_backups(slot)):
        backup.path.write_bytes(b"\x00garbage")


def test_bad_backups_leave_repairable_slot_untouched(service, payload):
    payload.vehicle_instances = [VehicleInstance("truck-1", VehicleData("Truck"))]
    asyncio.run(service.save("alice", payload))
    asyncio.run(service.save("alice", payload))
    corrupt_backups(service, "alice")
    path = service.store.layout.payload_path("alice")
    data = json.loads(path.read_text(encoding="utf-8"))
    data["checksum"] = "AAAAAAAAAAAAAAAA"
    path.write_text(json.dumps(data), encoding="utf-8")
    damaged = path.read_bytes()

    before_repair = []

    def on_step(event):
        if event["strategy"] == Strategy.REPAIR_SAVE_FILE.value:
            before_repair.append(path.read_bytes())

    service.events.subscribe(RECOVERY_STEP, on_step)
    loaded = asyncio.run(service.load("alice"))

    assert before_repair == [damaged]
    assert loaded.save_name == "alice"
    assert [v.instance_id for v in loaded.vehicle_instances] == ["truck-1"]
    attempt = service.recovery.history("alice")[-1]
    assert attempt.attempted_strategies == [Strategy.RESTORE_FROM_BACKUP, Strategy.REPAIR_SAVE_FILE]
    assert attempt.successful_strategy is Strategy.REPAIR_SAVE_FILE


def test_restore_checked_skips_corrupt_backup(service, payload):
    asyncio.run(service.save("alice", payload))
    asyncio.run(service.save("alice", payload))
    corrupt_backups(service, "alice")
    path = service.store.layout.payload_path("alice")
    current = path.read_bytes()

    async def scenario():
        (backup,) = await service.store.list_backups("alice")
        graded = await service.inspector.check_backup("alice", backup)
        return graded, await service.inspector.restore_checked("alice", backup)

    graded, restored = asyncio.run(scenario())
    assert graded.overall_health is HealthLevel.CRITICAL
    assert restored is None
    assert path.read_bytes() == current


def test_failed_reload_after_restore_puts_slot_back(service, payload_factory):
    asyncio.run(service.save("alice", payload_factory("alice", credits=1000.0)))
    asyncio.run(service.save("alice", payload_factory("alice", credits=2000.0)))
    path = service.store.layout.payload_path("alice")
    current = path.read_bytes()

    async def always_denied(slot):
        raise PermissionError(f"locked: {slot}")

    orchestrator = RecoveryOrchestrator(
        service.store,
        service.inspector,
        service.validator,
        loader=always_denied,
        events=service.events,
        strategy_delay=0,
        retry_base_delay=0,
        retry_attempts=1,
    )
    with pytest.raises(RecoveryError) as info:
        asyncio.run(orchestrator.recover("alice", PermissionError("locked")))

    assert info.value.attempt.attempted_strategies == [Strategy.RETRY_WITH_DELAY, Strategy.RESTORE_FROM_BACKUP]
    assert path.read_bytes() == current
