import asyncio

import pytest

from savevault.events import LOAD_COMPLETED, LOAD_FAILED, LOAD_STARTED, SAVE_COMPLETED, SAVE_FAILED
from savevault.integrity import compute_checksum
from savevault.persistence.errors import InvalidSlotNameError, RecoveryError, SaveValidationError
from savevault.recovery import ErrorKind, Strategy


def record(service, *names):
    seen = []
    for name in names:
        service.events.subscribe(name, lambda p, name=name: seen.append((name, p)))
    return seen


def test_save_then_load(service, payload):
    seen = record(service, SAVE_COMPLETED, LOAD_STARTED, LOAD_COMPLETED)

    async def scenario():
        await service.save("alice", payload)
        return await service.load("alice")

    loaded = asyncio.run(scenario())
    assert loaded.save_name == "alice"
    assert loaded.game_state.current_credits == 1000.0
    assert loaded.checksum == payload.checksum == compute_checksum(loaded)
    assert loaded.last_modified >= loaded.creation_date
    assert [name for name, _ in seen] == [SAVE_COMPLETED, LOAD_STARTED, LOAD_COMPLETED]
    assert service.recovery.history("alice") == []


def test_save_refuses_critical_payload(service, payload):
    seen = record(service, SAVE_FAILED)
    payload.save_name = ""
    with pytest.raises(SaveValidationError):
        asyncio.run(service.save("alice", payload))
    assert seen and seen[0][1]["slot"] == "alice"
    assert not service.store.layout.payload_path("alice").exists()


def test_bad_slot_name_is_not_recovered(service):
    with pytest.raises(InvalidSlotNameError):
        asyncio.run(service.load("../escape"))
    assert not service.recovery.history("../escape")


def test_rejected_payload_is_repaired_on_load(service, payload_factory):
    async def scenario():
        await service.save("bob", payload_factory("bob", credits=-10.0))
        return await service.load("bob")

    loaded = asyncio.run(scenario())
    assert loaded.game_state.current_credits == 0.0
    attempt = service.recovery.history("bob")[-1]
    assert attempt.kind is ErrorKind.MALFORMED_DATA
    assert attempt.successful_strategy is Strategy.REPAIR_SAVE_FILE


def test_terminal_failure_publishes_load_failed(service, payload, monkeypatch):
    seen = record(service, LOAD_FAILED)
    asyncio.run(service.save("alice", payload))

    async def denied(slot, method=None):
        raise PermissionError(f"locked: {slot}")

    monkeypatch.setattr(service.scheduler, "load", denied)
    with pytest.raises(RecoveryError) as info:
        asyncio.run(service.load("alice"))
    assert info.value.kind is ErrorKind.PERMISSION_DENIED
    assert isinstance(info.value.original, PermissionError)
    assert seen[0][1]["kind"] == "PermissionDenied"


def test_maintenance_operations(service, payload_factory):
    async def scenario():
        for _ in range(4):
            await service.save("alice", payload_factory("alice"))
        await service.save("bob", payload_factory("bob"))
        slots = await service.list_slots()
        removed = await service.compact()
        deleted = await service.delete("bob")
        return slots, removed, deleted, await service.list_slots()

    slots, removed, deleted, remaining = asyncio.run(scenario())
    assert slots == ["alice", "bob"]
    # four saves leave three backups; compaction keeps three per slot
    assert removed == 0
    assert deleted is True
    assert remaining == ["alice"]
