import asyncio
import math

import pytest

from savevault.events import LOAD_CHUNK, PERFORMANCE_WARNING, EventBus
from savevault.loading import LoadMethod, LoadScheduler
from savevault.persistence import PayloadStore, SaveLayout, encode_payload
from savevault.persistence.errors import CorruptSaveError, EmptySaveFileError, SlotNotFoundError


def make_scheduler(tmp_path, memory: int = 0, **kwargs):
    store = PayloadStore(SaveLayout.at(tmp_path))
    events = EventBus()
    options = dict(
        large_file_threshold=100,
        huge_file_threshold=100_000,
        low_memory_threshold=500,
        chunk_size=64,
        monitor_interval=0.01,
        cleanup_pause=0.0,
    )
    options.update(kwargs)
    return LoadScheduler(store, events=events, memory_probe=lambda: memory, **options)


def test_method_selection(tmp_path):
    scheduler = make_scheduler(tmp_path)
    assert scheduler.select_method(50, 0) is LoadMethod.STANDARD
    assert scheduler.select_method(200, 0) is LoadMethod.MEMORY_OPTIMIZED
    assert scheduler.select_method(200_000, 0) is LoadMethod.CHUNKED
    assert scheduler.select_method(200, 600) is LoadMethod.CHUNKED

    no_chunks = make_scheduler(tmp_path, enable_chunked_loading=False)
    assert no_chunks.select_method(200_000, 0) is LoadMethod.MEMORY_OPTIMIZED
    plain = make_scheduler(tmp_path, enable_chunked_loading=False, enable_memory_optimization=False)
    assert plain.select_method(200_000, 0) is LoadMethod.STANDARD


def test_chunked_load_reports_progress(tmp_path, payload):
    scheduler = make_scheduler(tmp_path)
    data = encode_payload(payload)
    progress = []
    scheduler.events.subscribe(LOAD_CHUNK, progress.append)

    async def scenario():
        await scheduler.store.save("alice", data)
        return await scheduler.load("alice", LoadMethod.CHUNKED)

    loaded = asyncio.run(scenario())
    assert loaded.to_dict() == payload.to_dict()
    total = math.ceil(len(data) / 64)
    assert progress[0]["total"] == total
    assert progress[-1]["completed"] and progress[-1]["loaded"] == total
    assert any(p["reassembling"] for p in progress)
    (metrics,) = scheduler.metrics.for_slot("alice")
    assert metrics.method is LoadMethod.CHUNKED
    assert metrics.success


def test_automatic_method_and_metrics(tmp_path, payload):
    scheduler = make_scheduler(tmp_path)

    async def scenario():
        await scheduler.store.save("alice", encode_payload(payload))
        return await scheduler.load("alice")

    asyncio.run(scenario())
    (metrics,) = scheduler.metrics.all()
    assert metrics.method is LoadMethod.MEMORY_OPTIMIZED
    assert metrics.success and metrics.error is None
    assert metrics.file_size > 100
    summary = scheduler.analyze("alice")
    assert summary.total_loads == 1
    assert summary.method_distribution == {LoadMethod.MEMORY_OPTIMIZED: 1}


def test_memory_error_falls_back_to_chunked(tmp_path, payload, monkeypatch):
    scheduler = make_scheduler(tmp_path)
    asyncio.run(scheduler.store.save("alice", encode_payload(payload)))

    async def out_of_memory(slot):
        raise MemoryError()

    monkeypatch.setattr(scheduler.store, "load", out_of_memory)
    loaded = asyncio.run(scheduler.load("alice"))
    assert loaded.save_name == "alice"
    (metrics,) = scheduler.metrics.for_slot("alice")
    assert metrics.fallback_from is LoadMethod.MEMORY_OPTIMIZED
    assert metrics.method is LoadMethod.CHUNKED
    # the next load of this slot goes straight to chunks
    assert scheduler.recommend_for("alice", 200, 0) is LoadMethod.CHUNKED


def test_failed_loads_are_recorded(tmp_path):
    scheduler = make_scheduler(tmp_path)
    with pytest.raises(SlotNotFoundError):
        asyncio.run(scheduler.load("ghost"))

    asyncio.run(scheduler.store.save("broken", b"[1, 2, 3]"))
    with pytest.raises(CorruptSaveError):
        asyncio.run(scheduler.load("broken"))
    (metrics,) = scheduler.metrics.for_slot("broken")
    assert not metrics.success
    assert metrics.error_type == "CorruptSaveError"
    assert scheduler.analyze().failed == 1


def test_low_memory_publishes_warning(tmp_path, payload):
    scheduler = make_scheduler(tmp_path, memory=10_000)
    warnings = []
    scheduler.events.subscribe(PERFORMANCE_WARNING, warnings.append)

    async def scenario():
        await scheduler.store.save("alice", encode_payload(payload))
        return await scheduler.load("alice")

    asyncio.run(scenario())
    assert warnings[0]["reason"] == "low_memory"
    assert scheduler.metrics.for_slot("alice")[0].method is LoadMethod.CHUNKED


def test_empty_file_in_chunked_mode(tmp_path):
    scheduler = make_scheduler(tmp_path)
    scheduler.store.layout.payload_path("blank").write_bytes(b"")
    with pytest.raises(EmptySaveFileError):
        asyncio.run(scheduler.load("blank", LoadMethod.CHUNKED))
