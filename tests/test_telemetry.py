import asyncio

import pytest

from edgeinfer.events import EventChannel
from edgeinfer.telemetry import TelemetryBatcher, TelemetryEntry


def _entry(index: int = 0, success: bool = True) -> TelemetryEntry:
    return TelemetryEntry(latency_ms=100 + index, tokens_generated=5, success=success, model_id="quantum-1.7b")


class _Sink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.batches: list[list[dict]] = []

    async def __call__(self, metrics):
        if self.fail:
            raise RuntimeError("backend unavailable")
        self.batches.append(metrics)


def test_entry_serialises_wire_fields():
    payload = TelemetryEntry(latency_ms=12, tokens_generated=3, success=True, model_id="m", timestamp=1).to_dict()

    assert payload == {"latency_ms": 12, "tokens_generated": 3, "success": True, "model_id": "m", "timestamp": 1}


@pytest.mark.anyio
async def test_ninth_entry_arms_timer_and_tenth_flushes():
    sink = _Sink()
    batcher = TelemetryBatcher(sink, batch_size=10, flush_interval=60.0)

    for index in range(9):
        batcher.record(_entry(index))

    assert batcher.timer_armed is True
    assert sink.batches == []

    batcher.record(_entry(9))
    assert batcher.timer_armed is False
    await batcher.close()

    assert len(sink.batches) == 1
    assert [metric["latency_ms"] for metric in sink.batches[0]] == list(range(100, 110))
    assert batcher.buffer == []


@pytest.mark.anyio
async def test_timer_flushes_partial_batch():
    sink = _Sink()
    batcher = TelemetryBatcher(sink, batch_size=10, flush_interval=0.01)

    batcher.record(_entry())
    await asyncio.sleep(0.1)

    assert len(sink.batches) == 1
    assert batcher.timer_armed is False
    await batcher.close()


@pytest.mark.anyio
async def test_failed_delivery_requeues_and_caps_buffer():
    sink = _Sink(fail=True)
    batcher = TelemetryBatcher(sink, batch_size=10, flush_interval=60.0, buffer_limit=100)

    for index in range(150):
        batcher.record(_entry(index))
    await batcher.close()

    assert sink.batches == []
    assert len(batcher.buffer) == 100


@pytest.mark.anyio
async def test_failed_delivery_keeps_fifo_order():
    sink = _Sink(fail=True)
    batcher = TelemetryBatcher(sink, batch_size=10, flush_interval=60.0)

    for index in range(3):
        batcher.record(_entry(index))
    await batcher.flush()
    batcher.record(_entry(3))

    assert [entry.latency_ms for entry in batcher.buffer] == [100, 101, 102, 103]
    await batcher.close()


@pytest.mark.anyio
async def test_flush_is_noop_until_ready():
    sink = _Sink()
    ready = {"value": False}
    batcher = TelemetryBatcher(sink, batch_size=10, is_ready=lambda: ready["value"])

    for index in range(12):
        batcher.record(_entry(index))
    assert batcher.timer_armed is True
    await batcher.flush()

    assert sink.batches == []
    assert len(batcher.buffer) == 12
    assert batcher.timer_armed is False

    ready["value"] = True
    await batcher.close()

    assert len(sink.batches) == 1
    assert len(sink.batches[0]) == 12


@pytest.mark.anyio
async def test_successful_flush_emits_event():
    events = []
    sink = _Sink()
    batcher = TelemetryBatcher(sink, events=EventChannel(on_event=events.append))

    batcher.record(_entry())
    await batcher.flush()

    assert [(event.type, event.data) for event in events] == [("telemetry_flushed", {"count": 1})]
    await batcher.close()


def test_record_without_event_loop_only_buffers():
    sink = _Sink()
    batcher = TelemetryBatcher(sink, batch_size=2)

    for index in range(3):
        batcher.record(_entry(index))

    assert len(batcher.buffer) == 3
    assert batcher.timer_armed is False
