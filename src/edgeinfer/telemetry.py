"""Size/time triggered batching of inference and load outcomes."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Optional

from edgeinfer.events import EventChannel
from edgeinfer.observability import emit_telemetry_flush

LOGGER = logging.getLogger(__name__)

TelemetrySender = Callable[[list[dict[str, Any]]], Awaitable[None]]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class TelemetryEntry:
    latency_ms: int
    tokens_generated: int
    success: bool
    model_id: str
    timestamp: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class TelemetryBatcher:
    """Buffer telemetry entries and deliver them in FIFO batches.

    ``record`` never blocks: reaching ``batch_size`` hands the batch to a
    background delivery task, otherwise a single flush timer is armed.
    Failed deliveries are put back at the front of the buffer, which is
    always capped at ``buffer_limit`` entries.
    """

    def __init__(
        self,
        send: TelemetrySender,
        *,
        batch_size: int = 10,
        flush_interval: float = 60.0,
        buffer_limit: int = 100,
        is_ready: Callable[[], bool] = lambda: True,
        events: Optional[EventChannel] = None,
    ) -> None:
        self._send = send
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.buffer_limit = buffer_limit
        self._is_ready = is_ready
        self._events = events
        self._buffer: list[TelemetryEntry] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def buffer(self) -> list[TelemetryEntry]:
        return list(self._buffer)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        """Arm the periodic flush timer; used once authentication succeeded."""

        self._arm_timer()

    def record(self, entry: TelemetryEntry) -> None:
        self._buffer.append(entry)
        self._trim()
        loop = _running_loop()
        if len(self._buffer) >= self.batch_size and loop is not None and self._is_ready():
            batch = self._take_batch()
            self._spawn(loop, self._deliver(batch))
            return
        self._arm_timer()

    async def flush(self) -> None:
        if not self._is_ready():
            self._cancel_timer()
            LOGGER.debug("Telemetry flush skipped: client not authenticated")
            return
        batch = self._take_batch()
        if not batch:
            return
        await self._deliver(batch)

    async def close(self) -> None:
        """Final flush, then wait for any in-flight deliveries."""

        self._cancel_timer()
        await self.flush()
        self._cancel_timer()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _take_batch(self) -> list[TelemetryEntry]:
        self._cancel_timer()
        batch = self._buffer
        self._buffer = []
        return batch

    async def _deliver(self, batch: list[TelemetryEntry]) -> None:
        started = time.perf_counter()
        try:
            await self._send([entry.to_dict() for entry in batch])
        except Exception as error:
            self._buffer[:0] = batch
            self._trim()
            emit_telemetry_flush(
                count=len(batch),
                requeued=len(self._buffer),
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=error,
            )
            return

        emit_telemetry_flush(
            count=len(batch),
            requeued=0,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        if self._events is not None:
            self._events.emit("telemetry_flushed", {"count": len(batch)})

    def _trim(self) -> None:
        if len(self._buffer) > self.buffer_limit:
            del self._buffer[: len(self._buffer) - self.buffer_limit]

    def _arm_timer(self) -> None:
        if self._timer is not None:
            return
        loop = _running_loop()
        if loop is None:
            return
        self._timer = loop.call_later(self.flush_interval, self._on_timer, loop)

    def _on_timer(self, loop: asyncio.AbstractEventLoop) -> None:
        self._timer = None
        self._spawn(loop, self.flush())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro: Coroutine[Any, Any, None]) -> None:
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


__all__ = ["TelemetryBatcher", "TelemetryEntry", "TelemetrySender"]
