"""Model registry resolution, feasibility checks and the load-once cache."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from edgeinfer.errors import InsufficientMemoryError, RuntimeLoadError, UnknownModelError
from edgeinfer.events import EventChannel
from edgeinfer.observability import (
    emit_model_load_error,
    emit_model_load_progress,
    emit_model_load_start,
    emit_model_load_success,
)
from edgeinfer.planner import (
    DEFAULT_CONTEXT_WINDOW,
    can_run_model,
    recommend_context_window,
    select_precision,
)
from edgeinfer.providers.base import InferenceRuntime
from edgeinfer.registry import (
    MODEL_REGISTRY,
    PRECISIONS,
    TEXT_GENERATION,
    ModelInfo,
    get_model_info,
    is_hub_reference,
)

LOGGER = logging.getLogger(__name__)

CUSTOM_MODEL_ESTIMATED_MB = 2048

# (model_id, success, metadata, error_message)
LoadOutcomeHook = Callable[[str, bool, dict[str, Any], Optional[str]], None]


@dataclass(slots=True)
class LoadedModel:
    """A materialised runtime handle plus the decisions made to load it."""

    model_id: str
    handle: Any
    precision: str
    context_window: int
    task: str
    model_ref: str
    info: Optional[ModelInfo] = None
    load_time_ms: int = 0

    @property
    def category(self) -> str:
        return self.info.category if self.info is not None else "llm"


def _megabytes(value: Any) -> Optional[int]:
    if not isinstance(value, (int, float)) or value <= 0:
        return None
    return round(value / 1024 / 1024)


class DownloadProgressTracker:
    """Turn runtime download callbacks into monotonic, de-duplicated progress."""

    def __init__(self, model_id: str, events: EventChannel) -> None:
        self.model_id = model_id
        self._events = events
        self._last_percent = 0

    def __call__(self, data: dict[str, Any]) -> None:
        status = data.get("status")
        percent = self._last_percent
        message = "Downloading..."

        if status == "progress" and data.get("progress") is not None:
            percent = max(self._last_percent, min(100, round(float(data["progress"]))))
            loaded = _megabytes(data.get("loaded"))
            total = _megabytes(data.get("total"))
            if loaded is not None and total is not None:
                message = f"Downloading: {loaded} MB / {total} MB"
            else:
                message = f"Downloading: {percent}%"
        elif status == "done":
            percent = 100
            message = f"Downloaded {data['file']}" if data.get("file") else "Download complete"
        elif status == "initiate":
            message = f"Starting download: {data['file']}" if data.get("file") else "Initiating download..."

        if percent == self._last_percent and status not in {"done", "initiate"}:
            return

        self._last_percent = percent
        self._events.progress("downloading", percent, message, detail=dict(data))
        self._events.emit("model_download_progress", {"model_id": self.model_id, "percent": percent, **data})
        emit_model_load_progress(
            model_id=self.model_id,
            status=str(status),
            progress=percent,
            loaded_bytes=data.get("loaded"),
            total_bytes=data.get("total"),
        )


class ModelLoader:
    """Resolve, check and load models, keeping one handle per logical id."""

    def __init__(
        self,
        runtime: InferenceRuntime,
        events: EventChannel,
        *,
        device: str = "cpu",
        on_outcome: Optional[LoadOutcomeHook] = None,
    ) -> None:
        self._runtime = runtime
        self._events = events
        self._device = device
        self._on_outcome = on_outcome
        self._models: dict[str, LoadedModel] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_loaded: Optional[str] = None

    @property
    def runtime(self) -> InferenceRuntime:
        return self._runtime

    def get(self, model_id: str) -> Optional[LoadedModel]:
        return self._models.get(model_id)

    def loaded_ids(self) -> list[str]:
        return list(self._models)

    @property
    def last_loaded(self) -> Optional[LoadedModel]:
        if self._last_loaded is None:
            return None
        return self._models.get(self._last_loaded)

    def clear(self) -> None:
        self._models.clear()
        self._locks.clear()
        self._last_loaded = None

    async def ensure(self, model_id: str, *, memory_mb: Optional[int] = None) -> LoadedModel:
        """Return the cached handle, loading it implicitly on first use."""

        loaded = self._models.get(model_id)
        if loaded is not None:
            return loaded
        return await self.load(model_id, memory_mb=memory_mb)

    async def load(
        self,
        model_id: str,
        *,
        precision: Optional[str] = None,
        memory_mb: Optional[int] = None,
    ) -> LoadedModel:
        lock = self._locks.setdefault(model_id, asyncio.Lock())
        async with lock:
            cached = self._models.get(model_id)
            if cached is not None:
                LOGGER.debug("Model %s already loaded at %s", model_id, cached.precision)
                return cached
            return await self._load_uncached(model_id, precision=precision, memory_mb=memory_mb)

    def _fail_preflight(self, error: Exception, model_id: str) -> Exception:
        self._events.progress("error", 0, str(error))
        self._events.error("model_load", error, model_id=model_id)
        emit_model_load_error(model_id=model_id, precision=None, error=error)
        return error

    def _resolve(
        self,
        model_id: str,
        precision: Optional[str],
        memory_mb: Optional[int],
    ) -> tuple[Optional[ModelInfo], str, str, str, int]:
        if precision is not None and precision not in PRECISIONS:
            raise self._fail_preflight(ValueError(f"Unsupported precision: {precision!r}"), model_id)

        info = get_model_info(model_id)
        if info is None:
            if not is_hub_reference(model_id):
                available = ", ".join(MODEL_REGISTRY)
                raise self._fail_preflight(
                    UnknownModelError(f'Unknown model "{model_id}". Available: {available}'),
                    model_id,
                )
            resolved = precision or "q4"
            self._events.progress("downloading", 0, f"Loading custom model: {model_id}...")
            self._events.emit(
                "model_download_start",
                {"model_id": model_id, "custom": True, "estimated_size_mb": CUSTOM_MODEL_ESTIMATED_MB},
            )
            return None, model_id, TEXT_GENERATION, resolved, CUSTOM_MODEL_ESTIMATED_MB

        resolved = precision
        if resolved is None:
            if memory_mb is not None:
                resolved = select_precision(memory_mb, model_id)
                self._events.progress(
                    "downloading", 0, f"Auto-selected {resolved.upper()} quantization for your device"
                )
            else:
                resolved = "q4"

        check = can_run_model(memory_mb, model_id, resolved)
        if not check.can_run:
            raise self._fail_preflight(
                InsufficientMemoryError(check.reason, recommended_precision=check.recommended_precision),
                model_id,
            )

        estimated = info.sizes_mb[resolved]
        self._events.progress(
            "downloading", 0, f"Downloading {model_id} ({resolved.upper()}, ~{estimated}MB)..."
        )
        self._events.emit(
            "model_download_start",
            {"model_id": model_id, "precision": resolved, "estimated_size_mb": estimated},
        )
        return info, info.model_ref, info.task, resolved, estimated

    async def _context_window(
        self,
        info: Optional[ModelInfo],
        model_ref: str,
        precision: str,
        memory_mb: Optional[int],
    ) -> int:
        if info is not None:
            if memory_mb is None:
                return DEFAULT_CONTEXT_WINDOW
            return recommend_context_window(memory_mb, precision)
        detected = await asyncio.to_thread(self._runtime.detect_context_window, model_ref)
        return detected or DEFAULT_CONTEXT_WINDOW

    async def _load_uncached(
        self,
        model_id: str,
        *,
        precision: Optional[str],
        memory_mb: Optional[int],
    ) -> LoadedModel:
        info, model_ref, task, resolved, _ = self._resolve(model_id, precision, memory_mb)

        loop = asyncio.get_running_loop()
        tracker = DownloadProgressTracker(model_id, self._events)

        def _threadsafe_progress(data: dict[str, Any]) -> None:
            loop.call_soon_threadsafe(tracker, dict(data))

        started = time.perf_counter()
        try:
            context_window = await self._context_window(info, model_ref, resolved, memory_mb)
            emit_model_load_start(
                model_id=model_id,
                model_ref=model_ref,
                task=task,
                precision=resolved,
                device=self._device,
                context_window=context_window,
            )
            handle = await asyncio.to_thread(
                self._runtime.load,
                task,
                model_ref,
                device=self._device,
                dtype=resolved,
                progress_callback=_threadsafe_progress,
            )
        except Exception as error:
            self._events.progress("error", 0, f"Failed to load {model_id}: {error}")
            self._events.error("model_load", error, model_id=model_id)
            emit_model_load_error(model_id=model_id, precision=resolved, error=error)
            self._report(model_id, False, {"precision": resolved}, str(error))
            raise RuntimeLoadError(f"Failed to load {model_id}: {error}") from error

        load_time_ms = int((time.perf_counter() - started) * 1000)
        loaded = LoadedModel(
            model_id=model_id,
            handle=handle,
            precision=resolved,
            context_window=context_window,
            task=task,
            model_ref=model_ref,
            info=info,
            load_time_ms=load_time_ms,
        )
        self._models[model_id] = loaded
        self._last_loaded = model_id

        self._events.progress(
            "ready",
            100,
            f"{model_id} loaded ({resolved.upper()}, {load_time_ms / 1000:.1f}s, ctx: {context_window})",
        )
        self._events.emit(
            "model_loaded",
            {
                "model_id": model_id,
                "precision": resolved,
                "load_time_ms": load_time_ms,
                "context_window": context_window,
            },
        )
        emit_model_load_success(
            model_id=model_id,
            precision=resolved,
            context_window=context_window,
            duration_ms=float(load_time_ms),
        )
        self._report(
            model_id,
            True,
            {"precision": resolved, "load_time_ms": load_time_ms, "context_window": context_window},
            None,
        )
        return loaded

    def _report(self, model_id: str, success: bool, metadata: dict[str, Any], error: Optional[str]) -> None:
        if self._on_outcome is None:
            return
        try:
            self._on_outcome(model_id, success, metadata, error)
        except Exception as hook_error:
            LOGGER.warning("Load outcome hook failed for %s: %s", model_id, hook_error)


__all__ = ["DownloadProgressTracker", "LoadedModel", "ModelLoader"]
