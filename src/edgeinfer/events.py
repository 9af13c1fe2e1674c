"""Progress and lifecycle callbacks exposed to host applications."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from edgeinfer.observability import log_event

LOGGER = logging.getLogger(__name__)

PROGRESS_STAGES = (
    "initializing",
    "profiling",
    "downloading",
    "loading",
    "ready",
    "generating",
    "transcribing",
    "error",
)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class ProgressEvent:
    stage: str
    progress: int
    message: str
    detail: Optional[dict[str, Any]] = None


@dataclass(slots=True)
class SDKEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=_now_ms)


ProgressCallback = Callable[[ProgressEvent], None]
EventCallback = Callable[[SDKEvent], None]


class EventChannel:
    """Invoke host callbacks inline; a failing callback never breaks the call."""

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        on_event: Optional[EventCallback] = None,
    ) -> None:
        self._on_progress = on_progress
        self._on_event = on_event

    def progress(
        self,
        stage: str,
        progress: int,
        message: str,
        detail: Optional[dict[str, Any]] = None,
    ) -> None:
        if stage not in PROGRESS_STAGES:
            raise ValueError(f"Unknown progress stage: {stage!r}")
        event = ProgressEvent(stage=stage, progress=progress, message=message, detail=detail)
        log_event(LOGGER, "sdk.progress", level="debug", stage=stage, progress=progress, message=message)
        if self._on_progress is None:
            return
        try:
            self._on_progress(event)
        except Exception as error:
            log_event(LOGGER, "sdk.callback.error", level="warning", callback="on_progress", exc=error)

    def emit(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        event = SDKEvent(type=event_type, data=dict(data or {}))
        log_event(LOGGER, "sdk.event", level="debug", type=event_type, data=event.data)
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception as error:
            log_event(LOGGER, "sdk.callback.error", level="warning", callback="on_event", exc=error)

    def error(self, stage: str, error: BaseException, **data: Any) -> None:
        """Mirror a raised error as an ``error`` event carrying its stage tag."""

        payload = {"stage": stage, "error": str(error)}
        payload.update(data)
        self.emit("error", payload)


__all__ = [
    "EventCallback",
    "EventChannel",
    "PROGRESS_STAGES",
    "ProgressCallback",
    "ProgressEvent",
    "SDKEvent",
]
