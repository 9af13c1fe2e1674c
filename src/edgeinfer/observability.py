"""Centralised observability helpers for structured lifecycle logging."""

from __future__ import annotations

import logging
import time
import traceback
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

LOGGER = logging.getLogger("edgeinfer.observability")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    extra: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    if extra:
        event.update(extra)
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_device_profile(*, device_id: str, profile: dict[str, Any], duration_ms: float) -> None:
    details = {
        "device_id": device_id,
        "cpu_cores": profile.get("cpu_cores"),
        "memory_mb": profile.get("memory_mb"),
        "platform": profile.get("platform"),
        "gpu_renderer": profile.get("gpu_renderer"),
        "recommended_precision": profile.get("recommended_precision"),
        "recommended_context_window": profile.get("recommended_context_window"),
    }
    log_event(LOGGER, "device.profile", duration_ms=duration_ms, details=details)


def emit_model_load_start(
    *,
    model_id: str,
    model_ref: str,
    task: str,
    precision: str,
    device: str,
    context_window: int,
) -> None:
    details = {
        "model_id": model_id,
        "model_ref": model_ref,
        "task": task,
        "precision": precision,
        "device": device,
        "context_window": context_window,
    }
    log_event(LOGGER, "model.load.start", details=details)


def emit_model_load_progress(
    *,
    model_id: str,
    status: str,
    progress: int,
    loaded_bytes: int | None = None,
    total_bytes: int | None = None,
) -> None:
    details: dict[str, Any] = {"model_id": model_id, "status": status, "progress": progress}
    if loaded_bytes is not None:
        details["loaded_bytes"] = loaded_bytes
    if total_bytes is not None:
        details["total_bytes"] = total_bytes
    log_event(LOGGER, "model.load.progress", level="debug", details=details)


def emit_model_load_success(
    *,
    model_id: str,
    precision: str,
    context_window: int,
    duration_ms: float,
) -> None:
    details = {
        "model_id": model_id,
        "precision": precision,
        "context_window": context_window,
    }
    log_event(LOGGER, "model.load.success", duration_ms=duration_ms, details=details)


def emit_model_load_error(*, model_id: str, precision: str | None, error: BaseException) -> None:
    details = {"model_id": model_id, "precision": precision}
    log_event(LOGGER, "model.load.error", level="error", details=details, exc=error)


def emit_inference_request(
    *,
    model_id: str,
    prompt_preview: str,
    prompt_len: int,
    max_tokens: int | None,
    temperature: float | None = None,
    top_p: float | None = None,
) -> None:
    details = {
        "model_id": model_id,
        "prompt_preview": prompt_preview[:120],
        "prompt_len": prompt_len,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "top_p": top_p,
    }
    log_event(LOGGER, "inference.request", details=details)


def emit_inference_result(
    *,
    model_id: str,
    duration_ms: float,
    answer_preview: str,
    tokens_generated: int | None,
    fallback: bool = False,
) -> None:
    details = {
        "model_id": model_id,
        "answer_preview": answer_preview[:120],
        "tokens_generated": tokens_generated,
        "fallback": fallback,
    }
    log_event(LOGGER, "inference.result", duration_ms=duration_ms, details=details)


def emit_embeddings_event(
    *, model: str, count: int, duration_ms: float, errors: list[str] | None = None
) -> None:
    details = {
        "model": model,
        "count": count,
        "errors": errors or [],
        "per_item_ms": round(duration_ms / count, 3) if count else None,
    }
    level = "warning" if errors else "info"
    log_event(LOGGER, "embeddings.compute", level=level, duration_ms=duration_ms, details=details)


def emit_retriever_event(
    *,
    tier: int,
    query: str,
    top_k: int,
    results: list[dict[str, Any]],
    duration_ms: float,
) -> None:
    details = {
        "tier": tier,
        "query_preview": query[:120],
        "top_k": top_k,
        "results": results,
    }
    log_event(LOGGER, "retriever.search", duration_ms=duration_ms, details=details)


def emit_prompt_event(
    *,
    tier: int,
    sources: Iterable[str],
    context_chars: int,
    budget_chars: int,
    truncated: bool,
) -> None:
    details = {
        "tier": tier,
        "sources": list(sources),
        "context_chars": context_chars,
        "budget_chars": budget_chars,
        "truncated": truncated,
    }
    log_event(LOGGER, "prompt.compose", details=details)


def emit_telemetry_flush(
    *, count: int, requeued: int, duration_ms: float, error: BaseException | None = None
) -> None:
    details = {"count": count, "requeued": requeued}
    level = "warning" if error else "info"
    log_event(LOGGER, "telemetry.flush", level=level, duration_ms=duration_ms, details=details, exc=error)


def emit_fallback_event(
    *,
    provider: str,
    model: str,
    protocol: str,
    duration_ms: float,
    error: BaseException | None = None,
) -> None:
    details = {"provider": provider, "model": model, "protocol": protocol}
    level = "error" if error else "info"
    step = "fallback.error" if error else "fallback.success"
    log_event(LOGGER, step, level=level, duration_ms=duration_ms, details=details, exc=error)


def emit_exception(
    *,
    module: str,
    error: BaseException,
    stage: str | None = None,
    suggestion: str | None = None,
) -> None:
    details = {"module": module}
    if stage:
        details["stage"] = stage
    if suggestion:
        details["suggestion"] = suggestion
    log_event(LOGGER, "exception", level="error", details=details, exc=error)


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    log_event(logger or LOGGER, f"{step}.start", level="debug", details=fields)
    try:
        yield
    except Exception as error:
        log_event(logger or LOGGER, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        end = time.perf_counter()
        log_event(
            logger or LOGGER,
            f"{step}.complete",
            duration_ms=(end - start) * 1000.0,
            details=fields,
        )


__all__ = [
    "emit_device_profile",
    "emit_embeddings_event",
    "emit_exception",
    "emit_fallback_event",
    "emit_inference_request",
    "emit_inference_result",
    "emit_model_load_error",
    "emit_model_load_progress",
    "emit_model_load_start",
    "emit_model_load_success",
    "emit_prompt_event",
    "emit_retriever_event",
    "emit_telemetry_flush",
    "log_event",
    "traced_duration",
]
