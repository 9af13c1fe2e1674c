"""Precision and context-window planning from device memory.

Everything here is a pure function of memory size and registry data so the
loader, the client and hosts can all ask the same questions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from edgeinfer.registry import MODEL_REGISTRY, PRECISIONS, Precision

CONTEXT_BASE: dict[str, int] = {"q4": 1024, "q8": 2048, "fp16": 4096, "fp32": 8192}
MAX_CONTEXT_WINDOW = 32768
MIN_CONTEXT_WINDOW = 512
DEFAULT_CONTEXT_WINDOW = 2048

_STT_CANDIDATES: tuple[Precision, ...] = ("fp16", "q8", "q4")


@dataclass(slots=True)
class Feasibility:
    can_run: bool
    reason: str
    recommended_precision: Precision


@dataclass(slots=True)
class ModelRecommendation:
    model_id: str
    precision: Precision
    context_window: int
    reason: str


def select_precision(memory_mb: int, model_id: str) -> Precision:
    """Pick the precision a model should run at on a device.

    LLMs are pinned to the lowest-memory format whatever the memory size;
    speech models take the highest format whose minimum RAM is met.
    """

    info = MODEL_REGISTRY.get(model_id)
    if info is None or info.category == "llm":
        return "q4"
    for precision in _STT_CANDIDATES:
        if memory_mb >= info.min_ram_mb[precision]:
            return precision
    return "q4"


def recommend_context_window(memory_mb: int, precision: str) -> int:
    base = CONTEXT_BASE.get(precision, CONTEXT_BASE["q4"])
    if memory_mb >= 16384:
        return min(base * 4, MAX_CONTEXT_WINDOW)
    if memory_mb >= 8192:
        return min(base * 2, 16384)
    if memory_mb >= 4096:
        return base
    return max(MIN_CONTEXT_WINDOW, base // 2)


def can_run_model(
    memory_mb: Optional[int],
    model_id: str,
    precision: Optional[str] = None,
) -> Feasibility:
    """Pre-flight feasibility check; ``memory_mb`` is ``None`` before profiling."""

    info = MODEL_REGISTRY.get(model_id)
    if info is None:
        return Feasibility(False, f'Unknown model "{model_id}"', "q4")
    if memory_mb is None:
        return Feasibility(True, "Device not profiled yet", "q4")
    if precision is not None and precision not in PRECISIONS:
        raise ValueError(f"Unsupported precision: {precision!r}")

    best = select_precision(memory_mb, model_id)

    if precision is not None and memory_mb < info.min_ram_mb[precision]:
        return Feasibility(
            False,
            f"Not enough RAM for {precision.upper()} (need {info.min_ram_mb[precision]} MB, "
            f"have {memory_mb} MB). Try {best.upper()} instead.",
            best,
        )

    if memory_mb < info.min_ram_mb["q4"]:
        return Feasibility(
            False,
            f"Model requires at least {info.min_ram_mb['q4']} MB RAM even at Q4. "
            f"Device has {memory_mb} MB.",
            "q4",
        )

    return Feasibility(True, f"OK at {best.upper()} precision", best)


def recommend_model(memory_mb: int, category: str = "llm") -> Optional[ModelRecommendation]:
    """Largest model of ``category`` that fits, else the smallest one at Q4."""

    candidates = [info for info in MODEL_REGISTRY.values() if info.category == category]
    if not candidates:
        return None

    for info in sorted(candidates, key=lambda item: item.sizes_mb["q4"], reverse=True):
        precision = select_precision(memory_mb, info.model_id)
        if memory_mb >= info.min_ram_mb[precision]:
            return ModelRecommendation(
                model_id=info.model_id,
                precision=precision,
                context_window=recommend_context_window(memory_mb, precision),
                reason=f"Best model for {round(memory_mb / 1024)}GB RAM at {precision.upper()} precision",
            )

    smallest = min(candidates, key=lambda item: item.sizes_mb["q4"])
    return ModelRecommendation(
        model_id=smallest.model_id,
        precision="q4",
        context_window=MIN_CONTEXT_WINDOW,
        reason="Limited device memory, using smallest available model at Q4",
    )


def supported_precisions(memory_mb: int) -> list[str]:
    supported = ["q4"]
    if memory_mb >= 4096:
        supported.append("q8")
    if memory_mb >= 8192:
        supported.append("fp16")
    if memory_mb >= 16384:
        supported.append("fp32")
    return supported


def recommended_tier(memory_mb: int, cpu_cores: int) -> int:
    """RAG tier the backend should suggest for this device class."""

    if memory_mb >= 16384 and cpu_cores >= 8:
        return 3
    if memory_mb >= 8192 and cpu_cores >= 4:
        return 2
    return 1


__all__ = [
    "CONTEXT_BASE",
    "DEFAULT_CONTEXT_WINDOW",
    "Feasibility",
    "MAX_CONTEXT_WINDOW",
    "MIN_CONTEXT_WINDOW",
    "ModelRecommendation",
    "can_run_model",
    "recommend_context_window",
    "recommend_model",
    "recommended_tier",
    "select_precision",
    "supported_precisions",
]
