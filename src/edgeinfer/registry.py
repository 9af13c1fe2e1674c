"""Compiled-in catalogue of logical model identifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Mapping, Optional

Precision = Literal["q4", "q8", "fp16", "fp32"]
Category = Literal["llm", "stt"]

# Ordered from the lowest-memory format to the highest-fidelity one.
PRECISIONS: tuple[Precision, ...] = ("q4", "q8", "fp16", "fp32")

TEXT_GENERATION = "text-generation"
SPEECH_RECOGNITION = "automatic-speech-recognition"

_HUB_REFERENCE_RE = re.compile(r"^[\w.-]+/[\w.-]+$")


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Registry entry describing the asset behind a logical model id."""

    model_id: str
    model_ref: str
    task: str
    category: Category
    sizes_mb: Mapping[str, int]
    min_ram_mb: Mapping[str, int]

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.model_id,
            "model_ref": self.model_ref,
            "task": self.task,
            "sizes_mb": dict(self.sizes_mb),
            "min_ram_mb": dict(self.min_ram_mb),
        }


def _entry(
    model_id: str,
    model_ref: str,
    category: Category,
    sizes: tuple[int, int, int, int],
    min_ram: tuple[int, int, int, int],
) -> ModelInfo:
    task = TEXT_GENERATION if category == "llm" else SPEECH_RECOGNITION
    return ModelInfo(
        model_id=model_id,
        model_ref=model_ref,
        task=task,
        category=category,
        sizes_mb=dict(zip(PRECISIONS, sizes)),
        min_ram_mb=dict(zip(PRECISIONS, min_ram)),
    )


MODEL_REGISTRY: dict[str, ModelInfo] = {
    info.model_id: info
    for info in (
        _entry(
            "quantum-1.7b",
            "HuggingFaceTB/SmolLM2-1.7B-Instruct",
            "llm",
            (900, 1700, 3400, 6800),
            (2048, 3072, 5120, 8192),
        ),
        _entry(
            "quantum-3b",
            "Qwen/Qwen2.5-3B-Instruct",
            "llm",
            (1600, 3200, 6400, 12800),
            (3072, 5120, 8192, 16384),
        ),
        _entry(
            "quantum-code-3b",
            "Qwen/Qwen2.5-Coder-3B-Instruct",
            "llm",
            (1600, 3200, 6400, 12800),
            (3072, 5120, 8192, 16384),
        ),
        _entry(
            "quantum-8b",
            "Qwen/Qwen2.5-7B-Instruct",
            "llm",
            (4200, 8400, 16800, 33600),
            (6144, 10240, 20480, 40960),
        ),
        _entry(
            "voicecore-base",
            "openai/whisper-base",
            "stt",
            (40, 75, 150, 300),
            (512, 512, 1024, 2048),
        ),
        _entry(
            "voicecore-small",
            "openai/whisper-small",
            "stt",
            (100, 200, 400, 800),
            (1024, 1024, 2048, 4096),
        ),
    )
}


def get_model_info(model_id: str) -> Optional[ModelInfo]:
    return MODEL_REGISTRY.get(model_id)


def is_hub_reference(model_id: str) -> bool:
    """Return ``True`` for ``owner/name`` ids loadable as pass-through models."""

    return bool(_HUB_REFERENCE_RE.match(model_id))


def available_models() -> dict[str, dict[str, list[dict[str, object]]]]:
    """Group registry entries by category."""

    grouped: dict[str, list[dict[str, object]]] = {"llm": [], "stt": []}
    for info in MODEL_REGISTRY.values():
        grouped.setdefault(info.category, []).append(info.to_dict())
    return {category: {"models": models} for category, models in grouped.items()}


__all__ = [
    "Category",
    "MODEL_REGISTRY",
    "ModelInfo",
    "PRECISIONS",
    "Precision",
    "SPEECH_RECOGNITION",
    "TEXT_GENERATION",
    "available_models",
    "get_model_info",
    "is_hub_reference",
]
