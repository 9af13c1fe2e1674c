"""Deterministic runtimes for tests and offline development."""

from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from edgeinfer.providers.base import DownloadProgressCallback, EmbeddingRuntime, InferenceRuntime


@dataclass(slots=True)
class MockPipeline:
    task: str
    model_ref: str
    device: str
    dtype: str


class MockInferenceRuntime(InferenceRuntime):
    """Echo-style runtime: generation returns the prompt plus a canned answer.

    The echoed prompt mirrors Hugging Face pipelines, which return the prompt
    concatenated with the completion.
    """

    name = "mock"

    def __init__(
        self,
        *,
        context_window: Optional[int] = None,
        fail_load: bool = False,
        fail_generation: bool = False,
        progress_steps: Sequence[float] = (0.0, 50.0, 50.0, 100.0),
    ) -> None:
        self.context_window = context_window
        self.fail_load = fail_load
        self.fail_generation = fail_generation
        self.progress_steps = tuple(progress_steps)
        self.loads: list[MockPipeline] = []
        self.prompts: list[str] = []
        self.generation_kwargs: list[dict[str, Any]] = []

    def load(
        self,
        task: str,
        model_ref: str,
        *,
        device: str,
        dtype: str,
        progress_callback: Optional[DownloadProgressCallback] = None,
    ) -> MockPipeline:
        if self.fail_load:
            raise RuntimeError(f"mock load failure for {model_ref}")
        total = 1024 * 1024 * 100
        if progress_callback is not None:
            progress_callback({"status": "initiate", "file": "model.safetensors"})
            for step in self.progress_steps:
                progress_callback(
                    {
                        "status": "progress",
                        "file": "model.safetensors",
                        "progress": step,
                        "loaded": int(total * step / 100),
                        "total": total,
                    }
                )
            progress_callback({"status": "done", "file": "model.safetensors"})
        pipeline = MockPipeline(task=task, model_ref=model_ref, device=device, dtype=dtype)
        self.loads.append(pipeline)
        return pipeline

    def run_generation(
        self,
        handle: Any,
        prompt: str,
        *,
        max_new_tokens: int,
        temperature: float,
        top_p: float,
        do_sample: bool = True,
    ) -> str:
        if self.fail_generation:
            raise RuntimeError("mock generation failure")
        self.prompts.append(prompt)
        self.generation_kwargs.append(
            {
                "max_new_tokens": max_new_tokens,
                "temperature": temperature,
                "top_p": top_p,
                "do_sample": do_sample,
            }
        )
        return f"{prompt} MOCK_ANSWER: {prompt[:100]}"

    def run_transcription(
        self,
        handle: Any,
        audio: Any,
        *,
        language: str,
        return_timestamps: bool = False,
    ) -> str:
        if self.fail_generation:
            raise RuntimeError("mock transcription failure")
        size = len(audio) if hasattr(audio, "__len__") else 0
        return f"MOCK_TRANSCRIPT[{language}]: {size} samples"

    def detect_context_window(self, model_ref: str) -> Optional[int]:
        return self.context_window


@dataclass
class MockEmbeddingRuntime(EmbeddingRuntime):
    """Return deterministic embedding vectors derived from each text."""

    dimension: int = 8
    model_name: str = "mock-embedding"
    loaded_refs: list[str] = field(default_factory=list)
    calls: list[list[str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.dimension <= 0:
            raise ValueError("dimension must be a positive integer")

    def load(self, model_ref: str) -> None:
        self.loaded_refs.append(model_ref)

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        vectors: List[List[float]] = []
        for text in texts:
            seed = hashlib.sha256(text.encode("utf-8")).hexdigest()
            rng = random.Random(seed)
            vectors.append([(rng.random() * 2.0) - 1.0 for _ in range(self.dimension)])
        return vectors


__all__ = ["MockEmbeddingRuntime", "MockInferenceRuntime", "MockPipeline"]
