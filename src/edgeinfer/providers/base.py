"""Base interfaces for the on-device inference and embedding runtimes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence

__all__ = ["DownloadProgressCallback", "EmbeddingRuntime", "InferenceRuntime"]

# Receives ``{"status": "initiate" | "progress" | "done", "file", "progress", "loaded", "total"}``.
DownloadProgressCallback = Callable[[dict[str, Any]], None]


class InferenceRuntime(ABC):
    """Load a model by reference and run generation or transcription with it.

    Implementations are blocking; callers run them off the event loop.
    """

    name = "runtime"

    @abstractmethod
    def load(
        self,
        task: str,
        model_ref: str,
        *,
        device: str,
        dtype: str,
        progress_callback: Optional[DownloadProgressCallback] = None,
    ) -> Any:
        """Materialise a model and return an opaque handle."""

    @abstractmethod
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
        """Return the raw generated text, which may echo the prompt."""

    @abstractmethod
    def run_transcription(
        self,
        handle: Any,
        audio: Any,
        *,
        language: str,
        return_timestamps: bool = False,
    ) -> str:
        """Return the transcribed text for ``audio``."""

    def detect_context_window(self, model_ref: str) -> Optional[int]:
        """Context window declared by the model's config, if discoverable."""

        return None


class EmbeddingRuntime(ABC):
    """Embed texts into fixed-size, mean-pooled, L2-normalised vectors."""

    model_name = "embedding"

    @abstractmethod
    def load(self, model_ref: str) -> None:
        """Load the embedding model; called at most once per client."""

    @abstractmethod
    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """Encode the provided texts into embeddings."""
