"""Runtime boundary interfaces and their implementations."""
from __future__ import annotations

from .base import DownloadProgressCallback, EmbeddingRuntime, InferenceRuntime
from .mock import MockEmbeddingRuntime, MockInferenceRuntime
from .sentence_transformers_embedder import SentenceTransformerEmbedder
from .transformers_runtime import TransformersRuntime

__all__ = [
    "DownloadProgressCallback",
    "EmbeddingRuntime",
    "InferenceRuntime",
    "MockEmbeddingRuntime",
    "MockInferenceRuntime",
    "SentenceTransformerEmbedder",
    "TransformersRuntime",
]
