"""Embedding runtime backed by Sentence Transformers."""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

from edgeinfer.config import DEFAULT_EMBEDDING_MODEL
from edgeinfer.observability import emit_embeddings_event, log_event
from edgeinfer.providers.base import EmbeddingRuntime

LOGGER = logging.getLogger(__name__)


class SentenceTransformerEmbedder(EmbeddingRuntime):
    """Wrapper around a ``SentenceTransformer`` model producing unit vectors."""

    def __init__(self, *, device: Optional[str] = None) -> None:
        self._device = device
        self._model = None
        self.model_name = DEFAULT_EMBEDDING_MODEL

    def load(self, model_ref: str) -> None:
        from sentence_transformers import SentenceTransformer

        started = time.perf_counter()
        self._model = SentenceTransformer(model_ref, device=self._device)
        self.model_name = model_ref
        log_event(
            LOGGER,
            "embeddings.load",
            duration_ms=(time.perf_counter() - started) * 1000.0,
            details={"model": model_ref, "dimension": self.dimension},
        )

    @property
    def dimension(self) -> Optional[int]:
        if self._model is None:
            return None
        return int(self._model.get_sentence_embedding_dimension())

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        if self._model is None:
            raise RuntimeError("Embedding model is not loaded")
        started = time.perf_counter()
        try:
            embeddings = self._model.encode(
                list(texts),
                convert_to_numpy=True,
                show_progress_bar=False,
                normalize_embeddings=True,
            )
        except Exception as error:
            emit_embeddings_event(
                model=self.model_name,
                count=len(texts),
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=[str(error)],
            )
            raise

        emit_embeddings_event(
            model=self.model_name,
            count=len(texts),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return embeddings.tolist()


__all__ = ["SentenceTransformerEmbedder"]
