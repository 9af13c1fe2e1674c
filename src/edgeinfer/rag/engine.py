"""Three-tier retrieval-augmented generation over the local model."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from edgeinfer.config import DEFAULT_EMBEDDING_MODEL
from edgeinfer.errors import IndexExpiredError, NotAuthenticatedError, NotSyncedError, RAGQueryError, SyncError
from edgeinfer.events import EventChannel
from edgeinfer.loader import LoadedModel
from edgeinfer.observability import emit_prompt_event, emit_retriever_event, log_event, traced_duration
from edgeinfer.providers.base import EmbeddingRuntime
from edgeinfer.rag.chunking import chunk_parameters_for, chunk_text
from edgeinfer.rag.context import (
    apply_context_to_template,
    assemble_context,
    build_local_prompt,
    format_source,
    max_context_chars,
    truncate_context,
)
from edgeinfer.rag.models import LocalDocument, OfflineChunk, OfflineIndex, RAGChunk, RAGResponse, SyncResult
from edgeinfer.rag.similarity import rank_by_similarity

if TYPE_CHECKING:  # pragma: no cover - import cycle through rag.models
    from edgeinfer.backend import BackendClient

LOGGER = logging.getLogger(__name__)

EnsureModel = Callable[[str], Awaitable[LoadedModel]]
Generate = Callable[..., Awaitable[str]]
DocumentInput = Union[LocalDocument, str, Mapping[str, Any]]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _coerce_document(document: DocumentInput) -> LocalDocument:
    if isinstance(document, LocalDocument):
        return document
    if isinstance(document, str):
        return LocalDocument(content=document)
    return LocalDocument(content=str(document.get("content") or ""), name=document.get("name") or "Document")


def _short_model_name(model_ref: str) -> str:
    return model_ref.rsplit("/", 1)[-1]


class RAGEngine:
    """Retrieve context for a query and answer it with a local model.

    Tier 2 asks the backend for ranked chunks, Tier 1 chunks and embeds
    caller-supplied documents, Tier 3 searches an index pulled earlier by
    :meth:`sync_knowledge_base`. All tiers budget the context against the
    model's window before generating.
    """

    def __init__(
        self,
        *,
        backend: BackendClient,
        embedder: EmbeddingRuntime,
        events: EventChannel,
        ensure_model: EnsureModel,
        generate: Generate,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
    ) -> None:
        self._backend = backend
        self._embedder = embedder
        self._events = events
        self._ensure_model = ensure_model
        self._generate = generate
        self._embedding_model = embedding_model
        self._embedder_loaded = False
        self._embedder_lock = asyncio.Lock()
        self.offline_indexes: Dict[str, OfflineIndex] = {}

    @property
    def embedder_loaded(self) -> bool:
        return self._embedder_loaded

    async def _ensure_embedder(self) -> None:
        if self._embedder_loaded:
            return
        async with self._embedder_lock:
            if self._embedder_loaded:
                return
            self._events.progress(
                "downloading", 0, f"Loading embedding model ({_short_model_name(self._embedding_model)})..."
            )
            try:
                await asyncio.to_thread(self._embedder.load, self._embedding_model)
            except Exception as error:
                self._events.progress("error", 0, f"Embedding model failed: {error}")
                raise
            self._embedder_loaded = True
            self._events.progress("ready", 100, "Embedding model loaded")

    async def _embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._embedder.embed_texts, list(texts))

    def _fail(self, stage: str, error: Exception) -> Exception:
        self._events.progress("error", 0, str(error))
        self._events.error(stage, error)
        log_event(LOGGER, "rag.error", level="error", exc=error, stage=stage)
        return error

    async def _answer_from_chunks(
        self,
        *,
        tier: int,
        chunks: List[RAGChunk],
        query: str,
        model_id: str,
        context_window: int,
        options: dict[str, Any],
    ) -> tuple[str, str]:
        budget = max_context_chars(context_window)
        parts = [format_source(chunk.document_name, chunk.content) for chunk in chunks]
        context, used, truncated = assemble_context(parts, budget)
        emit_prompt_event(
            tier=tier,
            sources=[chunk.document_name for chunk in chunks[:used]],
            context_chars=len(context),
            budget_chars=budget,
            truncated=truncated,
        )
        answer = await self._generate(model_id, build_local_prompt(context, query), **options)
        return context, answer

    async def query(
        self,
        knowledge_base_id: str,
        query: str,
        model_id: str,
        *,
        top_k: int = 5,
        **options: Any,
    ) -> RAGResponse:
        """Tier 2: backend retrieval, local generation."""

        started = time.perf_counter()
        if not self._backend.authenticated:
            raise self._fail("rag_query", NotAuthenticatedError("Not authenticated. Call initialize() first."))

        try:
            result = await self._backend.query_knowledge_base(
                knowledge_base_id, query=query, top_k=top_k, model_id=model_id
            )
            chunks = [chunk.to_chunk() for chunk in result.retrieved_chunks]
            emit_retriever_event(
                tier=2,
                query=query,
                top_k=top_k,
                results=[{"id": chunk.id, "score": chunk.similarity_score} for chunk in chunks],
                duration_ms=float(_elapsed_ms(started)),
            )
            loaded = await self._ensure_model(model_id)
            budget = max_context_chars(loaded.context_window)
            context, truncated = truncate_context(result.context, budget)
            prompt = apply_context_to_template(result.prompt_template, result.context, context, query)
            emit_prompt_event(
                tier=2,
                sources=[chunk.document_name for chunk in chunks],
                context_chars=len(context),
                budget_chars=budget,
                truncated=truncated,
            )
            answer = await self._generate(model_id, prompt, **options)
        except Exception as error:
            wrapped = RAGQueryError(f"RAG query failed: {error}", stage="rag_query")
            raise self._fail("rag_query", wrapped) from error

        return RAGResponse(
            query=query,
            retrieved_chunks=chunks,
            generated_response=answer,
            context=context,
            latency_ms=_elapsed_ms(started),
            tier_used=2,
        )

    async def query_local(
        self,
        documents: Sequence[DocumentInput],
        query: str,
        model_id: str,
        *,
        top_k: int = 5,
        **options: Any,
    ) -> RAGResponse:
        """Tier 1: chunk, embed, rank and generate without touching the network."""

        started = time.perf_counter()
        try:
            loaded = await self._ensure_model(model_id)
            await self._ensure_embedder()
            chunk_size, overlap = chunk_parameters_for(loaded.context_window)

            candidates: List[tuple[str, str]] = []
            for document in map(_coerce_document, documents):
                for piece in chunk_text(document.content, chunk_size, overlap):
                    candidates.append((document.name, piece))

            vectors = await self._embed([content for _, content in candidates])
            query_vector = (await self._embed([query]))[0]
            ranked = rank_by_similarity(
                query_vector,
                list(zip(candidates, vectors)),
                lambda pair: pair[1],
                top_k,
            )
            chunks = [
                RAGChunk(
                    id=f"local-{position}",
                    document_id="local",
                    document_name=name,
                    content=content,
                    similarity_score=score,
                )
                for position, (((name, content), _), score) in enumerate(ranked)
            ]
            emit_retriever_event(
                tier=1,
                query=query,
                top_k=top_k,
                results=[{"id": chunk.id, "score": chunk.similarity_score} for chunk in chunks],
                duration_ms=float(_elapsed_ms(started)),
            )
            context, answer = await self._answer_from_chunks(
                tier=1,
                chunks=chunks,
                query=query,
                model_id=model_id,
                context_window=loaded.context_window,
                options=options,
            )
        except Exception as error:
            wrapped = RAGQueryError(f"Local RAG failed: {error}", stage="rag_local")
            raise self._fail("rag_local", wrapped) from error

        return RAGResponse(
            query=query,
            retrieved_chunks=chunks,
            generated_response=answer,
            context=context,
            latency_ms=_elapsed_ms(started),
            tier_used=1,
        )

    def get_offline_index(self, knowledge_base_id: str) -> OfflineIndex:
        """Return a usable synced index or raise without doing any work."""

        index = self.offline_indexes.get(knowledge_base_id)
        if index is None:
            raise self._fail(
                "rag_offline",
                NotSyncedError(
                    f'Knowledge base "{knowledge_base_id}" not synced. Call sync_knowledge_base() first.'
                ),
            )
        if index.is_expired():
            raise self._fail("rag_offline", IndexExpiredError("Offline index has expired. Please re-sync."))
        return index

    async def query_offline(
        self,
        knowledge_base_id: str,
        query: str,
        model_id: str,
        *,
        top_k: int = 5,
        **options: Any,
    ) -> RAGResponse:
        """Tier 3: rank a previously synced chunk set locally."""

        started = time.perf_counter()
        index = self.get_offline_index(knowledge_base_id)

        try:
            loaded = await self._ensure_model(model_id)
            await self._ensure_embedder()
            query_vector = (await self._embed([query]))[0]
            ranked = rank_by_similarity(query_vector, index.chunks, self._offline_embedding, top_k)
            chunks = [chunk.to_chunk(score) for chunk, score in ranked]
            emit_retriever_event(
                tier=3,
                query=query,
                top_k=top_k,
                results=[{"id": chunk.id, "score": chunk.similarity_score} for chunk in chunks],
                duration_ms=float(_elapsed_ms(started)),
            )
            context, answer = await self._answer_from_chunks(
                tier=3,
                chunks=chunks,
                query=query,
                model_id=model_id,
                context_window=loaded.context_window,
                options=options,
            )
        except Exception as error:
            wrapped = RAGQueryError(f"Offline RAG failed: {error}", stage="rag_offline")
            raise self._fail("rag_offline", wrapped) from error

        return RAGResponse(
            query=query,
            retrieved_chunks=chunks,
            generated_response=answer,
            context=context,
            latency_ms=_elapsed_ms(started),
            tier_used=3,
        )

    @staticmethod
    def _offline_embedding(chunk: OfflineChunk) -> Optional[List[float]]:
        return chunk.embedding

    async def sync_knowledge_base(
        self,
        knowledge_base_id: str,
        *,
        device_id: str,
        page_size: Optional[int] = None,
    ) -> SyncResult:
        """Pull every page of the offline package and store it by id."""

        started = time.perf_counter()
        try:
            with traced_duration("rag.sync.fetch", logger=LOGGER, knowledge_base_id=knowledge_base_id):
                response = await self._backend.sync_knowledge_base(
                    knowledge_base_id, device_id=device_id, page_size=page_size
                )
                package = response.sync_package
                chunks = list(package.chunks)
                size_mb = response.package_size_mb
                expires_at = response.expires_at or package.metadata.expires_at
                pages = 1
                while response.has_more:
                    response = await self._backend.sync_knowledge_base(
                        knowledge_base_id,
                        device_id=device_id,
                        page=response.page + 1,
                        page_size=page_size,
                    )
                    chunks.extend(response.sync_package.chunks)
                    size_mb += response.package_size_mb
                    pages += 1
        except Exception as error:
            wrapped = SyncError(f"Sync failed: {error}")
            raise self._fail("sync", wrapped) from error

        metadata = package.metadata.model_copy(
            update={"expires_at": expires_at, "total_chunks": len(chunks)}
        )
        self.offline_indexes[knowledge_base_id] = OfflineIndex(metadata=metadata, chunks=chunks)
        self._events.emit(
            "knowledge_base_synced",
            {"knowledge_base_id": knowledge_base_id, "chunk_count": len(chunks), "pages": pages},
        )
        log_event(
            LOGGER,
            "rag.sync.complete",
            duration_ms=float(_elapsed_ms(started)),
            knowledge_base_id=knowledge_base_id,
            chunk_count=len(chunks),
            pages=pages,
        )
        return SyncResult(chunk_count=len(chunks), size_mb=size_mb, expires_at=expires_at, pages=pages)


__all__ = ["RAGEngine"]
