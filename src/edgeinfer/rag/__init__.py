"""Retrieval-augmented generation: chunking, ranking, budgeting and the tiered engine."""

from edgeinfer.rag.chunking import chunk_parameters_for, chunk_text
from edgeinfer.rag.context import assemble_context, max_context_chars, truncate_context
from edgeinfer.rag.engine import RAGEngine
from edgeinfer.rag.models import (
    KnowledgeBaseQueryResult,
    LocalDocument,
    OfflineChunk,
    OfflineIndex,
    OfflineIndexMetadata,
    RAGChunk,
    RAGResponse,
    ServerChunk,
    SyncResponse,
    SyncResult,
)
from edgeinfer.rag.similarity import cosine_similarity, rank_by_similarity

__all__ = [
    "KnowledgeBaseQueryResult",
    "LocalDocument",
    "OfflineChunk",
    "OfflineIndex",
    "OfflineIndexMetadata",
    "RAGChunk",
    "RAGEngine",
    "RAGResponse",
    "ServerChunk",
    "SyncResponse",
    "SyncResult",
    "assemble_context",
    "chunk_parameters_for",
    "chunk_text",
    "cosine_similarity",
    "max_context_chars",
    "rank_by_similarity",
    "truncate_context",
]
