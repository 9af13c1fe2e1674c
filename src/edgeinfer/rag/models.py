"""Data structures shared by the retrieval tiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass(slots=True)
class RAGChunk:
    id: str
    document_id: str
    document_name: str
    content: str
    similarity_score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RAGResponse:
    """Common result of all three retrieval tiers."""

    query: str
    retrieved_chunks: List[RAGChunk]
    generated_response: str
    context: str
    latency_ms: int
    tier_used: int


@dataclass(slots=True)
class SyncResult:
    chunk_count: int
    size_mb: float
    expires_at: datetime
    pages: int = 1


@dataclass(slots=True)
class LocalDocument:
    content: str
    name: str = "Document"


class ServerChunk(BaseModel):
    """Chunk row returned by the cloud retrieval endpoint."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    document_id: Optional[str] = None
    document_name: Optional[str] = None
    content: str
    chunk_index: Optional[int] = None
    metadata: Optional[dict[str, Any]] = None
    similarity_score: float = 0.0

    def to_chunk(self) -> RAGChunk:
        return RAGChunk(
            id=str(self.id),
            document_id=self.document_id or "",
            document_name=self.document_name or "Document",
            content=self.content,
            similarity_score=float(self.similarity_score),
            metadata=dict(self.metadata or {}),
        )


class KnowledgeBaseQueryResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: Optional[str] = None
    context: str = ""
    retrieved_chunks: List[ServerChunk] = Field(default_factory=list)
    prompt_template: str = ""


class OfflineChunk(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    document_id: Optional[str] = None
    document_name: Optional[str] = None
    content: str
    chunk_index: Optional[int] = None
    embedding: Optional[List[float]] = None
    metadata: Optional[dict[str, Any]] = None

    def to_chunk(self, similarity_score: float) -> RAGChunk:
        return RAGChunk(
            id=self.id,
            document_id=self.document_id or "",
            document_name=self.document_name or "Document",
            content=self.content,
            similarity_score=similarity_score,
            metadata=dict(self.metadata or {}),
        )


class OfflineIndexMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    kb_id: str
    kb_name: Optional[str] = None
    chunk_size: Optional[int] = None
    embedding_dim: int = 384
    total_chunks: int = 0
    synced_at: Optional[datetime] = None
    expires_at: datetime
    sync_token: Optional[str] = None


class OfflineIndex(BaseModel):
    """Synced chunk package for one knowledge base."""

    metadata: OfflineIndexMetadata
    chunks: List[OfflineChunk] = Field(default_factory=list)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires_at = self.metadata.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at < (now or datetime.now(timezone.utc))


class SyncResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sync_token: Optional[str] = None
    package_size_mb: float = 0.0
    chunk_count: int = 0
    total_chunks: Optional[int] = None
    page: int = 1
    page_size: Optional[int] = None
    has_more: bool = False
    expires_at: Optional[datetime] = None
    sync_package: OfflineIndex


__all__ = [
    "KnowledgeBaseQueryResult",
    "LocalDocument",
    "OfflineChunk",
    "OfflineIndex",
    "OfflineIndexMetadata",
    "RAGChunk",
    "RAGResponse",
    "ServerChunk",
    "SyncResponse",
    "SyncResult",
]
