"""Exception hierarchy raised by the edge-inference client."""

from __future__ import annotations

from typing import Optional


class EdgeInferError(RuntimeError):
    """Base exception for every failure surfaced to the caller.

    ``stage`` mirrors the tag carried by the ``error`` event so hosts can
    branch on the failing phase without parsing messages.
    """

    default_stage = "sdk"

    def __init__(self, message: str, *, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.stage = stage or self.default_stage


class AuthenticationError(EdgeInferError):
    """Raised when the backend rejects the API key."""

    default_stage = "auth"


class NotAuthenticatedError(EdgeInferError):
    """Raised when a call needs a bearer token before ``initialize()`` ran."""

    default_stage = "auth"


class DeviceNotProfiledError(EdgeInferError):
    default_stage = "profiling"


class ModelError(EdgeInferError):
    default_stage = "model_load"


class UnknownModelError(ModelError):
    """Raised when a model id is neither registered nor a hub reference."""


class InsufficientMemoryError(ModelError):
    """Raised by the pre-flight feasibility check."""

    def __init__(
        self,
        message: str,
        *,
        recommended_precision: str,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message, stage=stage)
        self.recommended_precision = recommended_precision


class RuntimeLoadError(ModelError):
    """Raised when the inference runtime fails to materialise a model."""


class GenerationError(ModelError):
    default_stage = "inference"


class WrongModelKindError(ModelError):
    """Raised when an LLM is used for transcription or vice versa."""


class RAGError(EdgeInferError):
    default_stage = "rag_query"


class RAGQueryError(RAGError):
    pass


class NotSyncedError(RAGError):
    default_stage = "rag_offline"


class IndexExpiredError(RAGError):
    default_stage = "rag_offline"


class SyncError(RAGError):
    default_stage = "sync"


class FallbackError(EdgeInferError):
    """Raised when the configured cloud fallback also fails."""

    default_stage = "fallback"


__all__ = [
    "AuthenticationError",
    "DeviceNotProfiledError",
    "EdgeInferError",
    "FallbackError",
    "GenerationError",
    "IndexExpiredError",
    "InsufficientMemoryError",
    "ModelError",
    "NotAuthenticatedError",
    "NotSyncedError",
    "RAGError",
    "RAGQueryError",
    "RuntimeLoadError",
    "SyncError",
    "UnknownModelError",
    "WrongModelKindError",
]
