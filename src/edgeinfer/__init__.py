"""Edge-inference client library."""

from edgeinfer.client import SDK_VERSION, EdgeClient
from edgeinfer.config import FallbackConfig, Settings
from edgeinfer.device import DeviceProfile
from edgeinfer.errors import (
    AuthenticationError,
    DeviceNotProfiledError,
    EdgeInferError,
    FallbackError,
    GenerationError,
    IndexExpiredError,
    InsufficientMemoryError,
    ModelError,
    NotAuthenticatedError,
    NotSyncedError,
    RAGError,
    RAGQueryError,
    RuntimeLoadError,
    SyncError,
    UnknownModelError,
    WrongModelKindError,
)
from edgeinfer.events import ProgressEvent, SDKEvent
from edgeinfer.loader import LoadedModel
from edgeinfer.planner import Feasibility, ModelRecommendation
from edgeinfer.rag.models import LocalDocument, RAGChunk, RAGResponse, SyncResult
from edgeinfer.telemetry import TelemetryEntry

__version__ = SDK_VERSION

__all__ = [
    "AuthenticationError",
    "DeviceNotProfiledError",
    "DeviceProfile",
    "EdgeClient",
    "EdgeInferError",
    "FallbackConfig",
    "FallbackError",
    "Feasibility",
    "GenerationError",
    "IndexExpiredError",
    "InsufficientMemoryError",
    "LoadedModel",
    "LocalDocument",
    "ModelError",
    "ModelRecommendation",
    "NotAuthenticatedError",
    "NotSyncedError",
    "ProgressEvent",
    "RAGChunk",
    "RAGError",
    "RAGQueryError",
    "RAGResponse",
    "RuntimeLoadError",
    "SDKEvent",
    "Settings",
    "SyncError",
    "SyncResult",
    "TelemetryEntry",
    "UnknownModelError",
    "WrongModelKindError",
    "__version__",
]
