"""The edge-inference client: profiling, model lifecycle, RAG and protocol adapters."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Coroutine, Mapping, Optional, Sequence, Union

import httpx
from huggingface_hub import HfApi

from edgeinfer.backend import BackendClient
from edgeinfer.config import FallbackConfig, Settings
from edgeinfer.device import DeviceIdentityStore, DeviceProfile, profile_device
from edgeinfer.errors import (
    AuthenticationError,
    DeviceNotProfiledError,
    GenerationError,
    ModelError,
    WrongModelKindError,
)
from edgeinfer.events import EventCallback, EventChannel, ProgressCallback
from edgeinfer.loader import LoadedModel, ModelLoader
from edgeinfer.observability import (
    emit_device_profile,
    emit_exception,
    emit_inference_request,
    emit_inference_result,
    log_event,
)
from edgeinfer.planner import (
    DEFAULT_CONTEXT_WINDOW,
    Feasibility,
    ModelRecommendation,
    can_run_model,
    recommend_model,
    recommended_tier,
    supported_precisions,
)
from edgeinfer.protocols.bedrock import BedrockInvokeRequest, BedrockInvokeResponse
from edgeinfer.protocols.compat import OpenAICompatibleClient
from edgeinfer.protocols.fallback import CloudFallback
from edgeinfer.protocols.openai import ChatCompletionRequest, ChatCompletionResponse
from edgeinfer.protocols.translator import ProtocolTranslator
from edgeinfer.providers.base import EmbeddingRuntime, InferenceRuntime
from edgeinfer.providers.sentence_transformers_embedder import SentenceTransformerEmbedder
from edgeinfer.providers.transformers_runtime import TransformersRuntime
from edgeinfer.rag.engine import DocumentInput, RAGEngine
from edgeinfer.rag.models import RAGResponse, SyncResult
from edgeinfer.registry import available_models
from edgeinfer.telemetry import TelemetryBatcher, TelemetryEntry

LOGGER = logging.getLogger(__name__)

SDK_VERSION = "0.3.0"

DEFAULT_MAX_TOKENS = 100
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 0.9
DEFAULT_SEARCH_LIMIT = 20


def strip_prompt(raw_output: str, prompt: str) -> str:
    """Drop the echoed prompt that text-generation pipelines prepend."""

    if raw_output.startswith(prompt):
        return raw_output[len(prompt):].strip()
    return raw_output.strip()


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _fallback_config(fallback: Union[FallbackConfig, Mapping[str, Any], None]) -> Optional[FallbackConfig]:
    if fallback is None or isinstance(fallback, FallbackConfig):
        return fallback
    return FallbackConfig(
        provider=fallback.get("provider") or "openai",
        api_key=fallback["api_key"],
        model=fallback.get("model"),
        region=fallback.get("region"),
        base_url=fallback.get("base_url"),
    )


class EdgeClient:
    """Profile the device, run models locally and augment them with retrieval.

    One instance owns its model handles, telemetry buffer and offline
    indexes. Call :meth:`initialize` before anything that needs the backend,
    and :meth:`destroy` (or use ``async with``) to flush telemetry and close
    HTTP clients.
    """

    def __init__(
        self,
        api_key: str,
        *,
        settings: Optional[Settings] = None,
        runtime: Optional[InferenceRuntime] = None,
        embedder: Optional[EmbeddingRuntime] = None,
        fallback: Union[FallbackConfig, Mapping[str, Any], None] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_event: Optional[EventCallback] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        fallback_transport: Optional[httpx.AsyncBaseTransport] = None,
        identity_store: Optional[DeviceIdentityStore] = None,
    ) -> None:
        self.api_key = api_key
        self.settings = settings or Settings.from_env()
        self._events = EventChannel(on_progress=on_progress, on_event=on_event)
        self._backend = BackendClient(
            self.settings.api_url,
            timeout=self.settings.http_timeout,
            register_timeout=self.settings.register_timeout,
            probe_timeout=self.settings.probe_timeout,
            transport=transport,
        )
        self._identity = identity_store or DeviceIdentityStore(self.settings.device_id_path)
        self._device_id: Optional[str] = None
        self._profile: Optional[DeviceProfile] = None
        self._background: set[asyncio.Task[None]] = set()

        self._runtime = runtime or TransformersRuntime()
        self._loader = ModelLoader(
            self._runtime,
            self._events,
            device=self.settings.device,
            on_outcome=self._on_load_outcome,
        )
        self._telemetry = TelemetryBatcher(
            self._send_telemetry,
            batch_size=self.settings.telemetry_batch_size,
            flush_interval=self.settings.telemetry_flush_interval,
            buffer_limit=self.settings.telemetry_buffer_limit,
            is_ready=lambda: self._backend.authenticated,
            events=self._events,
        )

        config = _fallback_config(fallback)
        self._fallback = (
            CloudFallback(config, timeout=self.settings.http_timeout, transport=fallback_transport)
            if config is not None
            else None
        )
        if embedder is None:
            embedder = SentenceTransformerEmbedder(
                device=None if self.settings.device == "auto" else self.settings.device
            )
        self._rag = RAGEngine(
            backend=self._backend,
            embedder=embedder,
            events=self._events,
            ensure_model=self._ensure_model,
            generate=self.generate,
            embedding_model=self.settings.embedding_model,
        )
        self._translator = ProtocolTranslator(
            generate=self.generate,
            events=self._events,
            fallback=self._fallback,
            rag_query=self.rag_query,
        )

    @classmethod
    def openai_compatible(
        cls,
        api_key: str,
        *,
        api_url: Optional[str] = None,
        fallback: Union[FallbackConfig, Mapping[str, Any], None] = None,
        **kwargs: Any,
    ) -> OpenAICompatibleClient:
        """Build a client exposing ``chat.completions.create`` like the ``openai`` package."""

        settings = kwargs.pop("settings", None) or Settings.from_env()
        if api_url:
            settings = dataclasses.replace(settings, api_url=api_url.rstrip("/"))
        return OpenAICompatibleClient(cls(api_key, settings=settings, fallback=fallback, **kwargs))

    # Accessors

    @property
    def sdk_version(self) -> str:
        return SDK_VERSION

    @property
    def device_id(self) -> str:
        """Persisted device identifier, created on first use."""

        if self._device_id is None:
            self._device_id = self._identity.get_or_create()
        return self._device_id

    @property
    def device_profile(self) -> Optional[DeviceProfile]:
        return self._profile

    @property
    def model_context_window(self) -> Optional[int]:
        loaded = self._loader.last_loaded
        return loaded.context_window if loaded is not None else None

    @property
    def authenticated(self) -> bool:
        return self._backend.authenticated

    @property
    def telemetry(self) -> TelemetryBatcher:
        return self._telemetry

    @property
    def rag(self) -> RAGEngine:
        return self._rag

    @property
    def _memory_mb(self) -> Optional[int]:
        return self._profile.memory_mb if self._profile is not None else None

    # Device

    async def _profile_device(self) -> DeviceProfile:
        started = time.perf_counter()
        profile = await asyncio.to_thread(profile_device)
        self._profile = profile
        emit_device_profile(
            device_id=self.device_id,
            profile=profile.to_dict(),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return profile

    async def analyze_device(self) -> DeviceProfile:
        """Profile the device without touching the network."""

        self._events.progress("profiling", 10, "Analyzing device capabilities...")
        profile = await self._profile_device()
        memory_gb = round(profile.memory_mb / 1024 * 10) / 10
        self._events.progress("profiling", 100, f"Device: {profile.cpu_cores} cores, {memory_gb}GB RAM")
        self._events.emit("device_profiled", profile.to_dict())
        return profile

    async def refresh_latency(self) -> Optional[int]:
        """Re-probe the API round trip; failures leave the profile untouched."""

        latency = await self._backend.measure_latency()
        if latency <= 0:
            return None
        if self._profile is not None:
            self._profile.latency_to_api_ms = latency
        return latency

    def _registration_payload(self, profile: DeviceProfile) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "device_fingerprint": profile.fingerprint,
            "platform": profile.platform,
            "os_version": profile.os,
            "total_memory_mb": profile.memory_mb,
            "cpu_cores": profile.cpu_cores,
            "architecture": profile.architecture,
            "has_gpu": bool(profile.gpu_renderer) or profile.gpu_compute_available,
            "gpu_renderer": profile.gpu_renderer,
            "gpu_vram_mb": profile.gpu_vram_mb,
            "estimated_storage_mb": profile.estimated_storage_mb,
            "screen_width": profile.screen_width,
            "screen_height": profile.screen_height,
            "pixel_ratio": profile.pixel_ratio,
            "browser_name": profile.runtime_name,
            "browser_version": profile.runtime_version,
            "sdk_version": SDK_VERSION,
            "network_type": profile.network_type,
            "latency_to_api_ms": profile.latency_to_api_ms,
            "timezone": profile.timezone,
            "wasm_available": profile.parallel_runtime_available,
            "webgpu_available": profile.gpu_compute_available,
            "recommended_quant": profile.recommended_precision,
            "max_context_window": profile.recommended_context_window,
            "supported_quants": supported_precisions(profile.memory_mb),
            "recommended_tier": recommended_tier(profile.memory_mb, profile.cpu_cores),
        }

    async def initialize(self) -> DeviceProfile:
        """Profile, authenticate, probe latency and register this device."""

        device_id = self.device_id
        self._events.progress("initializing", 0, "Starting edgeinfer...")

        self._events.progress("profiling", 5, "Detecting device capabilities...")
        profile = await self._profile_device()
        self._events.progress("profiling", 20, profile.summary())
        self._events.emit("device_profiled", profile.to_dict())

        self._events.progress("initializing", 40, "Authenticating with API key...")
        try:
            await self._backend.authenticate(self.api_key)
        except AuthenticationError as error:
            self._events.progress("error", 0, f"Authentication failed: {error.__cause__ or error}")
            self._events.error("auth", error)
            log_event(LOGGER, "client.auth.error", level="error", exc=error)
            raise
        self._events.progress("initializing", 60, "Authenticated successfully")
        self._events.emit("auth", {"success": True})

        if self.settings.probe_latency:
            await self.refresh_latency()

        self._events.progress("initializing", 70, "Registering device...")
        try:
            await self._backend.register_device(self._registration_payload(profile))
        except Exception as error:
            log_event(LOGGER, "client.register.skipped", level="warning", exc=error, device_id=device_id)
            self._events.progress("initializing", 90, "Device registration skipped (non-fatal)")
        else:
            self._events.progress("initializing", 90, "Device registered")
            self._events.emit("device_registered", {"device_id": device_id, "fingerprint": profile.fingerprint})

        self._telemetry.start()
        hardware = "GPU detected" if profile.gpu_compute_available else "CPU only"
        self._events.progress(
            "ready", 100, f"v{SDK_VERSION} ready, {profile.recommended_precision.upper()}, {hardware}"
        )
        return profile

    # Planning and registry

    def can_run_model(self, model_id: str, precision: Optional[str] = None) -> Feasibility:
        return can_run_model(self._memory_mb, model_id, precision)

    def recommend_model(self, category: str = "llm") -> Optional[ModelRecommendation]:
        if self._profile is None:
            error = DeviceNotProfiledError("Call analyze_device() first to get a recommendation.")
            self._events.error("profiling", error)
            raise error
        return recommend_model(self._profile.memory_mb, category)

    def available_models(self) -> dict[str, dict[str, list[dict[str, object]]]]:
        return available_models()

    async def search_models(
        self,
        query: str,
        *,
        task: Optional[str] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[dict[str, Any]]:
        """Search the Hugging Face Hub, most downloaded first."""

        def _search() -> list[Any]:
            return list(
                HfApi().list_models(search=query, pipeline_tag=task, sort="downloads", limit=limit)
            )

        try:
            found = await asyncio.to_thread(_search)
        except Exception as error:
            self._events.error("model_search", error)
            raise ModelError(f"Model search failed: {error}", stage="model_search") from error

        return [
            {
                "id": model.id,
                "name": model.id.split("/", 1)[-1],
                "downloads": getattr(model, "downloads", None) or 0,
                "likes": getattr(model, "likes", None) or 0,
                "task": getattr(model, "pipeline_tag", None) or "unknown",
            }
            for model in found
        ]

    # Models

    async def load_model(self, model_id: str, precision: Optional[str] = None) -> LoadedModel:
        return await self._loader.load(model_id, precision=precision, memory_mb=self._memory_mb)

    async def _ensure_model(self, model_id: str) -> LoadedModel:
        return await self._loader.ensure(model_id, memory_mb=self._memory_mb)

    def _wrong_kind(self, model_id: str, stage: str, message: str) -> WrongModelKindError:
        error = WrongModelKindError(message, stage=stage)
        self._events.progress("error", 0, message)
        self._events.error(stage, error, model_id=model_id)
        return error

    async def generate(
        self,
        model_id: str,
        prompt: str,
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        """Run text generation, loading the model on first use."""

        loaded = await self._ensure_model(model_id)
        if loaded.category != "llm":
            raise self._wrong_kind(
                model_id, "inference", f'Model "{model_id}" is not an LLM. Use transcribe() for STT models.'
            )

        limit = min(max_tokens or DEFAULT_MAX_TOKENS, loaded.context_window or DEFAULT_CONTEXT_WINDOW)
        temperature = DEFAULT_TEMPERATURE if temperature is None else temperature
        top_p = DEFAULT_TOP_P if top_p is None else top_p

        self._events.progress("generating", 0, f"Generating response (max {limit} tokens)...")
        self._events.emit("inference_start", {"model_id": model_id, "max_tokens": limit})
        emit_inference_request(
            model_id=model_id,
            prompt_preview=prompt[:120],
            prompt_len=len(prompt),
            max_tokens=limit,
            temperature=temperature,
            top_p=top_p,
        )
        started = time.perf_counter()
        try:
            raw_output = await asyncio.to_thread(
                self._runtime.run_generation,
                loaded.handle,
                prompt,
                max_new_tokens=limit,
                temperature=temperature,
                top_p=top_p,
                do_sample=True,
            )
        except Exception as error:
            self._events.progress("error", 0, f"Generation failed: {error}")
            self._events.error("inference", error, model_id=model_id)
            emit_exception(module=__name__, error=error, stage="inference")
            self._telemetry.record(TelemetryEntry(latency_ms=0, tokens_generated=0, success=False, model_id=model_id))
            self._post_legacy_event(
                {"event_type": "inference", "model_id": model_id, "success": False, "error_message": str(error)}
            )
            raise GenerationError(f"Generation failed: {error}") from error

        answer = strip_prompt(raw_output, prompt)
        latency_ms = _elapsed_ms(started)
        tokens = len(answer.split())
        tokens_per_sec = round(tokens / (latency_ms / 1000), 1) if latency_ms > 0 else float(tokens)

        self._events.progress(
            "ready", 100, f"Generated {tokens} tokens in {latency_ms / 1000:.1f}s ({tokens_per_sec} tok/s)"
        )
        self._events.emit(
            "inference_complete",
            {
                "model_id": model_id,
                "latency_ms": latency_ms,
                "tokens_generated": tokens,
                "tokens_per_sec": tokens_per_sec,
            },
        )
        emit_inference_result(
            model_id=model_id,
            duration_ms=float(latency_ms),
            answer_preview=answer,
            tokens_generated=tokens,
        )
        self._telemetry.record(
            TelemetryEntry(latency_ms=latency_ms, tokens_generated=tokens, success=True, model_id=model_id)
        )
        self._post_legacy_event(
            {
                "event_type": "inference",
                "model_id": model_id,
                "latency_ms": latency_ms,
                "tokens_generated": tokens,
                "success": True,
            }
        )
        return answer

    async def transcribe(
        self,
        model_id: str,
        audio: Any,
        *,
        language: str = "en",
        return_timestamps: bool = False,
    ) -> str:
        loaded = await self._ensure_model(model_id)
        if loaded.category != "stt":
            raise self._wrong_kind(
                model_id,
                "transcription",
                f'Model "{model_id}" is not an STT model. Use generate() for LLMs.',
            )

        self._events.progress("transcribing", 0, "Transcribing audio...")
        self._events.emit("inference_start", {"model_id": model_id, "type": "transcription"})
        started = time.perf_counter()
        try:
            text = await asyncio.to_thread(
                self._runtime.run_transcription,
                loaded.handle,
                audio,
                language=language,
                return_timestamps=return_timestamps,
            )
        except Exception as error:
            self._events.progress("error", 0, f"Transcription failed: {error}")
            self._events.error("transcription", error, model_id=model_id)
            emit_exception(module=__name__, error=error, stage="transcription")
            self._telemetry.record(TelemetryEntry(latency_ms=0, tokens_generated=0, success=False, model_id=model_id))
            self._post_legacy_event(
                {"event_type": "inference", "model_id": model_id, "success": False, "error_message": str(error)}
            )
            raise GenerationError(f"Transcription failed: {error}", stage="transcription") from error

        latency_ms = _elapsed_ms(started)
        self._events.progress("ready", 100, f"Transcribed in {latency_ms / 1000:.1f}s")
        self._telemetry.record(
            TelemetryEntry(latency_ms=latency_ms, tokens_generated=len(text.split()), success=True, model_id=model_id)
        )
        self._events.emit(
            "inference_complete", {"model_id": model_id, "latency_ms": latency_ms, "type": "transcription"}
        )
        self._post_legacy_event(
            {"event_type": "inference", "model_id": model_id, "latency_ms": latency_ms, "success": True}
        )
        return text

    # Telemetry

    def record_telemetry(self, entry: TelemetryEntry) -> None:
        self._telemetry.record(entry)

    async def flush_telemetry(self) -> None:
        await self._telemetry.flush()

    async def _send_telemetry(self, metrics: list[dict[str, Any]]) -> None:
        await self._backend.send_telemetry(self.device_id, metrics)

    def _on_load_outcome(
        self,
        model_id: str,
        success: bool,
        metadata: dict[str, Any],
        error_message: Optional[str],
    ) -> None:
        payload: dict[str, Any] = {"event_type": "model_load", "model_id": model_id, "success": success}
        if success:
            payload["metadata"] = metadata
        else:
            payload["error_message"] = error_message
        self._post_legacy_event(payload)

    def _post_legacy_event(self, payload: dict[str, Any]) -> None:
        """Fire-and-forget per-event telemetry; only sent once authenticated."""

        if not self._backend.authenticated:
            return
        self._spawn(self._send_legacy_event({"device_id": self.device_id, **payload}))

    async def _send_legacy_event(self, payload: dict[str, Any]) -> None:
        try:
            await self._backend.post_event(payload)
        except Exception as error:
            log_event(
                LOGGER,
                "telemetry.legacy.error",
                level="debug",
                exc=error,
                event_type=payload.get("event_type"),
            )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # Retrieval

    async def rag_query(
        self,
        knowledge_base_id: str,
        query: str,
        model_id: str,
        *,
        top_k: int = 5,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> RAGResponse:
        return await self._rag.query(
            knowledge_base_id,
            query,
            model_id,
            top_k=top_k,
            max_tokens=max_tokens,
            temperature=temperature,
            top_p=top_p,
        )

    async def rag_query_local(
        self,
        documents: Sequence[DocumentInput],
        query: str,
        model_id: str,
        *,
        top_k: int = 5,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> RAGResponse:
        return await self._rag.query_local(
            documents,
            query,
            model_id,
            top_k=top_k,
            max_tokens=max_tokens,
            temperature=temperature,
            top_p=top_p,
        )

    async def rag_query_offline(
        self,
        knowledge_base_id: str,
        query: str,
        model_id: str,
        *,
        top_k: int = 5,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> RAGResponse:
        return await self._rag.query_offline(
            knowledge_base_id,
            query,
            model_id,
            top_k=top_k,
            max_tokens=max_tokens,
            temperature=temperature,
            top_p=top_p,
        )

    async def sync_knowledge_base(
        self,
        knowledge_base_id: str,
        device_id: Optional[str] = None,
        *,
        page_size: Optional[int] = None,
    ) -> SyncResult:
        return await self._rag.sync_knowledge_base(
            knowledge_base_id,
            device_id=device_id or self.device_id,
            page_size=page_size,
        )

    # Protocol adapters

    async def chat_completion(
        self,
        model_id: str,
        request: Union[ChatCompletionRequest, Mapping[str, Any]],
        *,
        knowledge_base_id: Optional[str] = None,
    ) -> ChatCompletionResponse:
        return await self._translator.chat_completion(model_id, request, knowledge_base_id=knowledge_base_id)

    async def bedrock_invoke(
        self,
        model_id: str,
        request: Union[BedrockInvokeRequest, Mapping[str, Any]],
    ) -> BedrockInvokeResponse:
        return await self._translator.bedrock_invoke(model_id, request)

    # Teardown

    async def destroy(self) -> None:
        """Flush telemetry, wait for background posts and close HTTP clients."""

        await self._telemetry.close()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if self._fallback is not None:
            await self._fallback.aclose()
        await self._backend.aclose()
        self._loader.clear()

    async def __aenter__(self) -> "EdgeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.destroy()


__all__ = ["DEFAULT_MAX_TOKENS", "EdgeClient", "SDK_VERSION", "strip_prompt"]
