"""Hugging Face ``transformers`` pipelines as the on-device inference runtime."""

from __future__ import annotations

import importlib.util
import logging
import threading
import time
from typing import Any, Optional

from huggingface_hub import snapshot_download
from tqdm.auto import tqdm

from edgeinfer.observability import emit_exception, log_event
from edgeinfer.providers.base import DownloadProgressCallback, InferenceRuntime

LOGGER = logging.getLogger(__name__)

_CONTEXT_ATTRIBUTES = ("max_position_embeddings", "n_positions", "max_seq_len", "model_max_length")
# Tokenizers report this sentinel when no real limit is configured.
_UNBOUNDED_LENGTH = int(1e20)


def _resolve_device(want: str) -> str:
    import torch

    want = (want or "cpu").strip().lower()
    if want == "cpu":
        return "cpu"
    if want in {"cuda", "gpu"}:
        return "cuda" if torch.cuda.is_available() else "cpu"
    mps = getattr(torch.backends, "mps", None)
    if want == "mps":
        return "mps" if mps is not None and mps.is_available() else "cpu"
    if torch.cuda.is_available():
        return "cuda"
    if mps is not None and mps.is_available():
        return "mps"
    return "cpu"


class _DownloadProgress:
    """Fold every bar ``snapshot_download`` opens into one progress stream.

    Byte bars are summed across files. The file-count bar only reports
    until the first byte bar appears.
    """

    def __init__(self, callback: DownloadProgressCallback, model_ref: str) -> None:
        self._callback = callback
        self._model_ref = model_ref
        self._lock = threading.Lock()
        self._byte_bars: dict[int, tuple[float, float]] = {}

    def update(self, bar_id: int, unit: str, desc: Optional[str], done: float, total: float) -> None:
        with self._lock:
            if unit == "B":
                self._byte_bars[bar_id] = (done, total)
                sized = [(loaded, size) for loaded, size in self._byte_bars.values() if size > 0]
                if not sized:
                    return
                loaded = sum(item[0] for item in sized)
                size = sum(item[1] for item in sized)
                payload = {
                    "status": "progress",
                    "file": desc or self._model_ref,
                    "progress": min(100.0, loaded / size * 100.0),
                    "loaded": int(loaded),
                    "total": int(size),
                }
            elif self._byte_bars or total <= 0:
                return
            else:
                payload = {
                    "status": "progress",
                    "file": self._model_ref,
                    "progress": min(100.0, done / total * 100.0),
                }
        self._callback(payload)


def _progress_tqdm(callback: DownloadProgressCallback, model_ref: str) -> type:
    """Build a ``tqdm`` subclass whose bars all feed one ``_DownloadProgress``."""

    progress = _DownloadProgress(callback, model_ref)

    class _CallbackTqdm(tqdm):
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            # Newer hub releases pass a logger name that plain tqdm rejects.
            kwargs.pop("name", None)
            kwargs["disable"] = True
            super().__init__(*args, **kwargs)
            # A disabled bar skips most of tqdm's setup and stops counting.
            self._unit = kwargs.get("unit", "it")
            self._desc = kwargs.get("desc")
            self._done = float(kwargs.get("initial") or 0)

        def update(self, n: float | None = 1) -> bool | None:
            result = super().update(n)
            self._done += n or 0
            progress.update(id(self), self._unit, self._desc, self._done, float(self.total or 0))
            return result

    return _CallbackTqdm


class TransformersRuntime(InferenceRuntime):
    """Download with ``snapshot_download`` then build a ``transformers.pipeline``."""

    name = "transformers"

    def __init__(self, *, cache_dir: Optional[str] = None) -> None:
        self._cache_dir = cache_dir

    def _download(self, model_ref: str, progress_callback: Optional[DownloadProgressCallback]) -> str:
        if progress_callback is None:
            return snapshot_download(model_ref, cache_dir=self._cache_dir)
        progress_callback({"status": "initiate", "file": model_ref})
        path = snapshot_download(
            model_ref,
            cache_dir=self._cache_dir,
            tqdm_class=_progress_tqdm(progress_callback, model_ref),
        )
        progress_callback({"status": "done", "file": model_ref})
        return path

    def _model_kwargs(self, dtype: str, device: str) -> dict[str, Any]:
        import torch

        if dtype == "fp32":
            return {"torch_dtype": torch.float32}
        if dtype == "fp16":
            return {"torch_dtype": torch.float16 if device != "cpu" else torch.float32}

        if device == "cuda" and importlib.util.find_spec("bitsandbytes") is not None:
            from transformers import BitsAndBytesConfig

            quantization = (
                BitsAndBytesConfig(load_in_4bit=True, bnb_4bit_compute_dtype=torch.float16)
                if dtype == "q4"
                else BitsAndBytesConfig(load_in_8bit=True)
            )
            return {"model_kwargs": {"quantization_config": quantization}}

        log_event(
            LOGGER,
            "runtime.quantization.unavailable",
            level="warning",
            dtype=dtype,
            device=device,
            details={"fallback_dtype": "float32"},
        )
        return {"torch_dtype": torch.float32}

    def load(
        self,
        task: str,
        model_ref: str,
        *,
        device: str,
        dtype: str,
        progress_callback: Optional[DownloadProgressCallback] = None,
    ) -> Any:
        from transformers import pipeline

        resolved_device = _resolve_device(device)
        started = time.perf_counter()
        local_path = self._download(model_ref, progress_callback)
        kwargs = self._model_kwargs(dtype, resolved_device)
        if "model_kwargs" not in kwargs:
            kwargs["device"] = resolved_device
        try:
            handle = pipeline(task, model=local_path, **kwargs)
        except Exception as error:
            emit_exception(module=__name__, error=error, stage="model_load")
            raise
        log_event(
            LOGGER,
            "runtime.pipeline.ready",
            duration_ms=(time.perf_counter() - started) * 1000.0,
            details={"task": task, "model_ref": model_ref, "device": resolved_device, "dtype": dtype},
        )
        return handle

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
        result = handle(
            prompt,
            max_new_tokens=max_new_tokens,
            temperature=temperature,
            top_p=top_p,
            do_sample=do_sample,
        )
        if isinstance(result, list) and result:
            result = result[0]
        if isinstance(result, dict):
            return str(result.get("generated_text", ""))
        return str(result)

    def run_transcription(
        self,
        handle: Any,
        audio: Any,
        *,
        language: str,
        return_timestamps: bool = False,
    ) -> str:
        result = handle(
            audio,
            return_timestamps=return_timestamps,
            generate_kwargs={"language": language},
        )
        if isinstance(result, dict):
            return str(result.get("text", ""))
        return str(result)

    def detect_context_window(self, model_ref: str) -> Optional[int]:
        from transformers import AutoConfig

        try:
            config = AutoConfig.from_pretrained(model_ref, cache_dir=self._cache_dir)
        except (OSError, ValueError) as error:
            log_event(LOGGER, "runtime.config.unavailable", level="warning", model_ref=model_ref, exc=str(error))
            return None
        for attribute in _CONTEXT_ATTRIBUTES:
            value = getattr(config, attribute, None)
            if isinstance(value, int) and 0 < value < _UNBOUNDED_LENGTH:
                return value
        return None


__all__ = ["TransformersRuntime"]
