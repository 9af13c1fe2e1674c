import asyncio

import pytest

from edgeinfer.errors import InsufficientMemoryError, RuntimeLoadError, UnknownModelError
from edgeinfer.events import EventChannel
from edgeinfer.loader import DownloadProgressTracker, ModelLoader
from edgeinfer.providers import MockInferenceRuntime
from edgeinfer.registry import SPEECH_RECOGNITION


class _Recorder:
    def __init__(self) -> None:
        self.progress = []
        self.events = []
        self.channel = EventChannel(on_progress=self.progress.append, on_event=self.events.append)

    def of_type(self, event_type):
        return [event.data for event in self.events if event.type == event_type]


@pytest.fixture
def recorder():
    return _Recorder()


@pytest.mark.anyio
async def test_load_reports_monotonic_deduplicated_progress(recorder):
    runtime = MockInferenceRuntime(progress_steps=(0.0, 50.0, 50.0, 100.0))
    loader = ModelLoader(runtime, recorder.channel)

    loaded = await loader.load("quantum-1.7b", memory_mb=8192)

    downloads = [event for event in recorder.progress if event.stage == "downloading"]
    percents = [event.progress for event in downloads]
    assert percents == sorted(percents)
    assert len(recorder.of_type("model_download_progress")) == 4
    assert [data["percent"] for data in recorder.of_type("model_download_progress")] == [0, 50, 100, 100]
    assert downloads[0].message == "Auto-selected Q4 quantization for your device"
    assert downloads[1].message == "Downloading quantum-1.7b (Q4, ~900MB)..."
    assert recorder.progress[-1].stage == "ready"
    assert recorder.progress[-1].message.startswith("quantum-1.7b loaded (Q4, ")
    assert loaded.precision == "q4"
    assert loaded.context_window == 2048
    assert loaded.category == "llm"
    assert recorder.of_type("model_loaded")[0]["context_window"] == 2048


@pytest.mark.anyio
async def test_model_is_loaded_once(recorder):
    runtime = MockInferenceRuntime()
    loader = ModelLoader(runtime, recorder.channel)

    first, second = await asyncio.gather(
        loader.load("quantum-1.7b", memory_mb=8192),
        loader.load("quantum-1.7b", memory_mb=8192),
    )
    third = await loader.ensure("quantum-1.7b")

    assert first is second is third
    assert len(runtime.loads) == 1
    assert loader.last_loaded is first
    assert loader.loaded_ids() == ["quantum-1.7b"]


@pytest.mark.anyio
async def test_insufficient_memory_fails_before_runtime(recorder):
    runtime = MockInferenceRuntime()
    loader = ModelLoader(runtime, recorder.channel)

    with pytest.raises(InsufficientMemoryError) as excinfo:
        await loader.load("quantum-8b", memory_mb=4096)

    assert runtime.loads == []
    assert excinfo.value.recommended_precision == "q4"
    assert excinfo.value.stage == "model_load"
    assert recorder.of_type("error")[0]["stage"] == "model_load"
    assert recorder.progress[-1].stage == "error"


@pytest.mark.anyio
async def test_explicit_precision_above_memory_is_rejected(recorder):
    loader = ModelLoader(MockInferenceRuntime(), recorder.channel)

    with pytest.raises(InsufficientMemoryError, match="Not enough RAM for FP32"):
        await loader.load("quantum-1.7b", precision="fp32", memory_mb=4096)


@pytest.mark.anyio
async def test_unsupported_precision_reports_error_event(recorder):
    runtime = MockInferenceRuntime()
    loader = ModelLoader(runtime, recorder.channel)

    with pytest.raises(ValueError, match="Unsupported precision: 'int2'"):
        await loader.load("quantum-1.7b", precision="int2", memory_mb=8192)

    assert recorder.of_type("error") == [
        {"stage": "model_load", "error": "Unsupported precision: 'int2'", "model_id": "quantum-1.7b"}
    ]
    assert recorder.progress[-1].stage == "error"
    assert runtime.loads == []


@pytest.mark.anyio
async def test_unknown_model_lists_registry(recorder):
    loader = ModelLoader(MockInferenceRuntime(), recorder.channel)

    with pytest.raises(UnknownModelError, match='Unknown model "mystery". Available: quantum-1.7b'):
        await loader.load("mystery")


@pytest.mark.anyio
async def test_hub_reference_loads_with_detected_context(recorder):
    runtime = MockInferenceRuntime(context_window=4096)
    loader = ModelLoader(runtime, recorder.channel)

    loaded = await loader.load("acme/tiny-llm")

    assert loaded.model_ref == "acme/tiny-llm"
    assert loaded.precision == "q4"
    assert loaded.context_window == 4096
    assert loaded.info is None
    assert recorder.of_type("model_download_start")[0]["custom"] is True


@pytest.mark.anyio
async def test_hub_reference_without_detected_context_uses_default(recorder):
    loader = ModelLoader(MockInferenceRuntime(context_window=None), recorder.channel)

    loaded = await loader.load("acme/tiny-llm")

    assert loaded.context_window == 2048


@pytest.mark.anyio
async def test_speech_model_precision_and_task(recorder):
    runtime = MockInferenceRuntime()
    loader = ModelLoader(runtime, recorder.channel)

    loaded = await loader.load("voicecore-base", memory_mb=8192)

    assert loaded.precision == "fp16"
    assert loaded.task == SPEECH_RECOGNITION
    assert loaded.category == "stt"
    assert runtime.loads[0].dtype == "fp16"


@pytest.mark.anyio
async def test_runtime_failure_reports_outcome(recorder):
    outcomes = []
    loader = ModelLoader(
        MockInferenceRuntime(fail_load=True),
        recorder.channel,
        on_outcome=lambda *args: outcomes.append(args),
    )

    with pytest.raises(RuntimeLoadError, match="Failed to load quantum-1.7b"):
        await loader.load("quantum-1.7b", memory_mb=8192)

    assert loader.get("quantum-1.7b") is None
    assert outcomes[0][0] == "quantum-1.7b"
    assert outcomes[0][1] is False
    assert "mock load failure" in outcomes[0][3]


@pytest.mark.anyio
async def test_failing_outcome_hook_does_not_break_load(recorder):
    def _boom(*_args):
        raise RuntimeError("hook exploded")

    loader = ModelLoader(MockInferenceRuntime(), recorder.channel, on_outcome=_boom)

    loaded = await loader.load("quantum-1.7b")

    assert loaded.model_id == "quantum-1.7b"


def test_tracker_formats_byte_counts(recorder):
    tracker = DownloadProgressTracker("quantum-1.7b", recorder.channel)

    tracker({"status": "progress", "progress": 25, "loaded": 25 * 1024 * 1024, "total": 100 * 1024 * 1024})
    tracker({"status": "progress", "progress": 10})

    assert [event.message for event in recorder.progress] == ["Downloading: 25 MB / 100 MB"]
    assert recorder.progress[0].progress == 25
