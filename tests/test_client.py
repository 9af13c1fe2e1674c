import inspect
from types import SimpleNamespace

import httpx
import pytest
from huggingface_hub import HfApi

from edgeinfer import client as client_module
from edgeinfer.device import DeviceIdentityStore
from edgeinfer.errors import (
    AuthenticationError,
    DeviceNotProfiledError,
    GenerationError,
    ModelError,
    WrongModelKindError,
)
from edgeinfer.protocols import OpenAICompatibleClient
from edgeinfer.providers import MockEmbeddingRuntime, MockInferenceRuntime


@pytest.fixture(autouse=True)
def fixed_profile(monkeypatch, make_profile):
    profile = make_profile(memory_mb=8192, cpu_cores=8)
    monkeypatch.setattr(client_module, "profile_device", lambda: profile)
    return profile


class _Events:
    def __init__(self) -> None:
        self.progress = []
        self.events = []

    def of_type(self, event_type):
        return [event.data for event in self.events if event.type == event_type]


@pytest.fixture
def recorded(make_client):
    events = _Events()

    def _build(**kwargs):
        return make_client(on_progress=events.progress.append, on_event=events.events.append, **kwargs)

    return events, _build


def test_strip_prompt_removes_echo():
    assert client_module.strip_prompt("Q: hi A: hello", "Q: hi") == "A: hello"
    assert client_module.strip_prompt("  unrelated  ", "Q: hi") == "unrelated"


@pytest.mark.anyio
async def test_initialize_reports_milestones_and_registers(recorded, fake_backend, fixed_profile):
    events, build = recorded
    client = build()

    profile = await client.initialize()

    assert profile is fixed_profile
    assert client.authenticated is True
    assert [(event.stage, event.progress) for event in events.progress] == [
        ("initializing", 0),
        ("profiling", 5),
        ("profiling", 20),
        ("initializing", 40),
        ("initializing", 60),
        ("initializing", 70),
        ("initializing", 90),
        ("ready", 100),
    ]
    assert events.progress[2].message == "Detected: 8 CPU cores, 8.0GB RAM"
    assert events.progress[-1].message == "v0.3.0 ready, Q4, CPU only"
    assert [event.type for event in events.events] == ["device_profiled", "auth", "device_registered"]

    registration = fake_backend.bodies("/api/devices/register")[0]
    assert registration["device_id"] == client.device_id
    assert registration["device_fingerprint"] == "f" * 32
    assert registration["total_memory_mb"] == 8192
    assert registration["estimated_storage_mb"] == 50000
    assert registration["architecture"] == "x86_64"
    assert registration["supported_quants"] == ["q4", "q8", "fp16"]
    assert registration["recommended_tier"] == 2
    assert registration["sdk_version"] == "0.3.0"
    assert client.telemetry.timer_armed is True
    await client.destroy()


@pytest.mark.anyio
async def test_registration_failure_is_not_fatal(recorded, fake_backend):
    fake_backend.route("POST", "/api/devices/register", {"error": "db down"}, status=500)
    events, build = recorded
    client = build()

    await client.initialize()

    assert "Device registration skipped (non-fatal)" in [event.message for event in events.progress]
    assert events.of_type("device_registered") == []
    assert events.progress[-1].stage == "ready"
    await client.destroy()


@pytest.mark.anyio
async def test_authentication_failure_stops_initialize(recorded, fake_backend):
    fake_backend.route("POST", "/api/auth/sdk", {"error": "Invalid API key"}, status=401)
    events, build = recorded
    client = build()

    with pytest.raises(AuthenticationError, match="Invalid API key"):
        await client.initialize()

    assert events.progress[-1].stage == "error"
    assert events.progress[-1].message.startswith("Authentication failed: ")
    assert events.of_type("error")[-1]["stage"] == "auth"
    assert fake_backend.calls("/api/devices/register") == []
    await client.destroy()


@pytest.mark.anyio
async def test_analyze_device_stays_offline(recorded, fake_backend):
    events, build = recorded
    client = build()

    profile = await client.analyze_device()

    assert client.device_profile is profile
    assert fake_backend.requests == []
    assert events.progress[-1].message == "Device: 8 cores, 8.0GB RAM"
    await client.destroy()


@pytest.mark.anyio
async def test_recommendation_needs_profile(make_client):
    client = make_client()

    with pytest.raises(DeviceNotProfiledError):
        client.recommend_model()
    assert client.can_run_model("quantum-8b").can_run is True

    await client.analyze_device()

    assert client.recommend_model().model_id == "quantum-8b"
    assert client.can_run_model("quantum-8b", "fp16").can_run is False
    await client.destroy()


@pytest.mark.anyio
async def test_recommendation_without_profile_emits_error_event(recorded):
    events, build = recorded
    client = build()

    with pytest.raises(DeviceNotProfiledError) as excinfo:
        client.recommend_model()

    assert events.of_type("error") == [{"stage": "profiling", "error": str(excinfo.value)}]
    await client.destroy()


@pytest.mark.anyio
async def test_generate_strips_prompt_and_records_telemetry(make_client):
    runtime = MockInferenceRuntime()
    client = make_client(runtime=runtime)

    answer = await client.generate("quantum-1.7b", "Hello world")

    assert answer == "MOCK_ANSWER: Hello world"
    assert runtime.generation_kwargs == [
        {"max_new_tokens": 100, "temperature": 0.7, "top_p": 0.9, "do_sample": True}
    ]
    assert client.model_context_window == 2048
    [entry] = client.telemetry.buffer
    assert entry.success is True
    assert entry.tokens_generated == 3
    assert entry.model_id == "quantum-1.7b"
    await client.destroy()


@pytest.mark.anyio
async def test_generate_clamps_to_context_and_keeps_zero_temperature(make_client, monkeypatch, make_profile):
    monkeypatch.setattr(client_module, "profile_device", lambda: make_profile(memory_mb=2048))
    runtime = MockInferenceRuntime()
    client = make_client(runtime=runtime)
    await client.analyze_device()

    await client.generate("quantum-1.7b", "Hi", max_tokens=4096, temperature=0.0)

    assert runtime.generation_kwargs[0]["max_new_tokens"] == 512
    assert runtime.generation_kwargs[0]["temperature"] == 0.0
    await client.destroy()


@pytest.mark.anyio
async def test_generation_failure_is_reported(recorded):
    events, build = recorded
    client = build(runtime=MockInferenceRuntime(fail_generation=True))

    with pytest.raises(GenerationError, match="Generation failed: mock generation failure") as excinfo:
        await client.generate("quantum-1.7b", "Hello")

    assert excinfo.value.stage == "inference"
    assert events.of_type("error")[-1]["stage"] == "inference"
    assert client.telemetry.buffer[-1].success is False
    await client.destroy()


@pytest.mark.anyio
async def test_models_are_used_for_their_own_kind(make_client):
    client = make_client()

    with pytest.raises(WrongModelKindError, match="is not an LLM"):
        await client.generate("voicecore-base", "Hello")
    with pytest.raises(WrongModelKindError, match="is not an STT model") as excinfo:
        await client.transcribe("quantum-1.7b", [0.0] * 10)

    assert excinfo.value.stage == "transcription"
    assert await client.transcribe("voicecore-base", [0.0] * 16000, language="de") == (
        "MOCK_TRANSCRIPT[de]: 16000 samples"
    )
    await client.destroy()


@pytest.mark.anyio
async def test_transcription_records_telemetry(make_client):
    client = make_client()

    await client.transcribe("voicecore-base", [0.0] * 16000, language="de")

    entry = client.telemetry.buffer[-1]
    assert (entry.model_id, entry.success, entry.tokens_generated) == ("voicecore-base", True, 3)

    failing = make_client(runtime=MockInferenceRuntime(fail_generation=True))
    with pytest.raises(GenerationError, match="Transcription failed"):
        await failing.transcribe("voicecore-base", [0.0] * 16000)

    assert failing.telemetry.buffer[-1].success is False
    await client.destroy()
    await failing.destroy()


@pytest.mark.anyio
async def test_authenticated_client_posts_events_and_flushes_on_destroy(make_client, fake_backend):
    client = make_client()
    await client.initialize()

    await client.generate("quantum-1.7b", "Hello world")
    await client.destroy()

    legacy = fake_backend.bodies("/api/telemetry")
    assert {body["event_type"] for body in legacy} == {"model_load", "inference"}
    assert all(body["device_id"] == client.device_id for body in legacy)
    [batch] = fake_backend.bodies("/api/devices/telemetry")
    assert batch["device_id"] == client.device_id
    assert batch["metrics"][0]["tokens_generated"] == 3


@pytest.mark.anyio
async def test_local_rag_through_client(make_client, fake_backend):
    client = make_client()

    result = await client.rag_query_local(
        ["Edge devices run small language models locally."],
        "Where do models run?",
        "quantum-1.7b",
    )

    assert result.tier_used == 1
    assert result.generated_response.startswith("MOCK_ANSWER: You are a helpful assistant.")
    assert fake_backend.requests == []
    await client.destroy()


@pytest.mark.anyio
async def test_openai_compatible_surface(make_client):
    async with OpenAICompatibleClient(make_client()) as compat:
        response = await compat.chat.completions.create(
            model="quantum-1.7b",
            messages=[{"role": "user", "content": "Hi"}],
            max_tokens=10,
        )

    assert response.content == "MOCK_ANSWER: User: Hi"
    assert response.usage.prompt_tokens == 2


@pytest.mark.anyio
async def test_openai_compatible_leaves_caller_settings_untouched(settings, tmp_path):
    compat = client_module.EdgeClient.openai_compatible(
        "sk-test",
        api_url="https://other.test/",
        settings=settings,
        runtime=MockInferenceRuntime(),
        embedder=MockEmbeddingRuntime(dimension=16),
        identity_store=DeviceIdentityStore(tmp_path / "device-id"),
    )

    assert compat.client.settings.api_url == "https://other.test"
    assert settings.api_url == "https://api.test"
    await compat.close()


@pytest.mark.anyio
async def test_cloud_fallback_through_client(make_client):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-9",
                "created": 1,
                "model": "gpt-4o-mini",
                "choices": [{"index": 0, "message": {"role": "assistant", "content": "from cloud"}}],
            },
        )

    client = make_client(
        runtime=MockInferenceRuntime(fail_generation=True),
        fallback={"api_key": "sk-openai"},
        fallback_transport=httpx.MockTransport(handler),
    )

    response = await client.chat_completion("quantum-1.7b", {"messages": [{"role": "user", "content": "Hi"}]})

    assert response.content == "from cloud"
    await client.destroy()


@pytest.mark.anyio
async def test_search_models_shapes_hub_results(make_client, monkeypatch):
    captured = {}

    class _FakeApi:
        def list_models(self, **kwargs):
            # Rejects keywords the installed hub client does not accept.
            inspect.signature(HfApi.list_models).bind(self, **kwargs)
            captured.update(kwargs)
            return [
                SimpleNamespace(id="org/tiny-chat", downloads=42, likes=3, pipeline_tag="text-generation"),
                SimpleNamespace(id="solo-model", downloads=None, likes=None, pipeline_tag=None),
            ]

    monkeypatch.setattr(client_module, "HfApi", _FakeApi)
    client = make_client()

    results = await client.search_models("chat", task="text-generation", limit=5)

    assert captured == {
        "search": "chat",
        "pipeline_tag": "text-generation",
        "sort": "downloads",
        "limit": 5,
    }
    assert results == [
        {"id": "org/tiny-chat", "name": "tiny-chat", "downloads": 42, "likes": 3, "task": "text-generation"},
        {"id": "solo-model", "name": "solo-model", "downloads": 0, "likes": 0, "task": "unknown"},
    ]
    await client.destroy()


@pytest.mark.anyio
async def test_search_models_wraps_hub_errors(make_client, monkeypatch):
    class _BrokenApi:
        def list_models(self, **kwargs):
            raise ConnectionError("hub unreachable")

    monkeypatch.setattr(client_module, "HfApi", _BrokenApi)
    client = make_client()

    with pytest.raises(ModelError, match="Model search failed: hub unreachable") as excinfo:
        await client.search_models("chat")

    assert excinfo.value.stage == "model_search"
    await client.destroy()


@pytest.mark.anyio
async def test_failing_progress_callback_is_ignored(make_client):
    def _explode(event):
        raise ValueError("host bug")

    client = make_client(on_progress=_explode)

    assert await client.generate("quantum-1.7b", "Hi") == "MOCK_ANSWER: Hi"
    await client.destroy()
