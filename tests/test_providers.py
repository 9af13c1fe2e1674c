"""Tests for runtime implementations that do not need model downloads."""
from __future__ import annotations

import numpy as np
import pytest

from edgeinfer.providers import (
    MockEmbeddingRuntime,
    MockInferenceRuntime,
    SentenceTransformerEmbedder,
    TransformersRuntime,
)
from edgeinfer.providers import transformers_runtime
from edgeinfer.providers.transformers_runtime import _progress_tqdm


def test_mock_embedding_runtime_is_deterministic() -> None:
    runtime = MockEmbeddingRuntime(dimension=5)

    vectors = runtime.embed_texts(["hello", "world"])

    assert len(vectors) == 2
    assert all(len(vector) == 5 for vector in vectors)
    assert vectors == runtime.embed_texts(["hello", "world"])
    assert vectors[0] != vectors[1]


def test_mock_embedding_runtime_rejects_bad_dimension() -> None:
    with pytest.raises(ValueError):
        MockEmbeddingRuntime(dimension=0)


def test_mock_inference_runtime_echoes_prompt() -> None:
    runtime = MockInferenceRuntime()
    handle = runtime.load("text-generation", "org/model", device="cpu", dtype="q4")
    prompt = "x" * 150

    output = runtime.run_generation(handle, prompt, max_new_tokens=10, temperature=0.5, top_p=0.9)

    assert output == f"{prompt} MOCK_ANSWER: {prompt[:100]}"
    assert runtime.prompts == [prompt]
    assert handle.dtype == "q4"


def test_progress_tqdm_forwards_byte_counts() -> None:
    updates = []
    bar_class = _progress_tqdm(updates.append, "org/model")

    bar = bar_class(total=200, unit="B")
    bar.update(50)
    bar.update(150)
    bar.close()

    assert [update["progress"] for update in updates] == [25.0, 100.0]
    assert updates[-1]["loaded"] == 200
    assert updates[-1]["total"] == 200
    assert updates[0]["file"] == "org/model"


def test_progress_tqdm_sums_byte_bars_and_ignores_file_count() -> None:
    updates = []
    bar_class = _progress_tqdm(updates.append, "org/model")

    files = bar_class(total=2, desc="Fetching 2 files")
    files.update(1)
    unsized = bar_class(total=0, unit="B", desc="stream.bin")
    unsized.update(10)
    weights = bar_class(total=300, unit="B", desc="model.bin")
    weights.update(100)
    config = bar_class(total=100, unit="B", desc="config.json")
    config.update(100)
    files.update(1)
    weights.update(200)

    assert [update["progress"] for update in updates] == [50.0, pytest.approx(100 / 3), 50.0, 100.0]
    assert [update.get("total") for update in updates] == [None, 300, 400, 400]
    assert [update["file"] for update in updates] == ["org/model", "model.bin", "config.json", "model.bin"]
    assert updates[-1]["loaded"] == 400


def test_transformers_download_reports_initiate_and_done(monkeypatch, tmp_path) -> None:
    calls = {}

    def fake_snapshot_download(model_ref, *, cache_dir=None, tqdm_class=None):
        calls["model_ref"] = model_ref
        calls["tqdm_class"] = tqdm_class
        return str(tmp_path)

    monkeypatch.setattr(transformers_runtime, "snapshot_download", fake_snapshot_download)
    statuses = []
    runtime = TransformersRuntime()

    path = runtime._download("org/model", lambda data: statuses.append(data["status"]))

    assert path == str(tmp_path)
    assert calls["model_ref"] == "org/model"
    assert calls["tqdm_class"] is not None
    assert statuses == ["initiate", "done"]


def test_transformers_generation_unwraps_pipeline_output() -> None:
    runtime = TransformersRuntime()
    seen = {}

    def fake_pipeline(prompt, **kwargs):
        seen.update(kwargs)
        return [{"generated_text": prompt + " answer"}]

    output = runtime.run_generation(fake_pipeline, "Q:", max_new_tokens=8, temperature=0.1, top_p=0.5)

    assert output == "Q: answer"
    assert seen == {"max_new_tokens": 8, "temperature": 0.1, "top_p": 0.5, "do_sample": True}


def test_transformers_transcription_passes_language() -> None:
    runtime = TransformersRuntime()
    seen = {}

    def fake_pipeline(audio, **kwargs):
        seen.update(kwargs)
        return {"text": "hallo"}

    assert runtime.run_transcription(fake_pipeline, [0.0], language="de") == "hallo"
    assert seen == {"return_timestamps": False, "generate_kwargs": {"language": "de"}}


class _FakeSentenceModel:
    def __init__(self) -> None:
        self.calls = []

    def encode(self, texts, **kwargs):
        self.calls.append((texts, kwargs))
        return np.ones((len(texts), 3), dtype=np.float32)

    def get_sentence_embedding_dimension(self) -> int:
        return 3


def test_sentence_transformer_embedder_normalises_and_lists() -> None:
    embedder = SentenceTransformerEmbedder()
    model = _FakeSentenceModel()
    embedder._model = model

    vectors = embedder.embed_texts(["a", "b"])

    assert vectors == [[1.0, 1.0, 1.0], [1.0, 1.0, 1.0]]
    assert model.calls[0][1]["normalize_embeddings"] is True
    assert embedder.dimension == 3
    assert embedder.embed_texts([]) == []


def test_sentence_transformer_embedder_requires_load() -> None:
    with pytest.raises(RuntimeError, match="not loaded"):
        SentenceTransformerEmbedder().embed_texts(["a"])
