import pytest

from edgeinfer.rag.similarity import cosine_similarity, rank_by_similarity


def test_cosine_similarity_basics():
    assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)


def test_zero_vector_scores_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0


def test_dimension_mismatch_raises():
    with pytest.raises(ValueError):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


def test_rank_orders_and_limits():
    items = [
        {"id": "far", "vector": [0.0, 1.0]},
        {"id": "near", "vector": [1.0, 0.1]},
        {"id": "middle", "vector": [1.0, 1.0]},
    ]

    ranked = rank_by_similarity([1.0, 0.0], items, lambda item: item["vector"], top_k=2)

    assert [item["id"] for item, _ in ranked] == ["near", "middle"]
    assert ranked[0][1] > ranked[1][1]


def test_rank_skips_missing_and_mismatched_embeddings():
    items = [
        {"id": "none", "vector": None},
        {"id": "short", "vector": [1.0]},
        {"id": "ok", "vector": [0.5, 0.5]},
    ]

    ranked = rank_by_similarity([1.0, 0.0], items, lambda item: item["vector"], top_k=5)

    assert [item["id"] for item, _ in ranked] == ["ok"]


def test_rank_with_non_positive_top_k():
    assert rank_by_similarity([1.0], [[1.0]], lambda item: item, top_k=0) == []


def test_self_similarity_and_symmetry():
    a = [0.3, -1.2, 4.0, 0.5]
    b = [1.0, 0.2, -0.7, 2.2]

    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
