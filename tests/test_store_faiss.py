"""Tests for the FAISS vector store."""
import json

import pytest

from conftest import DIMENSION
from knowledge_base.errors import DataIntegrityError
from knowledge_base.rag.store_faiss import FAISSVectorStore


@pytest.mark.asyncio
async def test_search_returns_nearest_first(vector_store):
    await vector_store.add_vectors(
        [[1, 0, 0, 0], [0, 1, 0, 0], [1, 1, 0, 0]],
        [10, 20, 30],
    )

    ids, distances = await vector_store.search([1, 0, 0, 0], top_k=3)

    assert ids == [10, 30, 20]
    assert distances[0] == pytest.approx(0.0, abs=1e-6)
    assert distances == sorted(distances)


@pytest.mark.asyncio
async def test_distances_ignore_vector_magnitude(vector_store):
    await vector_store.add_vectors([[5, 0, 0, 0]], [1])

    ids, distances = await vector_store.search([0.1, 0, 0, 0], top_k=1)

    assert ids == [1]
    assert distances[0] == pytest.approx(0.0, abs=1e-6)


@pytest.mark.asyncio
async def test_top_k_is_clamped_to_vector_count(vector_store):
    await vector_store.add_vectors([[1, 0, 0, 0], [0, 1, 0, 0]], [1, 2])

    ids, distances = await vector_store.search([1, 0, 0, 0], top_k=10)

    assert sorted(ids) == [1, 2]
    assert len(distances) == 2


@pytest.mark.asyncio
async def test_empty_index_search_returns_nothing(vector_store):
    assert await vector_store.search([1, 0, 0, 0], top_k=5) == ([], [])


@pytest.mark.asyncio
async def test_remove_vectors(vector_store):
    await vector_store.add_vectors([[1, 0, 0, 0], [0, 1, 0, 0]], [1, 2])

    removed = await vector_store.remove_vectors([1, 99])

    assert removed == 1
    assert vector_store.vector_count == 1
    ids, _ = await vector_store.search([1, 0, 0, 0], top_k=5)
    assert ids == [2]


@pytest.mark.asyncio
async def test_wrong_dimension_is_rejected(vector_store):
    with pytest.raises(DataIntegrityError):
        await vector_store.add_vectors([[1, 0]], [1])

    with pytest.raises(DataIntegrityError):
        await vector_store.search([1, 0, 0], top_k=1)


@pytest.mark.asyncio
async def test_ragged_embeddings_are_rejected(vector_store):
    with pytest.raises(DataIntegrityError):
        await vector_store.add_vectors([[1, 0, 0, 0], [1, 0]], [1, 2])


@pytest.mark.asyncio
async def test_id_count_must_match(vector_store):
    with pytest.raises(ValueError):
        await vector_store.add_vectors([[1, 0, 0, 0]], [1, 2])


@pytest.mark.asyncio
async def test_save_and_load_round_trip(tmp_path, vector_store):
    await vector_store.add_vectors([[0, 0, 1, 0]], [7])
    await vector_store.save_index()

    metadata = json.loads(vector_store.metadata_path.read_text())
    assert metadata["vector_count"] == 1
    assert metadata["embedding_dimension"] == DIMENSION

    reloaded = FAISSVectorStore(index_dir=tmp_path / "index", dimension=DIMENSION)
    await reloaded.init_or_load()

    assert reloaded.vector_count == 1
    ids, _ = await reloaded.search([0, 0, 1, 0], top_k=1)
    assert ids == [7]


@pytest.mark.asyncio
async def test_load_rejects_dimension_change(tmp_path, vector_store):
    await vector_store.save_index()

    other = FAISSVectorStore(index_dir=tmp_path / "index", dimension=8)

    with pytest.raises(DataIntegrityError):
        await other.load_index()


@pytest.mark.asyncio
async def test_load_missing_index_raises(tmp_path):
    store = FAISSVectorStore(index_dir=tmp_path / "missing", dimension=DIMENSION)

    with pytest.raises(FileNotFoundError):
        await store.load_index()


@pytest.mark.asyncio
async def test_init_or_load_creates_empty_index(tmp_path):
    store = FAISSVectorStore(index_dir=tmp_path / "fresh", dimension=DIMENSION)

    await store.init_or_load()

    assert store.vector_count == 0
    assert store.get_stats()["initialized"] is True


@pytest.mark.asyncio
async def test_rebuild_index_discards_vectors(vector_store):
    await vector_store.add_vectors([[1, 0, 0, 0]], [1])
    await vector_store.save_index()

    await vector_store.rebuild_index()

    assert vector_store.vector_count == 0
    assert not vector_store.index_path.exists()


def test_stats_before_initialization(tmp_path):
    store = FAISSVectorStore(index_dir=tmp_path, dimension=DIMENSION)

    assert store.get_stats() == {
        "initialized": False,
        "vector_count": 0,
        "dimension": DIMENSION,
    }
