"""Tests for semantic retrieval."""
import pytest

from conftest import keyword_vector
from knowledge_base.errors import RateLimitError
from knowledge_base.rag.retriever import Retriever, distance_to_similarity


async def _store(temp_db, vector_store, document_id, texts, vectors=None):
    vectors = vectors or [keyword_vector(t) for t in texts]
    chunk_ids = temp_db.insert_document(
        document_id=document_id,
        filename=f"{document_id}.txt",
        file_type="text/plain",
        chunks=list(zip(texts, vectors)),
    )
    await vector_store.add_vectors(vectors, chunk_ids)
    return chunk_ids


@pytest.mark.asyncio
async def test_most_similar_passage_first(temp_db, embedder, vector_store):
    await _store(temp_db, vector_store, "doc-a", ["the cat sat", "a dog barked", "bird song"])
    retriever = Retriever(embedder, vector_store, top_k=3)

    results = await retriever.search("where is the dog")

    assert results[0].text == "a dog barked"
    assert results[0].document_id == "doc-a"
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)
    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)


@pytest.mark.asyncio
async def test_results_capped_at_top_k(temp_db, embedder, vector_store):
    await _store(temp_db, vector_store, "doc-a", ["cat one", "cat two", "cat three", "dog"])
    retriever = Retriever(embedder, vector_store, top_k=2)

    assert len(await retriever.search("cat")) == 2
    assert len(await retriever.search("cat", top_k=1)) == 1


@pytest.mark.asyncio
async def test_blank_query_makes_no_provider_call(embedder, embedding_client, vector_store):
    retriever = Retriever(embedder, vector_store)

    assert await retriever.search("   ") == []
    assert embedding_client.calls == []


@pytest.mark.asyncio
async def test_empty_corpus_returns_nothing(temp_db, embedder, embedding_client, vector_store):
    retriever = Retriever(embedder, vector_store)

    assert await retriever.search("anything about cats") == []
    assert embedding_client.calls == []


@pytest.mark.asyncio
async def test_equal_distances_break_ties_by_document_then_index(temp_db, embedder, vector_store):
    same = [0.0, 0.0, 0.0, 1.0]
    await _store(temp_db, vector_store, "doc-b", ["fish b0", "fish b1"], [same, same])
    await _store(temp_db, vector_store, "doc-a", ["fish a0"], [same])
    retriever = Retriever(embedder, vector_store, top_k=3)

    results = await retriever.search("fish")

    assert [(r.document_id, r.chunk_index) for r in results] == [
        ("doc-a", 0),
        ("doc-b", 0),
        ("doc-b", 1),
    ]


@pytest.mark.asyncio
async def test_vectors_without_passage_are_skipped(temp_db, embedder, vector_store):
    await _store(temp_db, vector_store, "doc-a", ["cat"])
    await vector_store.add_vectors([keyword_vector("cat")], [9999])
    retriever = Retriever(embedder, vector_store, top_k=5)

    results = await retriever.search("cat")

    assert [r.text for r in results] == ["cat"]


@pytest.mark.asyncio
async def test_embedding_failure_propagates(temp_db, embedder, embedding_client, vector_store):
    await _store(temp_db, vector_store, "doc-a", ["cat"])
    embedding_client.failures = [RateLimitError("slow down", 429)] * 3
    retriever = Retriever(embedder, vector_store)

    with pytest.raises(RateLimitError):
        await retriever.search("cat")


def test_distance_to_similarity_is_clamped():
    assert distance_to_similarity(0.0) == 1.0
    assert distance_to_similarity(0.25) == pytest.approx(0.75)
    assert distance_to_similarity(1.5) == 0.0
    assert distance_to_similarity(-1e-7) == 1.0
