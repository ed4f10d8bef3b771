"""Tests for the ingest pipeline."""
from unittest.mock import AsyncMock

import pytest

from knowledge_base.errors import NotFoundError, RateLimitError, UnsupportedInputError
from knowledge_base.rag.chunker import TextChunker
from knowledge_base.rag.extract import TEXT
from knowledge_base.rag.ingest import IngestPipeline
from knowledge_base.rag.retriever import Retriever


@pytest.fixture
def pipeline(temp_db, embedder, vector_store):
    return IngestPipeline(
        embedder=embedder,
        vector_store=vector_store,
        chunker=TextChunker(chunk_size=60, chunk_overlap=10),
    )


ARTICLE = (
    "Cats sleep most of the day and purr.\n\n"
    "Dogs need a walk twice a day.\n\n"
    "Birds sing at dawn in spring.\n\n"
    "Fish live in water and need clean tanks."
)


@pytest.mark.asyncio
async def test_ingest_stores_passages_and_vectors(pipeline, temp_db, vector_store):
    document = await pipeline.ingest_document("pets.txt", TEXT, ARTICLE.encode())

    assert document["filename"] == "pets.txt"
    assert document["file_type"] == TEXT
    assert document["processed"] is True
    assert document["chunk_count"] > 1
    assert vector_store.vector_count == document["chunk_count"]
    assert temp_db.get_chunk_count() == document["chunk_count"]
    assert vector_store.index_path.exists()
    assert pipeline.stats["documents_processed"] == 1
    assert pipeline.stats["chunks_created"] == document["chunk_count"]


@pytest.mark.asyncio
async def test_ingested_passages_are_retrievable(pipeline, embedder, vector_store):
    document = await pipeline.ingest_document("pets.txt", TEXT, ARTICLE.encode())
    retriever = Retriever(embedder, vector_store, top_k=1)

    results = await retriever.search("tell me about the bird")

    assert results[0].document_id == document["id"]
    assert "Birds" in results[0].text


@pytest.mark.asyncio
async def test_text_without_content_is_rejected(pipeline, embedding_client, temp_db):
    with pytest.raises(UnsupportedInputError):
        await pipeline.ingest_document("blank.txt", TEXT, b"  \n\n  ")

    assert embedding_client.calls == []
    assert temp_db.list_documents() == []


@pytest.mark.asyncio
async def test_embedding_failure_stores_nothing(pipeline, embedding_client, temp_db, vector_store):
    embedding_client.failures = [RateLimitError("slow down", 429)] * 3

    with pytest.raises(RateLimitError):
        await pipeline.ingest_document("pets.txt", TEXT, ARTICLE.encode())

    assert temp_db.list_documents() == []
    assert vector_store.vector_count == 0


@pytest.mark.asyncio
async def test_vector_store_failure_rolls_back_document(pipeline, temp_db, vector_store):
    vector_store.save_index = AsyncMock(side_effect=OSError("disk full"))

    with pytest.raises(OSError):
        await pipeline.ingest_document("pets.txt", TEXT, ARTICLE.encode())

    assert temp_db.list_documents() == []
    assert temp_db.get_chunk_count() == 0
    assert vector_store.vector_count == 0


@pytest.mark.asyncio
async def test_delete_document_removes_vectors(pipeline, temp_db, vector_store):
    document = await pipeline.ingest_document("pets.txt", TEXT, ARTICLE.encode())

    await pipeline.delete_document(document["id"])

    assert temp_db.get_document(document["id"]) is None
    assert vector_store.vector_count == 0


@pytest.mark.asyncio
async def test_delete_unknown_document_raises(pipeline):
    with pytest.raises(NotFoundError):
        await pipeline.delete_document("missing")


@pytest.mark.asyncio
async def test_rebuild_index_restores_vectors_from_database(pipeline, vector_store):
    document = await pipeline.ingest_document("pets.txt", TEXT, ARTICLE.encode())

    count = await pipeline.rebuild_index()

    assert count == document["chunk_count"]
    assert vector_store.vector_count == count


@pytest.mark.asyncio
async def test_ingest_directory_counts_failures(pipeline, tmp_path):
    docs = tmp_path / "docs"
    (docs / "nested").mkdir(parents=True)
    (docs / "cats.txt").write_text("Cats purr.")
    (docs / "nested" / "dogs.md").write_text("# Dogs\n\nDogs bark.")
    (docs / "empty.txt").write_text("")
    (docs / "image.png").write_bytes(b"\x89PNG")
    seen = []

    stats = await pipeline.ingest_directory(
        docs, progress_callback=lambda i, total, path: seen.append((i, total, path.name))
    )

    assert stats["documents_processed"] == 2
    assert stats["documents_failed"] == 1
    assert [name for _, _, name in seen] == ["cats.txt", "empty.txt", "dogs.md"]
    assert all(total == 3 for _, total, _ in seen)


@pytest.mark.asyncio
async def test_ingest_directory_missing_raises(pipeline, tmp_path):
    with pytest.raises(FileNotFoundError):
        await pipeline.ingest_directory(tmp_path / "nope")
