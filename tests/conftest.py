"""Pytest configuration and shared fixtures."""
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from knowledge_base import db
from knowledge_base.rag.embedder import EmbeddingBatcher
from knowledge_base.rag.store_faiss import FAISSVectorStore


KEYWORDS = ("cat", "dog", "bird", "fish")
DIMENSION = len(KEYWORDS)


def keyword_vector(text: str) -> List[float]:
    """Toy embedding: one dimension per keyword occurrence count."""
    counts = [float(text.lower().count(k)) for k in KEYWORDS]
    if not any(counts):
        return [0.25] * DIMENSION
    return counts


class FakeEmbeddingClient:
    """Stands in for VoyageClient; records every batch it receives."""

    def __init__(
        self,
        failures: Optional[list] = None,
        reverse: bool = False,
        vectors: Optional[Dict[str, List[float]]] = None,
    ):
        self.calls: List[List[str]] = []
        self.failures = list(failures or [])
        self.reverse = reverse
        self.vectors = vectors or {}

    async def embeddings(self, texts):
        self.calls.append(list(texts))
        if self.failures:
            raise self.failures.pop(0)

        items = [
            {"index": i, "embedding": self.vectors.get(text) or keyword_vector(text)}
            for i, text in enumerate(texts)
        ]
        if self.reverse:
            items.reverse()
        return items


class SleepRecorder:
    """Async replacement for asyncio.sleep."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the database module at a fresh SQLite file."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "knowledge_base.sqlite")
    db.init_database()
    return db


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def embedder(embedding_client, sleeper):
    """Batcher over the fake client with recorded (instant) sleeps."""
    return EmbeddingBatcher(
        client=embedding_client,
        batch_size=2,
        batch_delay=0.5,
        max_retries=3,
        retry_base_delay=30.0,
        dimension=DIMENSION,
        sleep=sleeper,
    )


@pytest_asyncio.fixture
async def vector_store(tmp_path):
    """Empty in-memory index persisted under tmp_path."""
    store = FAISSVectorStore(index_dir=tmp_path / "index", dimension=DIMENSION)
    await store.init_new_index()
    return store
