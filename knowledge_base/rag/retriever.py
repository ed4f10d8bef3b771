"""Retriever for semantic search over ingested passages.

Handles:
- Query embedding generation
- FAISS nearest-neighbour search
- Passage lookup from the database
- Distance-to-similarity conversion and ranking
"""
from typing import List, Optional
import structlog

from knowledge_base import config, db
from knowledge_base.models import RetrievedPassage
from knowledge_base.rag.embedder import EmbeddingBatcher
from knowledge_base.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


def distance_to_similarity(distance: float) -> float:
    """Convert cosine distance to a similarity clamped to [0, 1]."""
    return min(1.0, max(0.0, 1.0 - distance))


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        embedder: EmbeddingBatcher,
        vector_store: FAISSVectorStore,
        top_k: int = None,
    ):
        """Initialize the retriever.

        Args:
            embedder: Batcher used to embed the query
            vector_store: Loaded FAISS vector store
            top_k: Default number of results (default from config)
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.top_k = top_k or config.RETRIEVAL_TOP_K

    async def search(
        self,
        query: str,
        top_k: Optional[int] = None,
    ) -> List[RetrievedPassage]:
        """Retrieve the passages most similar to a query.

        Args:
            query: User query text
            top_k: Number of results to return (overrides default)

        Returns:
            At most ``top_k`` passages, most similar first

        Raises:
            ProviderError: If the query can't be embedded
            DataIntegrityError: If the query vector has the wrong dimension
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        top_k = top_k or self.top_k

        if self.vector_store.vector_count == 0:
            logger.warning("empty_index_no_results")
            return []

        logger.info("retrieval_started", query_length=len(query), top_k=top_k)

        try:
            query_embedding = await self.embedder.embed_query(query)
            vector_ids, distances = await self.vector_store.search(query_embedding, top_k=top_k)
        except Exception as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            raise

        if not vector_ids:
            logger.info("no_results_found")
            return []

        distance_by_id = dict(zip(vector_ids, distances))
        passages = db.get_chunks_by_ids(vector_ids)

        if len(passages) < len(vector_ids):
            logger.warning(
                "vector_ids_without_passage",
                missing=len(vector_ids) - len(passages),
            )

        # Secondary key keeps equal-distance results in a stable order.
        passages.sort(key=lambda p: (distance_by_id[p.id], p.document_id, p.chunk_index))

        results = [
            RetrievedPassage(
                document_id=passage.document_id,
                text=passage.text,
                similarity=distance_to_similarity(distance_by_id[passage.id]),
                chunk_index=passage.chunk_index,
            )
            for passage in passages[:top_k]
        ]

        logger.info(
            "retrieval_completed",
            results_returned=len(results),
            top_similarity=results[0].similarity if results else None,
        )

        return results
