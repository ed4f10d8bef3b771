"""FAISS vector store for cosine similarity search.

Handles:
- Fixed-dimension index creation and loading
- Vector addition and removal keyed by passage id
- Cosine-distance nearest-neighbour search
- Metadata persistence
"""
import json
from pathlib import Path
from typing import List, Tuple, Optional, Dict, Any
import numpy as np
import faiss
import structlog

from knowledge_base import config
from knowledge_base.errors import DataIntegrityError

logger = structlog.get_logger()

INDEX_TYPE = "IndexIDMap2(IndexFlatIP)"


class FAISSVectorStore:
    """Cosine vector index over L2-normalised embeddings."""

    def __init__(
        self,
        index_dir: Path = None,
        dimension: int = None,
        embedding_model: str = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory to store index and metadata (default: VECTOR_INDEX_DIR)
            dimension: Embedding dimension fixed for this deployment
            embedding_model: Embedding model name recorded in metadata
        """
        self.index_dir = Path(index_dir or config.VECTOR_INDEX_DIR)
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL

        self.index_path = self.index_dir / "vectors.index"
        self.metadata_path = self.index_dir / "metadata.json"

        self.index: Optional[faiss.Index] = None
        self.metadata: Dict[str, Any] = {}

    @property
    def vector_count(self) -> int:
        return self.index.ntotal if self.index is not None else 0

    async def init_new_index(self) -> None:
        """Initialize a new, empty index."""
        # Inner product on normalised vectors equals cosine similarity.
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))

        self.metadata = {
            "embedding_model": self.embedding_model,
            "embedding_dimension": self.dimension,
            "index_type": INDEX_TYPE,
            "vector_count": 0,
        }

        logger.info(
            "faiss_index_initialized",
            dimension=self.dimension,
            index_type=INDEX_TYPE,
        )

    async def load_index(self) -> None:
        """Load existing FAISS index from disk.

        Raises:
            FileNotFoundError: If index files don't exist
            DataIntegrityError: If the stored dimension differs from the configured one
            RuntimeError: If loading fails
        """
        if not self.index_path.exists():
            raise FileNotFoundError(f"Index not found: {self.index_path}")

        if not self.metadata_path.exists():
            raise FileNotFoundError(f"Metadata not found: {self.metadata_path}")

        try:
            with open(self.metadata_path, "r") as f:
                self.metadata = json.load(f)
        except (OSError, ValueError) as e:
            raise RuntimeError(f"Failed to load metadata: {e}") from e

        stored_model = self.metadata.get("embedding_model")
        stored_dim = self.metadata.get("embedding_dimension")

        if stored_dim != self.dimension:
            raise DataIntegrityError(
                f"Dimension mismatch: index was built with {stored_model} "
                f"(dim={stored_dim}), but this deployment uses dim={self.dimension}. "
                f"Please rebuild the index."
            )

        try:
            self.index = faiss.read_index(str(self.index_path))
        except RuntimeError as e:
            raise RuntimeError(f"Failed to load FAISS index: {e}") from e

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
            model=stored_model,
        )

    async def save_index(self) -> None:
        """Save FAISS index and metadata to disk.

        Raises:
            RuntimeError: If no index is loaded
        """
        if self.index is None:
            raise RuntimeError("No index to save. Initialize or load an index first.")

        self.index_dir.mkdir(parents=True, exist_ok=True)

        self.metadata["vector_count"] = self.index.ntotal

        faiss.write_index(self.index, str(self.index_path))

        with open(self.metadata_path, "w") as f:
            json.dump(self.metadata, f, indent=2)

        logger.info(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=self.index.ntotal,
        )

    def _as_unit_vectors(self, embeddings: List[List[float]]) -> np.ndarray:
        try:
            vectors = np.array(embeddings, dtype=np.float32)
        except ValueError as e:
            raise DataIntegrityError(f"Embeddings have inconsistent dimensions: {e}") from e

        if vectors.ndim != 2 or vectors.shape[1] != self.dimension:
            got = vectors.shape[1] if vectors.ndim == 2 else vectors.shape
            raise DataIntegrityError(
                f"Embedding dimension mismatch: expected {self.dimension}, got {got}"
            )

        vectors = np.ascontiguousarray(vectors)
        faiss.normalize_L2(vectors)
        return vectors

    async def add_vectors(self, embeddings: List[List[float]], vector_ids: List[int]) -> None:
        """Add vectors to the index under the given passage ids.

        Raises:
            RuntimeError: If no index initialized
            DataIntegrityError: On dimension mismatch
            ValueError: If ids and embeddings differ in length
        """
        if self.index is None:
            raise RuntimeError("No index initialized. Call init_new_index() first.")

        if not embeddings:
            return

        if len(embeddings) != len(vector_ids):
            raise ValueError(
                f"Got {len(embeddings)} embeddings for {len(vector_ids)} ids"
            )

        vectors = self._as_unit_vectors(embeddings)
        self.index.add_with_ids(vectors, np.array(vector_ids, dtype=np.int64))

        logger.info(
            "vectors_added",
            count=len(embeddings),
            total_vectors=self.index.ntotal,
        )

    async def remove_vectors(self, vector_ids: List[int]) -> int:
        """Remove vectors by passage id. Returns the number removed."""
        if self.index is None or not vector_ids:
            return 0

        removed = self.index.remove_ids(np.array(vector_ids, dtype=np.int64))

        logger.info("vectors_removed", count=removed, total_vectors=self.index.ntotal)
        return removed

    async def search(
        self, query_embedding: List[float], top_k: int = None
    ) -> Tuple[List[int], List[float]]:
        """Search for the nearest vectors by cosine distance.

        Args:
            query_embedding: Query vector
            top_k: Number of results to return (default from config)

        Returns:
            Tuple of (vector_ids, cosine_distances), nearest first

        Raises:
            RuntimeError: If no index initialized
            DataIntegrityError: On dimension mismatch
        """
        if self.index is None:
            raise RuntimeError("No index initialized. Call load_index() first.")

        if top_k is None:
            top_k = config.RETRIEVAL_TOP_K

        query_vector = self._as_unit_vectors([query_embedding])

        top_k = min(top_k, self.index.ntotal)

        if top_k <= 0:
            return [], []

        similarities, indices = self.index.search(query_vector, top_k)

        vector_ids = []
        distances = []
        for vector_id, similarity in zip(indices[0].tolist(), similarities[0].tolist()):
            if vector_id == -1:
                continue
            vector_ids.append(vector_id)
            distances.append(1.0 - similarity)

        logger.debug(
            "vector_search_completed",
            top_k=top_k,
            results_found=len(vector_ids),
        )

        return vector_ids, distances

    async def init_or_load(self) -> None:
        """Load the index from disk if present, otherwise create an empty one."""
        if self.index_path.exists() and self.metadata_path.exists():
            logger.info("existing_index_detected", path=str(self.index_path))
            await self.load_index()
        else:
            logger.info("no_index_found_initializing_new")
            await self.init_new_index()

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store."""
        if self.index is None:
            return {
                "initialized": False,
                "vector_count": 0,
                "dimension": self.dimension,
            }

        return {
            "initialized": True,
            "vector_count": self.index.ntotal,
            "dimension": self.dimension,
            "embedding_model": self.embedding_model,
            "index_exists_on_disk": self.index_path.exists(),
        }

    async def rebuild_index(self) -> None:
        """Delete the on-disk index and start an empty one."""
        logger.warning("rebuilding_index", index_dir=str(self.index_dir))

        if self.index_path.exists():
            self.index_path.unlink()
            logger.info("deleted_existing_index", path=str(self.index_path))

        if self.metadata_path.exists():
            self.metadata_path.unlink()
            logger.info("deleted_existing_metadata", path=str(self.metadata_path))

        await self.init_new_index()
