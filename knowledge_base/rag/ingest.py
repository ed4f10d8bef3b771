"""Ingest pipeline for adding documents to the knowledge base.

Orchestrates:
- Text extraction
- Text chunking
- Embedding generation
- Passage and vector storage
"""
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import structlog

from knowledge_base import db
from knowledge_base.errors import NotFoundError, UnsupportedInputError
from knowledge_base.rag.chunker import TextChunker
from knowledge_base.rag.embedder import EmbeddingBatcher
from knowledge_base.rag.extract import DOCX, PDF, TEXT, extract_text
from knowledge_base.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()

CONTENT_TYPES_BY_SUFFIX = {
    ".pdf": PDF,
    ".docx": DOCX,
    ".txt": TEXT,
    ".md": TEXT,
}


class IngestPipeline:
    """Pipeline for ingesting documents into the RAG system."""

    def __init__(
        self,
        embedder: EmbeddingBatcher,
        vector_store: FAISSVectorStore,
        chunker: Optional[TextChunker] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Batcher used to embed passages
            vector_store: Loaded FAISS vector store
            chunker: Text chunker (default sizes from config)
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or TextChunker()

        self.stats = {
            "documents_processed": 0,
            "documents_failed": 0,
            "chunks_created": 0,
            "embeddings_generated": 0,
        }

    async def ingest_document(
        self, filename: str, content_type: str, data: bytes
    ) -> Dict[str, Any]:
        """Extract, chunk, embed and store an uploaded file.

        Returns:
            The stored document record (id, filename, chunk_count, ...)

        Raises:
            UnsupportedInputError: Empty upload, unsupported type or no text
            ProviderError: If embedding fails; nothing is stored in that case
        """
        text = extract_text(data, content_type)
        return await self.ingest_text(filename, text, content_type=content_type)

    async def ingest_text(
        self, filename: str, text: str, content_type: str = TEXT
    ) -> Dict[str, Any]:
        """Chunk, embed and store already extracted text."""
        logger.info("ingesting_document", filename=filename, text_length=len(text))

        chunks = self.chunker.chunk_text(text)
        if not chunks:
            raise UnsupportedInputError(f"No extractable text in '{filename}'")

        chunk_texts = [chunk.content for chunk in chunks]
        embeddings = await self.embedder.embed(chunk_texts)
        self.stats["embeddings_generated"] += len(embeddings)

        document_id = str(uuid.uuid4())
        chunk_ids = db.insert_document(
            document_id=document_id,
            filename=filename,
            file_type=content_type,
            chunks=list(zip(chunk_texts, embeddings)),
        )

        try:
            await self.vector_store.add_vectors(embeddings, chunk_ids)
            await self.vector_store.save_index()
        except Exception as e:
            logger.error(
                "vector_store_update_failed",
                document_id=document_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.vector_store.remove_vectors(chunk_ids)
            db.delete_document(document_id)
            raise

        self.stats["chunks_created"] += len(chunks)
        self.stats["documents_processed"] += 1

        logger.info(
            "document_ingested",
            document_id=document_id,
            filename=filename,
            chunks_created=len(chunks),
        )

        return db.get_document(document_id)

    async def delete_document(self, document_id: str) -> None:
        """Remove a document, its passages and their vectors.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        chunk_ids = db.delete_document(document_id)
        if chunk_ids is None:
            raise NotFoundError(f"Document {document_id} not found")

        await self.vector_store.remove_vectors(chunk_ids)
        await self.vector_store.save_index()

    async def rebuild_index(self) -> int:
        """Recreate the FAISS index from embeddings stored in SQLite.

        Returns:
            Number of vectors in the rebuilt index
        """
        await self.vector_store.rebuild_index()

        rows = db.get_embedded_chunks()
        if rows:
            chunk_ids = [chunk_id for chunk_id, _ in rows]
            embeddings = [embedding for _, embedding in rows]
            await self.vector_store.add_vectors(embeddings, chunk_ids)

        await self.vector_store.save_index()

        logger.info("index_rebuilt_from_database", vector_count=self.vector_store.vector_count)
        return self.vector_store.vector_count

    def discover_files(self, directory: Path) -> List[Path]:
        """Find ingestible files under a directory, recursively.

        Raises:
            FileNotFoundError: If the directory doesn't exist
        """
        if not directory.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")

        files = sorted(
            path for path in directory.rglob("*")
            if path.is_file() and path.suffix.lower() in CONTENT_TYPES_BY_SUFFIX
        )

        logger.info("files_discovered", count=len(files), directory=str(directory))
        return files

    async def ingest_directory(
        self,
        directory: Path,
        progress_callback: Optional[Callable[[int, int, Path], None]] = None,
    ) -> Dict[str, Any]:
        """Ingest every supported file under a directory.

        A failing file is logged and counted; the rest still get ingested.

        Returns:
            Ingestion statistics
        """
        files = self.discover_files(directory)

        for idx, file_path in enumerate(files, 1):
            if progress_callback:
                progress_callback(idx, len(files), file_path)

            content_type = CONTENT_TYPES_BY_SUFFIX[file_path.suffix.lower()]

            try:
                await self.ingest_document(file_path.name, content_type, file_path.read_bytes())
            except Exception as e:
                logger.error(
                    "file_ingestion_failed",
                    path=str(file_path),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.stats["documents_failed"] += 1

        logger.info("ingest_directory_completed", stats=self.stats)
        return self.stats
