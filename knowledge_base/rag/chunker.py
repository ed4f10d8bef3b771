"""Paragraph-aware text chunking with overlap for the RAG pipeline.

Sizes are counted in characters to avoid tokenizer dependencies. Single and
double newlines are both paragraph boundaries because text extracted from
PDF/DOCX rarely keeps clean blank-line paragraphing.
"""
import re
from typing import List
from dataclasses import dataclass
import structlog

from knowledge_base import config

logger = structlog.get_logger()

PARAGRAPH_SPLIT = re.compile(r"\r\n\r\n|\n\n|\r\n|\n")
SENTENCE_TERMINATORS = ".!?"


@dataclass
class TextChunk:
    """A chunk of text and its position in emission order."""

    content: str
    chunk_index: int


class TextChunker:
    """Accumulates paragraphs into bounded, overlapping chunks."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Target chunk size in characters (default from config)
            chunk_overlap: Characters carried into the next chunk (default from config)
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ValueError(f"Overlap must not be negative, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            text: Extracted plain text of one document

        Returns:
            List of TextChunk objects in emission order
        """
        if not text:
            return []

        paragraphs = [p.strip() for p in PARAGRAPH_SPLIT.split(text)]
        paragraphs = [p for p in paragraphs if p]

        emitted: List[str] = []
        buffer = ""

        for paragraph in paragraphs:
            if buffer and len(buffer) + len(paragraph) > self.chunk_size:
                buffer = self._emit(buffer, emitted, joiner="\n")

            if len(buffer) + len(paragraph) <= self.chunk_size:
                buffer += paragraph + "\n"
            else:
                buffer = self._carve(paragraph, buffer, emitted)

        if buffer.strip():
            emitted.append(buffer.strip())

        chunks = [TextChunk(content=c, chunk_index=i) for i, c in enumerate(emitted)]

        if chunks:
            logger.info(
                "text_chunked",
                text_length=len(text),
                paragraph_count=len(paragraphs),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
            )

        return chunks

    def _carve(self, paragraph: str, buffer: str, emitted: List[str]) -> str:
        """Cut a paragraph that does not fit into budget-sized pieces.

        Returns the buffer left over once the tail of the paragraph fits.
        """
        remaining = paragraph

        while remaining:
            if len(buffer) + len(remaining) <= self.chunk_size:
                return buffer + remaining + "\n"

            budget = self.chunk_size - len(buffer)
            if budget <= 0:
                # Overlap seed alone fills the chunk; start fresh.
                buffer = ""
                budget = self.chunk_size

            cut = find_break_point(remaining, budget)
            buffer = self._emit(buffer + remaining[:cut], emitted, joiner=" ")
            remaining = remaining[cut:].lstrip()

        return buffer

    def _emit(self, buffer: str, emitted: List[str], joiner: str) -> str:
        """Emit the trimmed buffer and return the overlap-seeded next buffer."""
        chunk = buffer.strip()
        if not chunk:
            return ""

        emitted.append(chunk)

        if self.chunk_overlap == 0:
            return ""

        tail = chunk[-self.chunk_overlap:].lstrip()
        return tail + joiner if tail else ""

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


def find_break_point(text: str, max_length: int) -> int:
    """Pick where to cut ``text`` so the piece fits ``max_length`` characters.

    Searches backward from the boundary into the second half of the window,
    first for a sentence terminator, then for whitespace. Cuts at the exact
    boundary when neither exists.

    Returns:
        Number of characters to take from the front of ``text``
    """
    if max_length >= len(text):
        return len(text)

    search_end = max_length
    floor = max_length // 2

    for i in range(search_end - 1, floor, -1):
        if text[i] in SENTENCE_TERMINATORS:
            return i + 1

    for i in range(search_end - 1, floor, -1):
        if text[i].isspace():
            return i + 1

    return search_end


def chunk(text: str, target_size: int, overlap: int) -> List[str]:
    """Chunk text and return just the chunk strings.

    Args:
        text: Text to chunk
        target_size: Target chunk size in characters
        overlap: Characters carried between consecutive chunks

    Returns:
        List of chunk strings
    """
    chunker = TextChunker(chunk_size=target_size, chunk_overlap=overlap)
    return [c.content for c in chunker.chunk_text(text)]
