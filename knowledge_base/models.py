"""Domain records shared across the RAG pipeline."""
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Optional

ROLES = ("user", "assistant")


@dataclass
class Passage:
    """A stored chunk of a document."""

    id: int
    document_id: str
    text: str
    chunk_index: int
    created_at: str
    embedding: Optional[List[float]] = None

    @property
    def is_embedded(self) -> bool:
        return self.embedding is not None


@dataclass
class RetrievedPassage:
    """A passage returned by similarity search."""

    document_id: str
    text: str
    similarity: float
    chunk_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ConversationTurn:
    """One message in a conversation."""

    role: str
    text: str
    sources: List[Dict[str, Any]] = field(default_factory=list)

    def to_message(self) -> Dict[str, str]:
        """Format for the generation provider (role and content only)."""
        return {"role": self.role, "content": self.text}
