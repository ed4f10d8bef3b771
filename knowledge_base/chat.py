"""Question answering over the knowledge base with conversation memory."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import structlog

from knowledge_base import config
from knowledge_base.errors import UnsupportedInputError
from knowledge_base.memory.manager import ConversationManager, title_from_question
from knowledge_base.models import RetrievedPassage
from knowledge_base.rag.composer import AnswerComposer
from knowledge_base.rag.retriever import Retriever

logger = structlog.get_logger()

PREVIEW_CHARS = 200


@dataclass
class SourceReference:
    """A retrieved passage as shown to the caller."""

    document_id: str
    text: str
    similarity: float

    @classmethod
    def from_passage(cls, passage: RetrievedPassage) -> "SourceReference":
        text = passage.text
        if len(text) > PREVIEW_CHARS:
            text = text[:PREVIEW_CHARS] + "..."
        return cls(
            document_id=passage.document_id,
            text=text,
            similarity=passage.similarity,
        )


@dataclass
class ChatResult:
    answer: str
    conversation_id: str
    sources: List[SourceReference] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "conversation_id": self.conversation_id,
            "sources": [vars(s) for s in self.sources],
        }


class ChatService:
    """Runs the ask flow: retrieve, compose, then record both turns."""

    def __init__(
        self,
        retriever: Retriever,
        composer: AnswerComposer,
        conversations: ConversationManager,
        top_k: int = None,
    ):
        self.retriever = retriever
        self.composer = composer
        self.conversations = conversations
        self.top_k = top_k or config.RETRIEVAL_TOP_K

    async def ask(self, question: str, conversation_id: Optional[str] = None) -> ChatResult:
        """Answer a question, continuing a conversation when one is given.

        Args:
            question: The user's question
            conversation_id: Existing conversation to continue

        Returns:
            ChatResult with the answer, conversation id and source previews

        Raises:
            UnsupportedInputError: If the question is blank
            NotFoundError: If ``conversation_id`` doesn't exist
            ProviderError: If embedding or generation fails
        """
        question = (question or "").strip()
        if not question:
            raise UnsupportedInputError("Question is required")

        history = None
        if conversation_id:
            self.conversations.get_conversation(conversation_id)
            history = self.conversations.get_recent_turns(conversation_id)

        logger.info(
            "ask_started",
            conversation_id=conversation_id,
            question_length=len(question),
            history_turns=len(history or []),
        )

        retrieved = await self.retriever.search(question, top_k=self.top_k)
        answer = await self.composer.answer(question, retrieved, history)

        if not conversation_id:
            conversation_id = self.conversations.create_conversation(
                title_from_question(question)
            )["id"]

        self.conversations.add_turn(conversation_id, "user", question)
        self.conversations.add_turn(
            conversation_id,
            "assistant",
            answer,
            sources=[passage.to_dict() for passage in retrieved],
        )

        logger.info(
            "ask_completed",
            conversation_id=conversation_id,
            sources=len(retrieved),
            answer_length=len(answer),
        )

        return ChatResult(
            answer=answer,
            conversation_id=conversation_id,
            sources=[SourceReference.from_passage(p) for p in retrieved],
        )
