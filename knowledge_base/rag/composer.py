"""Grounded answer generation over retrieved passages."""
from typing import Any, Dict, List, Optional, Sequence
import structlog

from knowledge_base import config
from knowledge_base.llm_client import AnthropicClient
from knowledge_base.models import ConversationTurn, RetrievedPassage

logger = structlog.get_logger()

SYSTEM_PROMPT = """You are a helpful customer support assistant.
Answer questions based ONLY on the provided context documents.
If the answer isn't in the context, say so clearly.
Always cite which document section you're referencing.
Be concise but complete."""

USER_PROMPT_TEMPLATE = """Context documents:
{context}

Question: {question}

Provide a helpful answer based on the context above."""

FALLBACK_ANSWER = "Unable to generate response"


def build_context(passages: Sequence[RetrievedPassage]) -> str:
    """Number passages as ``[Document i]`` blocks in retrieval order."""
    return "".join(
        f"[Document {i}]\n{passage.text}\n\n"
        for i, passage in enumerate(passages, 1)
    )


def first_text_block(response: Dict[str, Any]) -> Optional[str]:
    """Text of the first content block, or None if there is none."""
    content = response.get("content") or []
    if not content or not isinstance(content[0], dict):
        return None
    text = content[0].get("text")
    return text if isinstance(text, str) and text.strip() else None


class AnswerComposer:
    """Builds the prompt and calls the generation provider."""

    def __init__(
        self,
        client: Optional[AnthropicClient] = None,
        history_window: int = None,
        max_tokens: int = None,
    ):
        self.client = client or AnthropicClient()
        self.history_window = history_window or config.HISTORY_WINDOW
        self.max_tokens = max_tokens or config.GENERATION_MAX_TOKENS

    def build_messages(
        self,
        question: str,
        retrieved: Sequence[RetrievedPassage],
        history: Optional[Sequence[ConversationTurn]] = None,
    ) -> List[Dict[str, str]]:
        """Recent history in chronological order, then the new user turn."""
        messages = []

        if history:
            messages.extend(turn.to_message() for turn in history[-self.history_window:])

        messages.append({
            "role": "user",
            "content": USER_PROMPT_TEMPLATE.format(
                context=build_context(retrieved),
                question=question,
            ),
        })
        return messages

    async def answer(
        self,
        question: str,
        retrieved: Sequence[RetrievedPassage],
        history: Optional[Sequence[ConversationTurn]] = None,
    ) -> str:
        """Generate an answer grounded in the retrieved passages.

        An empty retrieval still goes to the provider; the system prompt makes
        it say the context is insufficient.

        Returns:
            Answer text, or FALLBACK_ANSWER when the provider sends no text

        Raises:
            ProviderError: If the generation call fails
        """
        messages = self.build_messages(question, retrieved, history)

        response = await self.client.create_message(
            system=SYSTEM_PROMPT,
            messages=messages,
            max_tokens=self.max_tokens,
        )

        text = first_text_block(response)
        if text is None:
            logger.warning("empty_generation_response", response_keys=list(response))
            return FALLBACK_ANSWER

        logger.info(
            "answer_generated",
            passages=len(retrieved),
            history_turns=len(messages) - 1,
            answer_length=len(text),
        )
        return text
