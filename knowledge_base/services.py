"""Wires clients, stores and pipeline components together."""
from dataclasses import dataclass
from typing import Optional
import structlog

from knowledge_base import db
from knowledge_base.chat import ChatService
from knowledge_base.llm_client import AnthropicClient, VoyageClient
from knowledge_base.memory.manager import ConversationManager
from knowledge_base.rag.composer import AnswerComposer
from knowledge_base.rag.embedder import EmbeddingBatcher
from knowledge_base.rag.ingest import IngestPipeline
from knowledge_base.rag.retriever import Retriever
from knowledge_base.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


@dataclass
class Services:
    vector_store: FAISSVectorStore
    ingest: IngestPipeline
    conversations: ConversationManager
    chat: ChatService

    async def start(self) -> None:
        """Create the schema and load (or create) the vector index."""
        db.init_database()
        await self.vector_store.init_or_load()
        logger.info("services_started", vector_count=self.vector_store.vector_count)


def build_services(
    embedding_client: Optional[VoyageClient] = None,
    generation_client: Optional[AnthropicClient] = None,
    vector_store: Optional[FAISSVectorStore] = None,
) -> Services:
    """Build the component graph; clients default to config-driven ones."""
    vector_store = vector_store or FAISSVectorStore()
    embedder = EmbeddingBatcher(client=embedding_client or VoyageClient())
    conversations = ConversationManager()

    chat = ChatService(
        retriever=Retriever(embedder=embedder, vector_store=vector_store),
        composer=AnswerComposer(client=generation_client or AnthropicClient()),
        conversations=conversations,
    )

    return Services(
        vector_store=vector_store,
        ingest=IngestPipeline(embedder=embedder, vector_store=vector_store),
        conversations=conversations,
        chat=chat,
    )
