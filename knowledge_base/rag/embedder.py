"""Batched embedding generation with rate-limit recovery.

Batches are sent strictly one after another with a short pause in between;
the provider's rate limits are the reason, so do not parallelize them.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional
import structlog

from knowledge_base import config
from knowledge_base.errors import DataIntegrityError, ProviderProtocolError, RateLimitError
from knowledge_base.llm_client import VoyageClient

logger = structlog.get_logger()

SleepFn = Callable[[float], Awaitable[Any]]


class EmbeddingBatcher:
    """Turns ordered texts into equally ordered embedding vectors."""

    def __init__(
        self,
        client: Optional[VoyageClient] = None,
        batch_size: int = None,
        batch_delay: float = None,
        max_retries: int = None,
        retry_base_delay: float = None,
        dimension: Optional[int] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        """Initialize the batcher.

        Args:
            client: Embedding provider client (default: VoyageClient from config)
            batch_size: Maximum texts per provider call
            batch_delay: Seconds to wait between batches
            max_retries: Total attempts per batch when rate limited
            retry_base_delay: Backoff unit; attempt k waits k * base seconds
            dimension: Expected vector length (default config.EMBEDDING_DIMENSION)
            sleep: Awaitable sleep, replaced in tests
        """
        self.client = client or VoyageClient()
        self.batch_size = batch_size or config.EMBED_BATCH_SIZE
        self.batch_delay = config.EMBED_BATCH_DELAY if batch_delay is None else batch_delay
        self.max_retries = max_retries or config.EMBED_MAX_RETRIES
        self.retry_base_delay = (
            config.EMBED_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        )
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self._sleep = sleep

        if self.batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {self.batch_size}")

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed texts, preserving input order.

        Args:
            texts: Ordered texts to embed

        Returns:
            One vector per input text, in the same order

        Raises:
            ProviderError: If a batch fails (rate limits only after retries)
            DataIntegrityError: If a vector has the wrong dimensionality
        """
        if not texts:
            return []

        total_batches = (len(texts) + self.batch_size - 1) // self.batch_size
        embeddings: List[List[float]] = []

        for batch_number, start in enumerate(range(0, len(texts), self.batch_size), 1):
            batch = texts[start : start + self.batch_size]

            logger.info(
                "embedding_batch_started",
                batch=batch_number,
                total_batches=total_batches,
                chunk_count=len(batch),
            )

            embeddings.extend(await self._embed_batch_with_retry(batch))

            if batch_number < total_batches:
                await self._sleep(self.batch_delay)

        return embeddings

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query string."""
        return (await self.embed([text]))[0]

    async def _embed_batch_with_retry(self, batch: List[str]) -> List[List[float]]:
        attempt = 1
        while True:
            try:
                return await self._embed_batch(batch)
            except RateLimitError:
                if attempt >= self.max_retries:
                    logger.error(
                        "embedding_rate_limit_exhausted",
                        attempts=attempt,
                        batch_size=len(batch),
                    )
                    raise

                delay = attempt * self.retry_base_delay
                logger.warning(
                    "embedding_rate_limited",
                    wait_seconds=delay,
                    next_attempt=attempt + 1,
                    max_retries=self.max_retries,
                )
                await self._sleep(delay)
                attempt += 1

    async def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        items = await self.client.embeddings(batch)
        return self._order_by_index(items, len(batch))

    def _order_by_index(self, items: List[Dict[str, Any]], expected: int) -> List[List[float]]:
        """Re-sort provider items by their index and validate them."""
        try:
            ordered = sorted(items, key=lambda item: item["index"])
            indices = [item["index"] for item in ordered]
            vectors = [list(item["embedding"]) for item in ordered]
        except (KeyError, TypeError) as e:
            raise ProviderProtocolError(f"Malformed embedding item: {e}") from e

        if indices != list(range(expected)):
            raise ProviderProtocolError(
                f"Embedding response covers indices {indices[:10]}, expected 0..{expected - 1}"
            )

        for vector in vectors:
            if len(vector) != self.dimension:
                raise DataIntegrityError(
                    f"Embedding dimension mismatch: expected {self.dimension}, "
                    f"got {len(vector)}"
                )

        return vectors
