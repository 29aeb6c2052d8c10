"""Embedding helpers using OpenAI text-embedding-3-small."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from openai import AsyncOpenAI, OpenAIError

from src.config import settings
from src.errors import EmbeddingError
from src.ingestion.models import ChunkEmbedding, EmbeddingSearchResult, TranscriptChunk
from src.rate_limit import AsyncRateLimiter

if TYPE_CHECKING:
    from src.ingestion.storage import SearchFilters, VectorStore

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Turns chunk text into vectors and searches stored vectors.

    Requests are batched (``batch_size`` inputs per API call) and paced by
    an :class:`AsyncRateLimiter`. The first failing call aborts the whole
    batch with :class:`EmbeddingError`.

    Args:
        client: Async OpenAI client.
        store: Vector store used by :meth:`search_similar`.
        model: Embedding model name.
        dimensions: Vector size requested from the API.
        batch_size: Inputs per embeddings request.
        limiter: Rate limiter shared by all embedding calls.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        store: VectorStore | None = None,
        model: str = settings.embedding_model,
        dimensions: int = settings.embedding_dimensions,
        batch_size: int = settings.embedding_batch_size,
        limiter: AsyncRateLimiter | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.model = model
        self.dimensions = dimensions
        self.batch_size = max(1, batch_size)
        self.limiter = limiter or AsyncRateLimiter(
            rate=settings.embedding_requests_per_second,
            burst=2,
            max_concurrency=settings.llm_max_concurrency,
        )

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of texts in a single API request.

        Raises:
            EmbeddingError: If the API call fails or returns a short response.
        """
        if not texts:
            return []
        async with self.limiter.limit():
            try:
                response = await self.client.embeddings.create(
                    input=texts,
                    model=self.model,
                    dimensions=self.dimensions,
                )
            except OpenAIError as exc:
                logger.error("Embedding request failed: %s", exc)
                raise EmbeddingError() from exc
        vectors = [item.embedding for item in response.data]
        if len(vectors) != len(texts):
            msg = f"embedding generation failed: expected {len(texts)} vectors, got {len(vectors)}"
            raise EmbeddingError(msg)
        return vectors

    async def embed(self, text: str) -> list[float]:
        """Embed one text."""
        return (await self.embed_texts([text]))[0]

    async def embed_batch(self, chunks: list[TranscriptChunk], meeting_id: str) -> list[ChunkEmbedding]:
        """Embed chunks and bind them to *meeting_id*.

        Chunk topics are copied onto the embeddings as they are at call time.

        Returns:
            One :class:`ChunkEmbedding` per chunk, in chunk order.
        """
        embeddings: list[ChunkEmbedding] = []
        for i in range(0, len(chunks), self.batch_size):
            batch = chunks[i : i + self.batch_size]
            vectors = await self.embed_texts([c.content for c in batch])
            for chunk, vector in zip(batch, vectors, strict=True):
                embeddings.append(
                    ChunkEmbedding(
                        meeting_id=meeting_id,
                        chunk_id=chunk.id,
                        content=chunk.content,
                        embedding=vector,
                        start_time=chunk.start_time,
                        end_time=chunk.end_time,
                        speakers=list(chunk.speakers),
                        dominant_speaker=chunk.dominant_speaker,
                        token_count=chunk.token_count,
                        topics=list(chunk.topics),
                    )
                )
            logger.debug(
                "Embedded batch %d-%d of %d for meeting %s",
                i,
                i + len(batch),
                len(chunks),
                meeting_id,
            )
        return embeddings

    async def search_similar(
        self,
        query: str,
        meeting_id: str,
        limit: int = 10,
        min_similarity: float = 0.7,
        filters: SearchFilters | None = None,
    ) -> list[EmbeddingSearchResult]:
        """Find chunks of *meeting_id* similar to *query*.

        The query is only embedded when the store ranks by vector
        similarity; keyword-ranking stores receive the raw text.
        """
        if self.store is None:
            msg = "EmbeddingService.search_similar requires a vector store"
            raise RuntimeError(msg)
        query_embedding = await self.embed(query) if self.store.uses_embeddings else None
        return await self.store.search_similar(
            meeting_id,
            query_text=query,
            query_embedding=query_embedding,
            limit=limit,
            min_similarity=min_similarity,
            filters=filters,
        )
