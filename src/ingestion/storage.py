"""Vector store interface and the Supabase (pgvector) backend."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar, cast

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from src.config import Settings, settings
from src.errors import VectorStoreError
from src.ingestion.models import ChunkEmbedding, EmbeddingSearchResult, StorageStats
from src.pipeline_config import VectorBackend

logger = logging.getLogger(__name__)

CHUNKS_TABLE = "transcript_chunks"
CACHE_TABLE = "rag_analysis_cache"

T = TypeVar("T")


@dataclass
class SearchFilters:
    """Optional AND-combined restrictions on a similarity search."""

    time_range: tuple[float, float] | None = None
    speakers: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return self.time_range is None and not self.speakers and not self.topics


class VectorStore(ABC):
    """Persistence for chunk embeddings and the RAG result cache.

    Implementations are keyed by ``(meeting_id, chunk_id)`` with upsert
    semantics. ``uses_embeddings`` tells callers whether
    :meth:`search_similar` ranks by vector similarity (and so needs a query
    embedding) or by keyword matching with a fixed score.
    """

    backend: VectorBackend
    uses_embeddings: bool = True

    @abstractmethod
    async def upsert_embeddings(self, embeddings: list[ChunkEmbedding]) -> None: ...

    @abstractmethod
    async def replace_for_meeting(self, meeting_id: str, embeddings: list[ChunkEmbedding]) -> None:
        """Upsert *embeddings* and drop any other chunk stored for the meeting."""

    @abstractmethod
    async def search_similar(
        self,
        meeting_id: str,
        *,
        query_text: str,
        query_embedding: list[float] | None,
        limit: int,
        min_similarity: float,
        filters: SearchFilters | None = None,
    ) -> list[EmbeddingSearchResult]: ...

    @abstractmethod
    async def get_by_time_range(
        self, meeting_id: str, start: float, end: float
    ) -> list[EmbeddingSearchResult]: ...

    @abstractmethod
    async def get_by_speaker(self, meeting_id: str, speaker: str) -> list[EmbeddingSearchResult]: ...

    @abstractmethod
    async def get_by_topics(self, meeting_id: str, topics: list[str]) -> list[EmbeddingSearchResult]: ...

    @abstractmethod
    async def delete_for_meeting(self, meeting_id: str) -> None: ...

    @abstractmethod
    async def get_cached(
        self, meeting_id: str, analysis_type: str, query_hash: str
    ) -> list[EmbeddingSearchResult] | None:
        """Return cached results, or None on a miss or an expired entry."""

    @abstractmethod
    async def put_cached(
        self,
        meeting_id: str,
        analysis_type: str,
        query_hash: str,
        results: list[EmbeddingSearchResult],
        ttl_seconds: int,
    ) -> None: ...

    @abstractmethod
    async def invalidate_cache(self, meeting_id: str) -> None:
        """Drop every cached search result for *meeting_id*."""

    @abstractmethod
    async def cleanup_expired_cache(self) -> int:
        """Delete expired cache entries and return how many were removed."""

    @abstractmethod
    async def storage_stats(self, meeting_id: str | None = None) -> StorageStats: ...

    @abstractmethod
    async def health_check(self) -> bool: ...


def get_supabase_client(config: Settings | None = None) -> Client:
    """Create and return a Supabase client from settings."""
    config = config or settings
    return create_client(config.supabase_url, config.supabase_key)


class SupabaseVectorStore(VectorStore):
    """pgvector-backed store using Supabase tables and RPC functions.

    The synchronous Supabase client runs in a worker thread so calls never
    block the event loop.
    """

    backend = VectorBackend.SUPABASE
    uses_embeddings = True

    def __init__(self, client: Client) -> None:
        self.client = client

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except (APIError, httpx.HTTPError) as exc:
            msg = f"{operation} failed: {exc}"
            logger.error("Supabase %s", msg)
            raise VectorStoreError(msg, stage=operation) from exc

    async def _rpc(self, name: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        result = await self._run(name, lambda: self.client.rpc(name, params).execute())
        # Supabase .data is typed as JSON (broad union); cast to concrete type.
        return cast(list[dict[str, Any]], result.data or [])

    async def upsert_embeddings(self, embeddings: list[ChunkEmbedding]) -> None:
        rows = [e.to_row() for e in embeddings]
        # Upsert in batches of 50
        batch_size = 50
        for i in range(0, len(rows), batch_size):
            batch = rows[i : i + batch_size]
            await self._run(
                "upsert_embeddings",
                lambda batch=batch: self.client.table(CHUNKS_TABLE)
                .upsert(batch, on_conflict="meeting_id,chunk_id")
                .execute(),
            )
        logger.info("Stored %d chunk embeddings", len(rows))

    async def replace_for_meeting(self, meeting_id: str, embeddings: list[ChunkEmbedding]) -> None:
        await self.upsert_embeddings(embeddings)
        keep = [e.chunk_id for e in embeddings]
        if keep:
            await self._run(
                "prune_stale_chunks",
                lambda: self.client.table(CHUNKS_TABLE)
                .delete()
                .eq("meeting_id", meeting_id)
                .not_.in_("chunk_id", keep)
                .execute(),
            )
        else:
            await self.delete_for_meeting(meeting_id)

    async def search_similar(
        self,
        meeting_id: str,
        *,
        query_text: str,
        query_embedding: list[float] | None,
        limit: int,
        min_similarity: float,
        filters: SearchFilters | None = None,
    ) -> list[EmbeddingSearchResult]:
        if query_embedding is None:
            msg = "Supabase similarity search requires a query embedding"
            raise ValueError(msg)
        filters = filters or SearchFilters()
        params: dict[str, Any] = {
            "query_embedding": query_embedding,
            "target_meeting_id": meeting_id,
            "similarity_threshold": min_similarity,
            "max_results": limit,
            "time_start": filters.time_range[0] if filters.time_range else None,
            "time_end": filters.time_range[1] if filters.time_range else None,
            "target_speakers": filters.speakers or None,
            "target_topics": filters.topics or None,
        }
        rows = await self._rpc("search_transcript_chunks", params)
        results = [EmbeddingSearchResult.from_row(r) for r in rows]
        return sorted(results, key=lambda r: r.similarity, reverse=True)

    async def get_by_time_range(
        self, meeting_id: str, start: float, end: float
    ) -> list[EmbeddingSearchResult]:
        rows = await self._rpc(
            "get_chunks_by_time_range",
            {"target_meeting_id": meeting_id, "start_time_param": start, "end_time_param": end},
        )
        return [EmbeddingSearchResult.from_row(r, similarity=1.0) for r in rows]

    async def get_by_speaker(self, meeting_id: str, speaker: str) -> list[EmbeddingSearchResult]:
        rows = await self._rpc(
            "get_chunks_by_speaker",
            {"target_meeting_id": meeting_id, "speaker_name": speaker},
        )
        return [EmbeddingSearchResult.from_row(r, similarity=1.0) for r in rows]

    async def get_by_topics(self, meeting_id: str, topics: list[str]) -> list[EmbeddingSearchResult]:
        rows = await self._rpc(
            "get_chunks_by_topics",
            {"target_meeting_id": meeting_id, "topic_list": topics},
        )
        return [EmbeddingSearchResult.from_row(r, similarity=1.0) for r in rows]

    async def delete_for_meeting(self, meeting_id: str) -> None:
        await self._run(
            "delete_for_meeting",
            lambda: self.client.table(CHUNKS_TABLE).delete().eq("meeting_id", meeting_id).execute(),
        )

    async def invalidate_cache(self, meeting_id: str) -> None:
        await self._run(
            "invalidate_cache",
            lambda: self.client.table(CACHE_TABLE).delete().eq("meeting_id", meeting_id).execute(),
        )

    async def get_cached(
        self, meeting_id: str, analysis_type: str, query_hash: str
    ) -> list[EmbeddingSearchResult] | None:
        now = datetime.now(UTC).isoformat()
        result = await self._run(
            "get_cached",
            lambda: self.client.table(CACHE_TABLE)
            .select("relevant_chunks")
            .eq("meeting_id", meeting_id)
            .eq("analysis_type", analysis_type)
            .eq("query_hash", query_hash)
            .gt("expires_at", now)
            .limit(1)
            .execute(),
        )
        rows = cast(list[dict[str, Any]], result.data or [])
        if not rows:
            return None
        return [EmbeddingSearchResult.from_dict(r) for r in rows[0].get("relevant_chunks") or []]

    async def put_cached(
        self,
        meeting_id: str,
        analysis_type: str,
        query_hash: str,
        results: list[EmbeddingSearchResult],
        ttl_seconds: int,
    ) -> None:
        expires_at = datetime.now(UTC) + timedelta(seconds=ttl_seconds)
        row = {
            "meeting_id": meeting_id,
            "analysis_type": analysis_type,
            "query_hash": query_hash,
            "relevant_chunks": [r.to_dict() for r in results],
            "expires_at": expires_at.isoformat(),
        }
        await self._run(
            "put_cached",
            lambda: self.client.table(CACHE_TABLE)
            .upsert(row, on_conflict="meeting_id,analysis_type,query_hash")
            .execute(),
        )

    async def cleanup_expired_cache(self) -> int:
        rows = await self._rpc("cleanup_expired_cache", {})
        return len(rows)

    async def storage_stats(self, meeting_id: str | None = None) -> StorageStats:
        def query() -> Any:
            builder = self.client.table(CHUNKS_TABLE).select("meeting_id,token_count")
            if meeting_id:
                builder = builder.eq("meeting_id", meeting_id)
            return builder.execute()

        result = await self._run("storage_stats", query)
        rows = cast(list[dict[str, Any]], result.data or [])
        total_tokens = sum(int(r.get("token_count") or 0) for r in rows)
        return StorageStats(
            total_chunks=len(rows),
            total_meetings=len({r["meeting_id"] for r in rows}),
            avg_chunk_size=round(total_tokens / len(rows)) if rows else 0,
            storage_used=total_tokens * 4,
        )

    async def health_check(self) -> bool:
        try:
            await self._run(
                "health_check",
                lambda: self.client.table(CHUNKS_TABLE).select("chunk_id").limit(1).execute(),
            )
        except VectorStoreError:
            return False
        return True


def create_vector_store(config: Settings | None = None) -> VectorStore:
    """Return the Supabase store when configured, else the in-memory fallback."""
    config = config or settings
    if config.vector_store_configured:
        logger.info("Using Supabase vector store")
        return SupabaseVectorStore(get_supabase_client(config))

    from src.ingestion.memory_store import InMemoryVectorStore

    logger.warning("Supabase not configured; using in-memory vector store (keyword ranking)")
    return InMemoryVectorStore()
