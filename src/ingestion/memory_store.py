"""In-memory vector store used when Supabase is not configured."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from src.ingestion.models import ChunkEmbedding, EmbeddingSearchResult, StorageStats
from src.ingestion.storage import SearchFilters, VectorStore
from src.pipeline_config import VectorBackend
from src.retrieval.ranking import normalize_text, rank_by_keywords

logger = logging.getLogger(__name__)

# Keyword matches carry no real similarity; every hit reports this score.
KEYWORD_MATCH_SIMILARITY = 0.8


@dataclass
class _CacheEntry:
    results: list[EmbeddingSearchResult]
    expires_at: float


class InMemoryVectorStore(VectorStore):
    """Process-local store with keyword ranking instead of vector similarity.

    State lives on the instance, so each service (or test) gets an isolated
    index. Similarity scores are fixed and must not be compared.

    Args:
        clock: Monotonic clock for cache expiry, injectable for tests.
    """

    backend = VectorBackend.MEMORY
    uses_embeddings = False

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._chunks: dict[str, dict[str, ChunkEmbedding]] = {}
        self._cache: dict[tuple[str, str, str], _CacheEntry] = {}
        self._clock = clock

    def _ordered(self, meeting_id: str) -> list[ChunkEmbedding]:
        return sorted(self._chunks.get(meeting_id, {}).values(), key=lambda c: c.start_time)

    async def upsert_embeddings(self, embeddings: list[ChunkEmbedding]) -> None:
        for item in embeddings:
            self._chunks.setdefault(item.meeting_id, {})[item.chunk_id] = item

    async def replace_for_meeting(self, meeting_id: str, embeddings: list[ChunkEmbedding]) -> None:
        self._chunks[meeting_id] = {e.chunk_id: e for e in embeddings}
        logger.debug("Replaced %d chunks for meeting %s", len(embeddings), meeting_id)

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
        if min_similarity > KEYWORD_MATCH_SIMILARITY:
            return []
        candidates = _apply_filters(self._ordered(meeting_id), filters)
        ranked = rank_by_keywords(
            candidates,
            [c.content for c in candidates],
            [c.start_time for c in candidates],
            query_text,
        )
        return [
            EmbeddingSearchResult.from_embedding(c, KEYWORD_MATCH_SIMILARITY) for c in ranked[:limit]
        ]

    async def get_by_time_range(
        self, meeting_id: str, start: float, end: float
    ) -> list[EmbeddingSearchResult]:
        matches = _apply_filters(self._ordered(meeting_id), SearchFilters(time_range=(start, end)))
        return [EmbeddingSearchResult.from_embedding(c, 1.0) for c in matches]

    async def get_by_speaker(self, meeting_id: str, speaker: str) -> list[EmbeddingSearchResult]:
        matches = _apply_filters(self._ordered(meeting_id), SearchFilters(speakers=[speaker]))
        return [EmbeddingSearchResult.from_embedding(c, 1.0) for c in matches]

    async def get_by_topics(self, meeting_id: str, topics: list[str]) -> list[EmbeddingSearchResult]:
        matches = _apply_filters(self._ordered(meeting_id), SearchFilters(topics=topics))
        return [EmbeddingSearchResult.from_embedding(c, 1.0) for c in matches]

    async def delete_for_meeting(self, meeting_id: str) -> None:
        self._chunks.pop(meeting_id, None)
        await self.invalidate_cache(meeting_id)

    async def invalidate_cache(self, meeting_id: str) -> None:
        for key in [k for k in self._cache if k[0] == meeting_id]:
            del self._cache[key]

    async def get_cached(
        self, meeting_id: str, analysis_type: str, query_hash: str
    ) -> list[EmbeddingSearchResult] | None:
        key = (meeting_id, analysis_type, query_hash)
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._cache[key]
            return None
        return list(entry.results)

    async def put_cached(
        self,
        meeting_id: str,
        analysis_type: str,
        query_hash: str,
        results: list[EmbeddingSearchResult],
        ttl_seconds: int,
    ) -> None:
        self._cache[(meeting_id, analysis_type, query_hash)] = _CacheEntry(
            results=list(results), expires_at=self._clock() + ttl_seconds
        )

    async def cleanup_expired_cache(self) -> int:
        now = self._clock()
        expired = [k for k, v in self._cache.items() if v.expires_at <= now]
        for key in expired:
            del self._cache[key]
        return len(expired)

    async def storage_stats(self, meeting_id: str | None = None) -> StorageStats:
        if meeting_id is not None:
            groups = {meeting_id: self._chunks.get(meeting_id, {})}
        else:
            groups = self._chunks
        items = [c for group in groups.values() for c in group.values()]
        total_tokens = sum(c.token_count for c in items)
        return StorageStats(
            total_chunks=len(items),
            total_meetings=sum(1 for group in groups.values() if group),
            avg_chunk_size=round(total_tokens / len(items)) if items else 0,
            storage_used=total_tokens * 4,
        )

    async def health_check(self) -> bool:
        return True


def _apply_filters(chunks: list[ChunkEmbedding], filters: SearchFilters | None) -> list[ChunkEmbedding]:
    if filters is None or filters.is_empty():
        return chunks
    result = chunks
    if filters.time_range is not None:
        start, end = filters.time_range
        result = [c for c in result if c.start_time <= end and c.end_time >= start]
    if filters.speakers:
        wanted = [normalize_text(s) for s in filters.speakers]
        result = [
            c
            for c in result
            if any(w in normalize_text(s) for s in c.speakers for w in wanted)
        ]
    if filters.topics:
        wanted_topics = [normalize_text(t) for t in filters.topics]
        result = [
            c
            for c in result
            if any(w in normalize_text(t) for t in c.topics for w in wanted_topics)
        ]
    return result
