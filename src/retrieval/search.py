"""RAG service: transcript indexing plus semantic, temporal and speaker search."""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field

from src.config import settings
from src.errors import IndexingError, MeetingAnalysisError, StageTimeoutError
from src.ingestion.chunking import TranscriptChunker, process_transcript
from src.ingestion.embeddings import EmbeddingService
from src.ingestion.models import ChunkingStats, EmbeddingSearchResult, StorageStats
from src.ingestion.storage import SearchFilters, VectorStore
from src.ingestion.topics import TopicExtractor
from src.pipeline_config import AnalysisType

logger = logging.getLogger(__name__)

CHAT_ANALYSIS_TYPE = "chat"
GENERAL_ANALYSIS_TYPE = "general"


@dataclass(frozen=True)
class CannedQuery:
    """A fixed retrieval query used by the specialized searches."""

    query: str
    max_results: int
    min_similarity: float


SCRIPT_QUERIES: dict[str, CannedQuery] = {
    "abertura": CannedQuery("abertura introdução apresentação inicial saudação", 5, 0.6),
    "exploracao": CannedQuery("exploração cenário atual dores problemas desafios", 5, 0.6),
    "apresentacao": CannedQuery("apresentação freelaw empresa solução produto serviço", 5, 0.6),
    "beneficios": CannedQuery("benefícios vantagens ROI resultados economia tempo", 5, 0.6),
    "metodologia": CannedQuery("metodologia como funciona processo delegação workflow", 5, 0.6),
    "plano_ideal": CannedQuery("plano ideal proposta comercial preços valores investimento", 5, 0.6),
    "encerramento": CannedQuery("encerramento próximos passos follow up fechamento", 5, 0.6),
}

ICP_QUERIES: dict[str, CannedQuery] = {
    "tamanho": CannedQuery("tamanho escritório quantos advogados funcionários pessoas equipe", 5, 0.6),
    "faturamento": CannedQuery("faturamento receita mensal volume financeiro lucro", 5, 0.6),
    "area": CannedQuery("área atuação especialização direito segmento nicho", 5, 0.6),
    "dores": CannedQuery("dores sobrecarga trabalho prazos perdidos demanda volume", 5, 0.6),
    "decisor": CannedQuery("decisor dono sócio quem decide compras investimentos", 5, 0.6),
}

OBJECTION_QUERIES: dict[str, CannedQuery] = {
    "preco": CannedQuery("preço caro valor alto orçamento custo investimento", 3, 0.65),
    "necessidade": CannedQuery("não preciso necessidade urgência prioridade", 3, 0.65),
    "solucao_atual": CannedQuery("já tenho solução sistema atual ferramenta", 3, 0.65),
    "adiamento": CannedQuery("vou pensar avaliar consultar decidir", 3, 0.65),
    "confianca": CannedQuery("não confio conheço experiência referência", 3, 0.65),
    "timing": CannedQuery("não é momento timing época período", 3, 0.65),
}

MAX_OBJECTION_RESULTS = 10
QUICK_SUMMARY_QUERY = CannedQuery("resumo pontos principais decisões próximos passos", 10, 0.6)
# Upper bound (seconds) for "whole meeting" time-range lookups
WHOLE_MEETING_END = 24 * 60 * 60.0


@dataclass
class SearchOptions:
    """Options for :meth:`RAGService.search`."""

    analysis_type: str = GENERAL_ANALYSIS_TYPE
    max_results: int = 10
    min_similarity: float = 0.7
    use_cache: bool = True
    filters: SearchFilters = field(default_factory=SearchFilters)

    def cache_fingerprint(self) -> str:
        return json.dumps(
            {
                "max_results": self.max_results,
                "min_similarity": self.min_similarity,
                "time_range": self.filters.time_range,
                "speakers": self.filters.speakers,
                "topics": self.filters.topics,
            },
            sort_keys=True,
        )


@dataclass
class IndexResult:
    """Outcome of :meth:`RAGService.index_transcript`."""

    meeting_id: str
    chunk_count: int
    embedding_count: int
    processing_time_ms: int
    stats: ChunkingStats


def build_cache_key(meeting_id: str, analysis_type: str, query: str, options: SearchOptions) -> str:
    """MD5 over meeting, analysis type, query and search options."""
    raw = f"{meeting_id}_{analysis_type}_{query}_{options.cache_fingerprint()}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def dedupe_results(results: list[EmbeddingSearchResult]) -> list[EmbeddingSearchResult]:
    """Drop repeated chunk ids (first occurrence wins), then sort by similarity."""
    seen: set[str] = set()
    unique: list[EmbeddingSearchResult] = []
    for result in results:
        if result.chunk_id in seen:
            continue
        seen.add(result.chunk_id)
        unique.append(result)
    return sorted(unique, key=lambda r: r.similarity, reverse=True)


class RAGService:
    """Orchestrates chunk → topics → embed → store and exposes retrieval.

    Indexing is atomic per meeting: everything is computed in memory and
    the store sees a single ``replace_for_meeting`` call at the end, so a
    failure in any stage leaves the previous index untouched. Runs for the
    same meeting are serialized by a per-meeting lock.

    Args:
        store: Vector store handle owned by the caller.
        embeddings: Embedding service bound to the same store.
        topics: Topic extractor; ``None`` skips topic tagging.
        chunker: Chunker used for indexing.
        cache_ttl_seconds: Lifetime of cached search results.
        index_timeout: Seconds allowed for one indexing run.
    """

    def __init__(
        self,
        store: VectorStore,
        embeddings: EmbeddingService,
        topics: TopicExtractor | None = None,
        chunker: TranscriptChunker | None = None,
        cache_ttl_seconds: int = settings.rag_cache_ttl_seconds,
        index_timeout: float = settings.index_timeout_seconds,
    ) -> None:
        self.store = store
        self.embeddings = embeddings
        if self.embeddings.store is None:
            self.embeddings.store = store
        self.topics = topics
        self.chunker = chunker or TranscriptChunker()
        self.cache_ttl_seconds = cache_ttl_seconds
        self.index_timeout = index_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    def meeting_lock(self, meeting_id: str) -> asyncio.Lock:
        return self._locks.setdefault(meeting_id, asyncio.Lock())

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_transcript(self, meeting_id: str, raw_text: str) -> IndexResult:
        """Chunk, tag, embed and store a transcript for *meeting_id*.

        Raises:
            IndexingError: If any stage fails; nothing is written in that case.
            StageTimeoutError: If the run exceeds ``index_timeout``.
        """
        lock = self.meeting_lock(meeting_id)
        self._lock_users[meeting_id] += 1
        try:
            async with lock:
                try:
                    return await asyncio.wait_for(
                        self._index_locked(meeting_id, raw_text), timeout=self.index_timeout
                    )
                except TimeoutError as exc:
                    msg = f"indexing exceeded {self.index_timeout:.0f}s"
                    raise StageTimeoutError(msg, meeting_id=meeting_id, stage="index") from exc
        finally:
            # Drop the lock once no indexing run holds or awaits it.
            self._lock_users[meeting_id] -= 1
            if self._lock_users[meeting_id] <= 0:
                del self._lock_users[meeting_id]
                self._locks.pop(meeting_id, None)

    async def _index_locked(self, meeting_id: str, raw_text: str) -> IndexResult:
        started = time.perf_counter()
        stage = "chunking"
        try:
            _, chunks, stats = process_transcript(raw_text, self.chunker)
            logger.info("Meeting %s: %d chunks from %d segments", meeting_id, len(chunks), stats.total_segments)

            if chunks and self.topics is not None:
                stage = "topics"
                topic_map = await self.topics.tag_chunks(chunks)
                chunks = [dataclasses.replace(c, topics=topic_map.get(c.id, [])) for c in chunks]

            stage = "embedding"
            embedded = await self.embeddings.embed_batch(chunks, meeting_id)

            stage = "storage"
            await self.store.replace_for_meeting(meeting_id, embedded)
            await self.store.invalidate_cache(meeting_id)
        except MeetingAnalysisError as exc:
            logger.error("Indexing failed for meeting %s at %s: %s", meeting_id, stage, exc)
            msg = f"indexing failed during {stage}: {exc.message}"
            raise IndexingError(msg, meeting_id=meeting_id, stage=stage) from exc

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("Indexed meeting %s: %d embeddings in %dms", meeting_id, len(embedded), elapsed_ms)
        return IndexResult(
            meeting_id=meeting_id,
            chunk_count=len(chunks),
            embedding_count=len(embedded),
            processing_time_ms=elapsed_ms,
            stats=stats,
        )

    # ------------------------------------------------------------------
    # Generic search
    # ------------------------------------------------------------------

    async def search(
        self, meeting_id: str, query: str, options: SearchOptions | None = None
    ) -> list[EmbeddingSearchResult]:
        """Similarity search restricted to one meeting, optionally cached."""
        options = options or SearchOptions()
        cache_key = build_cache_key(meeting_id, options.analysis_type, query, options)

        if options.use_cache:
            cached = await self.store.get_cached(meeting_id, options.analysis_type, cache_key)
            if cached is not None:
                logger.debug("Cache hit for meeting %s (%s)", meeting_id, options.analysis_type)
                return cached

        results = await self.embeddings.search_similar(
            query,
            meeting_id,
            limit=options.max_results,
            min_similarity=options.min_similarity,
            filters=options.filters,
        )

        if options.use_cache and results:
            await self.store.put_cached(
                meeting_id, options.analysis_type, cache_key, results, self.cache_ttl_seconds
            )
        return results

    async def _run_canned(
        self,
        meeting_id: str,
        analysis_type: str,
        queries: dict[str, CannedQuery],
        use_cache: bool,
    ) -> list[EmbeddingSearchResult]:
        batches = await asyncio.gather(
            *(
                self.search(
                    meeting_id,
                    canned.query,
                    SearchOptions(
                        analysis_type=analysis_type,
                        max_results=canned.max_results,
                        min_similarity=canned.min_similarity,
                        use_cache=use_cache,
                    ),
                )
                for canned in queries.values()
            )
        )
        results = dedupe_results([r for batch in batches for r in batch])
        if not results and not self.store.uses_embeddings:
            # Keyword ranking found nothing; analyses still need evidence.
            limit = max(q.max_results for q in queries.values())
            results = await self.leading_chunks(meeting_id, limit)
        return results

    # ------------------------------------------------------------------
    # Specialized searches
    # ------------------------------------------------------------------

    async def search_for_script(self, meeting_id: str, use_cache: bool = True) -> list[EmbeddingSearchResult]:
        return await self._run_canned(meeting_id, AnalysisType.SCRIPT.value, SCRIPT_QUERIES, use_cache)

    async def search_for_icp(self, meeting_id: str, use_cache: bool = True) -> list[EmbeddingSearchResult]:
        return await self._run_canned(meeting_id, AnalysisType.ICP.value, ICP_QUERIES, use_cache)

    async def search_for_objections(
        self, meeting_id: str, use_cache: bool = True
    ) -> list[EmbeddingSearchResult]:
        results = await self._run_canned(
            meeting_id, AnalysisType.OBJECTIONS.value, OBJECTION_QUERIES, use_cache
        )
        return results[:MAX_OBJECTION_RESULTS]

    async def search_for_type(
        self, meeting_id: str, analysis_type: AnalysisType, use_cache: bool = True
    ) -> list[EmbeddingSearchResult]:
        if analysis_type is AnalysisType.SCRIPT:
            return await self.search_for_script(meeting_id, use_cache)
        if analysis_type is AnalysisType.ICP:
            return await self.search_for_icp(meeting_id, use_cache)
        return await self.search_for_objections(meeting_id, use_cache)

    async def search_for_summary(self, meeting_id: str) -> list[EmbeddingSearchResult]:
        return await self._run_canned(
            meeting_id, GENERAL_ANALYSIS_TYPE, {"resumo": QUICK_SUMMARY_QUERY}, use_cache=True
        )

    async def search_for_chat(
        self, meeting_id: str, question: str, max_results: int = 5
    ) -> list[EmbeddingSearchResult]:
        """Live search for chat; never served from cache."""
        return await self.search(
            meeting_id,
            question,
            SearchOptions(
                analysis_type=CHAT_ANALYSIS_TYPE,
                max_results=max_results,
                min_similarity=0.6,
                use_cache=False,
            ),
        )

    async def search_by_time_range(
        self, meeting_id: str, start: float, end: float
    ) -> list[EmbeddingSearchResult]:
        return await self.store.get_by_time_range(meeting_id, start, end)

    async def search_by_speaker(self, meeting_id: str, speaker: str) -> list[EmbeddingSearchResult]:
        return await self.store.get_by_speaker(meeting_id, speaker)

    async def search_by_topics(self, meeting_id: str, topics: list[str]) -> list[EmbeddingSearchResult]:
        return await self.store.get_by_topics(meeting_id, topics)

    async def leading_chunks(self, meeting_id: str, limit: int) -> list[EmbeddingSearchResult]:
        """The first *limit* chunks of a meeting in time order."""
        results = await self.store.get_by_time_range(meeting_id, 0.0, WHOLE_MEETING_END)
        return sorted(results, key=lambda r: r.start_time)[:limit]

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def has_index(self, meeting_id: str) -> bool:
        stats = await self.store.storage_stats(meeting_id)
        return stats.total_chunks > 0

    async def get_stats(self, meeting_id: str | None = None) -> StorageStats:
        return await self.store.storage_stats(meeting_id)

    async def cleanup_cache(self) -> int:
        removed = await self.store.cleanup_expired_cache()
        logger.info("Removed %d expired cache entries", removed)
        return removed

    async def test_connection(self) -> bool:
        return await self.store.health_check()
