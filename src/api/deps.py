"""Service wiring for the API.

Every long-lived object (clients, vector store, repository, job queue) is
built once here and handed to routes through FastAPI dependencies, so tests
can swap the whole container with ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from src.analysis.engine import MultiModelEngine
from src.analysis.guidelines import SupabaseGuidelineSource
from src.analysis.pipeline import AnalysisPipeline
from src.config import Settings, settings
from src.ingestion.chunking import TranscriptChunker
from src.ingestion.embeddings import EmbeddingService
from src.ingestion.storage import VectorStore, create_vector_store, get_supabase_client
from src.ingestion.topics import TopicExtractor
from src.jobs import AnalysisJobQueue, AnalysisProcessor
from src.persistence import MeetingRepository, create_meeting_repository
from src.rate_limit import AsyncRateLimiter
from src.retrieval.search import RAGService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: VectorStore
    rag: RAGService
    engine: MultiModelEngine
    pipeline: AnalysisPipeline
    repository: MeetingRepository
    processor: AnalysisProcessor
    queue: AnalysisJobQueue


def build_services(config: Settings = settings) -> Services:
    """Construct the full service graph from settings."""
    openai_client = AsyncOpenAI(api_key=config.openai_api_key, timeout=config.llm_timeout_seconds)
    anthropic_client = (
        AsyncAnthropic(api_key=config.anthropic_api_key, timeout=config.llm_timeout_seconds)
        if config.deep_model_enabled
        else None
    )

    store = create_vector_store(config)
    embeddings = EmbeddingService(
        openai_client,
        store,
        model=config.embedding_model,
        dimensions=config.embedding_dimensions,
        batch_size=config.embedding_batch_size,
        limiter=AsyncRateLimiter(
            rate=config.embedding_requests_per_second,
            burst=2,
            max_concurrency=config.llm_max_concurrency,
        ),
    )
    topics = TopicExtractor(
        openai_client,
        model=config.topic_model,
        limiter=AsyncRateLimiter(
            rate=config.topic_requests_per_second,
            max_concurrency=config.llm_max_concurrency,
        ),
    )
    rag = RAGService(
        store,
        embeddings,
        topics,
        TranscriptChunker(config.chunk_target_tokens, config.chunk_overlap_tokens, config.chunk_min_tokens),
        cache_ttl_seconds=config.rag_cache_ttl_seconds,
        index_timeout=config.index_timeout_seconds,
    )
    engine = MultiModelEngine(openai_client, anthropic_client, config=config)
    guideline_source = (
        SupabaseGuidelineSource(get_supabase_client(config)) if config.vector_store_configured else None
    )
    pipeline = AnalysisPipeline(rag, engine, guideline_source=guideline_source, config=config)
    repository = create_meeting_repository(config)
    processor = AnalysisProcessor(pipeline, repository)
    queue = AnalysisJobQueue(processor, max_retries=config.job_max_retries)

    logger.info(
        "Services ready (vector store: %s, deep model: %s)",
        store.backend.value,
        "on" if anthropic_client is not None else "off",
    )
    return Services(
        store=store,
        rag=rag,
        engine=engine,
        pipeline=pipeline,
        repository=repository,
        processor=processor,
        queue=queue,
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(settings)
