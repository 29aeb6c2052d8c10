"""Shared fixtures: an in-memory service graph wired to fake model clients."""

from __future__ import annotations

import pytest

from src.analysis.engine import MultiModelEngine
from src.analysis.pipeline import AnalysisPipeline
from src.config import Settings
from src.ingestion.embeddings import EmbeddingService
from src.ingestion.memory_store import InMemoryVectorStore
from src.ingestion.topics import TopicExtractor
from src.persistence import InMemoryMeetingRepository
from src.retrieval.search import RAGService
from tests.fakes import FakeAnthropic, FakeOpenAI, unlimited


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        openai_api_key="sk-test",
        anthropic_api_key="sk-ant-test",
        supabase_url="",
        supabase_key="",
        webhook_secret="s3cret",
        use_deep_model=True,
    )


@pytest.fixture
def openai_client() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def anthropic_client() -> FakeAnthropic:
    return FakeAnthropic()


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def rag(openai_client: FakeOpenAI, store: InMemoryVectorStore) -> RAGService:
    embeddings = EmbeddingService(openai_client, store, limiter=unlimited())  # type: ignore[arg-type]
    topics = TopicExtractor(openai_client, limiter=unlimited())  # type: ignore[arg-type]
    return RAGService(store, embeddings, topics)


@pytest.fixture
def engine(openai_client: FakeOpenAI, anthropic_client: FakeAnthropic, test_settings: Settings) -> MultiModelEngine:
    return MultiModelEngine(
        openai_client,  # type: ignore[arg-type]
        anthropic_client,  # type: ignore[arg-type]
        config=test_settings,
        limiter=unlimited(),
    )


@pytest.fixture
def pipeline(rag: RAGService, engine: MultiModelEngine, test_settings: Settings) -> AnalysisPipeline:
    return AnalysisPipeline(rag, engine, config=test_settings)


@pytest.fixture
def repository() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()
