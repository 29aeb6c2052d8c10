"""Tests for the Supabase-backed store, repository and guideline source (mocked client)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest
from postgrest.exceptions import APIError

from src.analysis.guidelines import ICP_GUIDELINES, SCRIPT_GUIDELINES, SupabaseGuidelineSource, get_active_guidelines
from src.config import Settings
from src.errors import UpstreamServiceError, VectorStoreError
from src.ingestion.memory_store import InMemoryVectorStore
from src.ingestion.models import ChunkEmbedding
from src.ingestion.storage import CACHE_TABLE, CHUNKS_TABLE, SupabaseVectorStore, create_vector_store
from src.persistence import SupabaseMeetingRepository


def embedding(chunk_id: str, meeting_id: str = "m-1") -> ChunkEmbedding:
    return ChunkEmbedding(
        meeting_id=meeting_id,
        chunk_id=chunk_id,
        content="Cliente: está caro",
        embedding=[0.1, 0.2],
        start_time=150.0,
        end_time=195.0,
        speakers=["Cliente"],
        dominant_speaker="Cliente",
        token_count=10,
    )


def rpc_rows(client: MagicMock, rows: list[dict]) -> None:
    client.rpc.return_value.execute.return_value.data = rows


# ---------------------------------------------------------------------------
# SupabaseVectorStore
# ---------------------------------------------------------------------------


class TestSupabaseVectorStore:
    async def test_search_similar_calls_rpc_and_sorts(self) -> None:
        client = MagicMock()
        rpc_rows(
            client,
            [
                {"chunk_id": "chunk_001", "content": "b", "similarity": 0.71, "start_time": 60, "end_time": 90},
                {"chunk_id": "chunk_000", "content": "a", "similarity": 0.93, "start_time": 0, "end_time": 30},
            ],
        )
        store = SupabaseVectorStore(client)

        results = await store.search_similar(
            "m-1", query_text="preço", query_embedding=[0.1, 0.2], limit=5, min_similarity=0.6
        )

        assert [r.chunk_id for r in results] == ["chunk_000", "chunk_001"]
        name, params = client.rpc.call_args.args
        assert name == "search_transcript_chunks"
        assert params["target_meeting_id"] == "m-1"
        assert params["similarity_threshold"] == 0.6
        assert params["target_speakers"] is None

    async def test_search_requires_query_embedding(self) -> None:
        store = SupabaseVectorStore(MagicMock())
        with pytest.raises(ValueError, match="query embedding"):
            await store.search_similar("m-1", query_text="preço", query_embedding=None, limit=5, min_similarity=0.6)

    async def test_api_error_becomes_vector_store_error(self) -> None:
        client = MagicMock()
        client.rpc.side_effect = APIError({"message": "permission denied", "code": "42501"})
        store = SupabaseVectorStore(client)

        with pytest.raises(VectorStoreError) as exc_info:
            await store.get_by_speaker("m-1", "Cliente")

        assert exc_info.value.stage == "get_chunks_by_speaker"

    async def test_lookups_report_full_similarity(self) -> None:
        client = MagicMock()
        rpc_rows(client, [{"chunk_id": "chunk_000", "content": "a", "start_time": 0, "end_time": 30}])
        results = await SupabaseVectorStore(client).get_by_time_range("m-1", 0.0, 60.0)
        assert results[0].similarity == 1.0

    async def test_upsert_in_batches_of_fifty(self) -> None:
        client = MagicMock()
        await SupabaseVectorStore(client).upsert_embeddings([embedding(f"chunk_{i:03d}") for i in range(120)])

        upsert = client.table.return_value.upsert
        assert upsert.call_count == 3
        assert [len(c.args[0]) for c in upsert.call_args_list] == [50, 50, 20]
        assert upsert.call_args.kwargs["on_conflict"] == "meeting_id,chunk_id"
        client.table.assert_called_with(CHUNKS_TABLE)

    async def test_replace_prunes_stale_chunks(self) -> None:
        client = MagicMock()
        await SupabaseVectorStore(client).replace_for_meeting("m-1", [embedding("chunk_000")])

        delete = client.table.return_value.delete.return_value
        delete.eq.assert_called_once_with("meeting_id", "m-1")
        delete.eq.return_value.not_.in_.assert_called_once_with("chunk_id", ["chunk_000"])

    async def test_replace_with_nothing_clears_meeting(self) -> None:
        client = MagicMock()
        await SupabaseVectorStore(client).replace_for_meeting("m-1", [])

        client.table.return_value.upsert.assert_not_called()
        client.table.return_value.delete.return_value.eq.assert_called_once_with("meeting_id", "m-1")

    async def test_invalidate_cache_deletes_meeting_rows(self) -> None:
        client = MagicMock()
        await SupabaseVectorStore(client).invalidate_cache("m-1")

        client.table.assert_called_with(CACHE_TABLE)
        client.table.return_value.delete.return_value.eq.assert_called_once_with("meeting_id", "m-1")

    async def test_cache_hit_and_miss(self) -> None:
        client = MagicMock()
        lookup = (
            client.table.return_value.select.return_value.eq.return_value.eq.return_value.eq.return_value.gt.return_value
        )
        lookup.limit.return_value.execute.return_value.data = [
            {"relevant_chunks": [{"chunk_id": "chunk_000", "content": "a", "similarity": 0.8}]}
        ]
        store = SupabaseVectorStore(client)

        cached = await store.get_cached("m-1", "script", "abc")
        assert cached is not None
        assert cached[0].chunk_id == "chunk_000"

        lookup.limit.return_value.execute.return_value.data = []
        assert await store.get_cached("m-1", "script", "abc") is None

    async def test_storage_stats(self) -> None:
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.execute.return_value.data = [
            {"meeting_id": "m-1", "token_count": 100},
            {"meeting_id": "m-1", "token_count": 300},
        ]

        stats = await SupabaseVectorStore(client).storage_stats("m-1")

        assert stats.total_chunks == 2
        assert stats.total_meetings == 1
        assert stats.avg_chunk_size == 200
        assert stats.storage_used == 1600

    async def test_health_check(self) -> None:
        client = MagicMock()
        assert await SupabaseVectorStore(client).health_check()
        client.table.side_effect = httpx.ConnectError("connection refused")
        assert not await SupabaseVectorStore(client).health_check()


class TestCreateVectorStore:
    def test_unconfigured_uses_memory(self) -> None:
        store = create_vector_store(Settings(_env_file=None))  # type: ignore[call-arg]
        assert isinstance(store, InMemoryVectorStore)

    def test_configured_uses_supabase(self) -> None:
        config = Settings(_env_file=None, supabase_url="https://abc.supabase.co", supabase_key="key")  # type: ignore[call-arg]
        with patch("src.ingestion.storage.create_client") as mock_create:
            store = create_vector_store(config)
        assert isinstance(store, SupabaseVectorStore)
        mock_create.assert_called_once_with("https://abc.supabase.co", "key")


# ---------------------------------------------------------------------------
# Repository and guidelines
# ---------------------------------------------------------------------------


class TestSupabaseMeetingRepository:
    async def test_find_existing_analysis(self) -> None:
        client = MagicMock()
        select = client.table.return_value.select.return_value
        select.eq.return_value.limit.return_value.execute.return_value.data = [{"id": 42}]

        assert await SupabaseMeetingRepository(client).find_existing_analysis("m-1") == "42"
        client.table.assert_called_with("analyses")

    async def test_errors_are_upstream_errors(self) -> None:
        client = MagicMock()
        client.table.side_effect = APIError({"message": "timeout"})
        with pytest.raises(UpstreamServiceError) as exc_info:
            await SupabaseMeetingRepository(client).get_transcript("t-1")
        assert exc_info.value.service == "database"


class TestGuidelines:
    async def test_defaults_without_source(self) -> None:
        guidelines = await get_active_guidelines()
        assert guidelines.script == SCRIPT_GUIDELINES
        assert guidelines.icp == ICP_GUIDELINES

    async def test_active_playbook_overrides_default(self) -> None:
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value.eq.return_value.order.return_value
        chain.limit.return_value.execute.return_value.data = [{"id": 7, "content": "### Roteiro 2025"}]

        guidelines = await get_active_guidelines(SupabaseGuidelineSource(client))

        assert guidelines.script == "### Roteiro 2025"
        assert guidelines.icp == "### Roteiro 2025"

    async def test_unreachable_source_falls_back(self) -> None:
        client = MagicMock()
        client.table.side_effect = httpx.ConnectError("connection refused")

        guidelines = await get_active_guidelines(SupabaseGuidelineSource(client))

        assert guidelines.script == SCRIPT_GUIDELINES
        assert guidelines.icp == ICP_GUIDELINES
