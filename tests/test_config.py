"""Tests for Settings, PipelineConfig and the pipeline enums."""

from __future__ import annotations

import pytest

from src.config import Settings
from src.pipeline_config import (
    ALL_ANALYSIS_TYPES,
    AnalysisType,
    ChatStrategy,
    PipelineConfig,
    VectorBackend,
)


def make_settings(**values: object) -> Settings:
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Enum tests
# ---------------------------------------------------------------------------


class TestAnalysisType:
    def test_values(self) -> None:
        assert [t.value for t in AnalysisType] == ["script", "icp", "objections"]

    def test_from_string(self) -> None:
        assert AnalysisType("icp") is AnalysisType.ICP

    def test_invalid_raises(self) -> None:
        with pytest.raises(ValueError):
            AnalysisType("sentiment")

    def test_is_str_subclass(self) -> None:
        """Enum values behave as plain strings for JSON serialization."""
        assert isinstance(AnalysisType.SCRIPT, str)


class TestChatStrategy:
    def test_values(self) -> None:
        assert ChatStrategy.EMBEDDING.value == "embedding"
        assert ChatStrategy.SEGMENTS.value == "segments"
        assert ChatStrategy.NONE.value == "none"

    def test_invalid_raises(self) -> None:
        with pytest.raises(ValueError):
            ChatStrategy("hybrid")


class TestVectorBackend:
    def test_from_string(self) -> None:
        assert VectorBackend("supabase") is VectorBackend.SUPABASE
        assert VectorBackend("memory") is VectorBackend.MEMORY


# ---------------------------------------------------------------------------
# PipelineConfig tests
# ---------------------------------------------------------------------------


class TestPipelineConfig:
    def test_defaults(self) -> None:
        cfg = PipelineConfig()
        assert cfg.analysis_types == ALL_ANALYSIS_TYPES
        assert cfg.enable_rag_cache
        assert cfg.use_deep_model
        assert cfg.generate_quick_summary

    def test_custom_values(self) -> None:
        cfg = PipelineConfig(analysis_types=(AnalysisType.ICP,), use_deep_model=False)
        assert cfg.analysis_types == (AnalysisType.ICP,)
        assert not cfg.use_deep_model

    def test_immutable(self) -> None:
        cfg = PipelineConfig()
        with pytest.raises(AttributeError):
            cfg.enable_rag_cache = False  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Settings tests
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self) -> None:
        cfg = make_settings()
        assert cfg.general_model == "gpt-4o"
        assert cfg.quick_model == "gpt-4o-mini"
        assert cfg.embedding_dimensions == 1536
        assert cfg.chunk_target_tokens == 1500
        assert cfg.chunk_overlap_tokens == 200
        assert cfg.rag_cache_ttl_seconds == 86400

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GENERAL_MODEL", "gpt-4.1")
        monkeypatch.setenv("JOB_MAX_RETRIES", "2")
        cfg = make_settings()
        assert cfg.general_model == "gpt-4.1"
        assert cfg.job_max_retries == 2

    @pytest.mark.parametrize(
        ("url", "key", "expected"),
        [
            ("", "", False),
            ("https://abc.supabase.co", "", False),
            ("https://fake.supabase.co", "service-key", False),
            ("https://abc.supabase.co", "fake-key", False),
            ("https://abc.supabase.co", "service-key", True),
        ],
    )
    def test_vector_store_configured(self, url: str, key: str, expected: bool) -> None:
        assert make_settings(supabase_url=url, supabase_key=key).vector_store_configured is expected

    def test_deep_model_needs_key_and_flag(self) -> None:
        assert make_settings(anthropic_api_key="sk-ant").deep_model_enabled
        assert not make_settings(anthropic_api_key="").deep_model_enabled
        assert not make_settings(anthropic_api_key="sk-ant", use_deep_model=False).deep_model_enabled
