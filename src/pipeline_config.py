"""Pipeline configuration: analysis-type enums and PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class AnalysisType(str, Enum):
    """Specialized analyses run in layer 2 of the pipeline."""

    SCRIPT = "script"
    ICP = "icp"
    OBJECTIONS = "objections"


class VectorBackend(str, Enum):
    """Available vector-store backends."""

    SUPABASE = "supabase"
    MEMORY = "memory"


class ChatStrategy(str, Enum):
    """Retrieval strategy used by the meeting chat engine."""

    EMBEDDING = "embedding"
    SEGMENTS = "segments"
    NONE = "none"


ALL_ANALYSIS_TYPES: tuple[AnalysisType, ...] = (
    AnalysisType.SCRIPT,
    AnalysisType.ICP,
    AnalysisType.OBJECTIONS,
)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable configuration for one analysis pipeline run.

    Defaults mirror the project's current behaviour (all three analyses,
    RAG cache on, deep-context model preferred when available).
    """

    analysis_types: tuple[AnalysisType, ...] = field(default=ALL_ANALYSIS_TYPES)
    enable_rag_cache: bool = True
    use_deep_model: bool = True
    generate_quick_summary: bool = True
