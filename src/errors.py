"""Typed error taxonomy for the analysis core.

Every error carries enough context (meeting, stage, analysis type) for the
caller to log it and decide on a retry; the pipeline itself never retries.
"""

from __future__ import annotations

from typing import Any


class MeetingAnalysisError(Exception):
    """Base class for all analysis-core failures."""

    def __init__(
        self,
        message: str,
        *,
        meeting_id: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.meeting_id = meeting_id
        self.stage = stage

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage:
            parts.append(f"stage={self.stage}")
        if self.meeting_id:
            parts.append(f"meeting={self.meeting_id}")
        return " | ".join(parts)


class UpstreamServiceError(MeetingAnalysisError):
    """An external service (LLM, embeddings, vector store) failed."""

    def __init__(self, message: str, *, service: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.service = service


class QuotaExceededError(UpstreamServiceError):
    """Quota or resource exhaustion; triggers the model fallback policy."""


class EmbeddingError(UpstreamServiceError):
    """Embedding generation failed."""

    def __init__(self, message: str = "embedding generation failed", **kwargs: Any) -> None:
        kwargs.setdefault("service", "embeddings")
        super().__init__(message, **kwargs)


class VectorStoreError(UpstreamServiceError):
    """The vector store rejected or failed a request."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("service", "vector_store")
        super().__init__(message, **kwargs)


class ModelResponseFormatError(MeetingAnalysisError):
    """LLM output could not be parsed as JSON even after repair."""

    def __init__(self, context: str, raw: str = "", **kwargs: Any) -> None:
        super().__init__(f"invalid analysis response format ({context})", **kwargs)
        self.context = context
        self.raw = raw


class ReportValidationError(MeetingAnalysisError):
    """Parsed JSON does not satisfy the report schema."""

    def __init__(self, context: str, errors: list[Any] | None = None, **kwargs: Any) -> None:
        super().__init__(f"report failed schema validation ({context})", **kwargs)
        self.context = context
        self.errors = errors or []


class IndexingError(MeetingAnalysisError):
    """Transcript indexing aborted; nothing was committed to the store."""


class StageTimeoutError(MeetingAnalysisError):
    """A pipeline stage exceeded its time budget."""
