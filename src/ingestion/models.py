"""Data models for transcript chunking, embedding, and retrieval."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class TranscriptSegment:
    """Uniform representation of one speaker utterance."""

    speaker: str | None
    text: str
    start_time: float | None = None
    end_time: float | None = None
    timestamp: str | None = None  # raw label as it appeared in the transcript


@dataclass
class TranscriptChunk:
    """A contiguous run of segments sized to the chunk token budget.

    ``segments`` holds every segment rendered in ``content``; the first
    ``overlap_segment_count`` of them are duplicated from the tail of the
    previous chunk.
    """

    id: str
    content: str
    start_time: float
    end_time: float
    speakers: list[str]
    token_count: int
    dominant_speaker: str
    segments: list[TranscriptSegment] = field(default_factory=list)
    overlap_segment_count: int = 0
    overlap_with: str | None = None
    topics: list[str] = field(default_factory=list)

    @property
    def has_overlap(self) -> bool:
        return self.overlap_with is not None

    @property
    def new_segments(self) -> list[TranscriptSegment]:
        """Segments that first appear in this chunk (excluding the overlap)."""
        return self.segments[self.overlap_segment_count :]


@dataclass
class ChunkingStats:
    """Aggregate statistics for one chunking run."""

    total_segments: int
    total_chunks: int
    total_tokens: int
    average_chunk_size: int
    speakers: list[str]
    duration: float


@dataclass
class ChunkEmbedding:
    """A chunk bound to a meeting with its embedding vector.

    ``(meeting_id, chunk_id)`` is the natural key; stores upsert on it.
    """

    meeting_id: str
    chunk_id: str
    content: str
    embedding: list[float]
    start_time: float
    end_time: float
    speakers: list[str]
    dominant_speaker: str
    token_count: int
    topics: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_row(self) -> dict[str, Any]:
        """Serialize for the ``transcript_chunks`` table."""
        return {
            "meeting_id": self.meeting_id,
            "chunk_id": self.chunk_id,
            "content": self.content,
            "embedding": self.embedding,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "speakers": self.speakers,
            "dominant_speaker": self.dominant_speaker,
            "token_count": self.token_count,
            "topics": self.topics,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class EmbeddingSearchResult:
    """Read-side projection returned by every search path.

    ``similarity`` is only meaningful for semantic search; time-range and
    speaker lookups report 1.0.
    """

    chunk_id: str
    content: str
    similarity: float
    start_time: float
    end_time: float
    speakers: list[str] = field(default_factory=list)
    dominant_speaker: str = ""
    topics: list[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any], similarity: float | None = None) -> EmbeddingSearchResult:
        """Build from a store row (Supabase RPC or table select)."""
        score = similarity if similarity is not None else row.get("similarity", 1.0)
        return cls(
            chunk_id=str(row["chunk_id"]),
            content=row.get("content") or "",
            similarity=float(score if score is not None else 1.0),
            start_time=float(row.get("start_time") or 0.0),
            end_time=float(row.get("end_time") or 0.0),
            speakers=list(row.get("speakers") or []),
            dominant_speaker=row.get("dominant_speaker") or "",
            topics=list(row.get("topics") or []),
        )

    @classmethod
    def from_embedding(cls, item: ChunkEmbedding, similarity: float) -> EmbeddingSearchResult:
        return cls(
            chunk_id=item.chunk_id,
            content=item.content,
            similarity=similarity,
            start_time=item.start_time,
            end_time=item.end_time,
            speakers=list(item.speakers),
            dominant_speaker=item.dominant_speaker,
            topics=list(item.topics),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "content": self.content,
            "similarity": self.similarity,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "speakers": self.speakers,
            "dominant_speaker": self.dominant_speaker,
            "topics": self.topics,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EmbeddingSearchResult:
        return cls.from_row(data)


@dataclass
class StorageStats:
    """Vector-store usage summary (per meeting or global)."""

    total_chunks: int = 0
    total_meetings: int = 0
    avg_chunk_size: int = 0
    storage_used: int = 0  # bytes, estimated as tokens * 4
