"""Token-bounded, speaker-aware transcript chunking with overlap."""

from __future__ import annotations

import math
from collections import defaultdict

from src.config import settings
from src.ingestion.models import ChunkingStats, TranscriptChunk, TranscriptSegment
from src.ingestion.parsers import format_timestamp, parse_to_segments


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ``ceil(chars / 4)``."""
    return math.ceil(len(text) / 4)


def format_segment_line(segment: TranscriptSegment) -> str:
    """Render a segment as ``timestamp - speaker: text``."""
    label = segment.timestamp or format_timestamp(segment.start_time or 0.0)
    return f"{label} - {segment.speaker or 'Unknown'}: {segment.text}"


def dominant_speaker(segments: list[TranscriptSegment]) -> str:
    """Return the speaker contributing the most tokens (first wins ties)."""
    weights: dict[str, int] = defaultdict(int)
    for segment in segments:
        weights[segment.speaker or "Unknown"] += estimate_tokens(segment.text)
    if not weights:
        return "Unknown"
    return max(weights, key=lambda speaker: weights[speaker])


class TranscriptChunker:
    """Greedy chunker that seeds each new chunk with an overlap window.

    Segments accumulate until the next one would push the running token
    count past ``target_tokens``. The chunk is then finalized (unless it is
    still below ``min_tokens``) and the next chunk starts with segments
    taken backward from its tail until ``overlap_tokens`` is reached.

    Args:
        target_tokens: Token budget per chunk.
        overlap_tokens: Token budget of the overlap window.
        min_tokens: Floor below which a chunk is never finalized early.
    """

    def __init__(
        self,
        target_tokens: int = settings.chunk_target_tokens,
        overlap_tokens: int = settings.chunk_overlap_tokens,
        min_tokens: int = settings.chunk_min_tokens,
    ) -> None:
        if target_tokens <= 0:
            msg = f"target_tokens must be positive, got {target_tokens}"
            raise ValueError(msg)
        if overlap_tokens >= target_tokens:
            msg = "overlap_tokens must be smaller than target_tokens"
            raise ValueError(msg)
        self.target_tokens = target_tokens
        self.overlap_tokens = overlap_tokens
        self.min_tokens = min(min_tokens, target_tokens)

    def chunk(self, segments: list[TranscriptSegment]) -> list[TranscriptChunk]:
        """Split segments into overlapping chunks.

        Args:
            segments: Parsed transcript segments, in order.

        Returns:
            Chunks in transcript order; empty when there are no segments.
        """
        chunks: list[TranscriptChunk] = []
        current: list[TranscriptSegment] = []
        current_tokens = 0
        overlap_count = 0

        for segment in segments:
            segment_tokens = estimate_tokens(segment.text)
            would_exceed = current_tokens + segment_tokens > self.target_tokens
            # A chunk made only of overlap carries nothing new; keep filling it.
            has_new_content = len(current) > overlap_count

            if would_exceed and has_new_content and current_tokens >= self.min_tokens:
                chunks.append(self._build_chunk(current, len(chunks), overlap_count, chunks))
                overlap = self._overlap_window(current)
                current = [*overlap, segment]
                overlap_count = len(overlap)
                current_tokens = sum(estimate_tokens(s.text) for s in current)
            else:
                current.append(segment)
                current_tokens += segment_tokens

        if len(current) > overlap_count:
            chunks.append(self._build_chunk(current, len(chunks), overlap_count, chunks))

        return chunks

    def _overlap_window(self, segments: list[TranscriptSegment]) -> list[TranscriptSegment]:
        window: list[TranscriptSegment] = []
        tokens = 0
        for segment in reversed(segments):
            if tokens >= self.overlap_tokens:
                break
            window.insert(0, segment)
            tokens += estimate_tokens(segment.text)
        return window

    def _build_chunk(
        self,
        segments: list[TranscriptSegment],
        index: int,
        overlap_count: int,
        previous: list[TranscriptChunk],
    ) -> TranscriptChunk:
        content = "\n".join(format_segment_line(s) for s in segments)
        speakers: list[str] = []
        for segment in segments:
            name = segment.speaker or "Unknown"
            if name not in speakers:
                speakers.append(name)

        first, last = segments[0], segments[-1]
        start = first.start_time or 0.0
        end = last.end_time if last.end_time is not None else (last.start_time or start)

        return TranscriptChunk(
            id=f"chunk_{index:03d}",
            content=content,
            start_time=start,
            end_time=end,
            speakers=speakers,
            token_count=estimate_tokens(content),
            dominant_speaker=dominant_speaker(segments),
            segments=list(segments),
            overlap_segment_count=overlap_count if index > 0 else 0,
            overlap_with=previous[-1].id if index > 0 and overlap_count else None,
        )


def compute_stats(segments: list[TranscriptSegment], chunks: list[TranscriptChunk]) -> ChunkingStats:
    total_tokens = sum(c.token_count for c in chunks)
    speakers: list[str] = []
    for segment in segments:
        name = segment.speaker or "Unknown"
        if name not in speakers:
            speakers.append(name)
    duration = 0.0
    if segments:
        last = segments[-1]
        duration = last.end_time if last.end_time is not None else (last.start_time or 0.0)
    return ChunkingStats(
        total_segments=len(segments),
        total_chunks=len(chunks),
        total_tokens=total_tokens,
        average_chunk_size=round(total_tokens / len(chunks)) if chunks else 0,
        speakers=speakers,
        duration=duration,
    )


def process_transcript(
    raw_text: str,
    chunker: TranscriptChunker | None = None,
) -> tuple[list[TranscriptSegment], list[TranscriptChunk], ChunkingStats]:
    """Parse and chunk a raw transcript in one step.

    Returns:
        ``(segments, chunks, stats)``.
    """
    chunker = chunker or TranscriptChunker()
    segments = parse_to_segments(raw_text)
    chunks = chunker.chunk(segments)
    return segments, chunks, compute_stats(segments, chunks)


def find_chunks_by_time_range(
    chunks: list[TranscriptChunk], start: float, end: float
) -> list[TranscriptChunk]:
    """Chunks whose time span intersects ``[start, end]``."""
    return [c for c in chunks if c.start_time <= end and c.end_time >= start]


def find_chunks_by_speaker(chunks: list[TranscriptChunk], speaker: str) -> list[TranscriptChunk]:
    """Chunks in which *speaker* (case-insensitive substring) takes part."""
    needle = speaker.lower()
    return [c for c in chunks if any(needle in s.lower() for s in c.speakers)]
