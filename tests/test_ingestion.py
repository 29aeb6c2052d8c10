"""Tests for transcript parsing and token-bounded chunking."""

from __future__ import annotations

import pytest

from src.ingestion.chunking import (
    TranscriptChunker,
    dominant_speaker,
    estimate_tokens,
    find_chunks_by_speaker,
    find_chunks_by_time_range,
    format_segment_line,
    process_transcript,
)
from src.ingestion.models import TranscriptSegment
from src.ingestion.parsers import (
    FALLBACK_SECONDS_PER_LINE,
    format_timestamp,
    parse_timestamp,
    parse_to_segments,
    segments_from_records,
)
from tests.fakes import SAMPLE_TRANSCRIPT


def make_segments(count: int, chars: int = 200) -> list[TranscriptSegment]:
    speakers = ["Vendedor", "Cliente"]
    return [
        TranscriptSegment(
            speaker=speakers[i % 2],
            text=f"fala {i:03d} " + "x" * (chars - 9),
            start_time=float(i * 10),
            end_time=float(i * 10 + 10),
        )
        for i in range(count)
    ]


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


class TestParseToSegments:
    def test_hms_dash_format(self) -> None:
        segments = parse_to_segments(SAMPLE_TRANSCRIPT)
        assert len(segments) == 6
        assert segments[0].speaker == "Vendedor"
        assert segments[0].start_time == 5.0
        assert segments[0].timestamp == "00:00:05"
        assert "sobrecarga" in segments[1].text

    def test_end_time_is_next_start(self) -> None:
        segments = parse_to_segments(SAMPLE_TRANSCRIPT)
        assert segments[0].end_time == segments[1].start_time
        assert segments[-1].end_time == segments[-1].start_time

    def test_short_format(self) -> None:
        text = "0:05 - Ana: Olá, tudo bem?\n1:30 - Bruno: Tudo ótimo."
        segments = parse_to_segments(text)
        assert [s.speaker for s in segments] == ["Ana", "Bruno"]
        assert segments[1].start_time == 90.0

    def test_bracketed_format(self) -> None:
        text = "[00:00:10] Ana: Primeira fala.\n[00:01:00] Bruno: Segunda fala."
        segments = parse_to_segments(text)
        assert len(segments) == 2
        assert segments[0].text == "Primeira fala."
        assert segments[1].start_time == 60.0

    def test_multiline_utterance_is_joined(self) -> None:
        text = "00:00:01 - Ana: começo da fala\ncontinua aqui\n00:00:09 - Bruno: resposta"
        segments = parse_to_segments(text)
        assert len(segments) == 2
        assert segments[0].text == "começo da fala continua aqui"

    def test_unstructured_falls_back_to_lines(self) -> None:
        segments = parse_to_segments("primeira linha\n\nsegunda linha\nterceira linha")
        assert len(segments) == 3
        assert all(s.speaker == "Unknown" for s in segments)
        assert segments[2].start_time == 2 * FALLBACK_SECONDS_PER_LINE
        assert segments[0].end_time == FALLBACK_SECONDS_PER_LINE

    @pytest.mark.parametrize("text", ["", "   \n\t  "])
    def test_blank_input(self, text: str) -> None:
        assert parse_to_segments(text) == []


class TestTimestamps:
    def test_parse(self) -> None:
        assert parse_timestamp("01:02:03") == 3723.0
        assert parse_timestamp("2:05") == 125.0
        assert parse_timestamp("garbage") == 0.0
        assert parse_timestamp("00:xx:10") == 0.0

    def test_format_keeps_counting_minutes(self) -> None:
        assert format_timestamp(65) == "01:05"
        assert format_timestamp(3725) == "62:05"
        assert format_timestamp(-3) == "00:00"


class TestSegmentsFromRecords:
    def test_accepts_both_key_styles(self) -> None:
        segments = segments_from_records(
            [
                {"speaker": "A", "text": "oi", "start": 1, "end": 2},
                {"speaker": "B", "text": "olá", "start_time": 3.5, "end_time": 4},
                {"speaker": "C", "text": "   "},
            ]
        )
        assert len(segments) == 2
        assert segments[0].start_time == 1.0
        assert segments[1].end_time == 4.0


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class TestChunkerValidation:
    def test_rejects_non_positive_target(self) -> None:
        with pytest.raises(ValueError, match="target_tokens"):
            TranscriptChunker(target_tokens=0)

    def test_rejects_overlap_not_below_target(self) -> None:
        with pytest.raises(ValueError, match="overlap_tokens"):
            TranscriptChunker(target_tokens=100, overlap_tokens=100)


class TestChunkCoverage:
    def test_new_segments_reconstruct_input_exactly_once(self) -> None:
        segments = make_segments(40)
        chunks = TranscriptChunker(target_tokens=300, overlap_tokens=60, min_tokens=150).chunk(segments)

        assert len(chunks) > 1
        rebuilt = [s for chunk in chunks for s in chunk.new_segments]
        assert rebuilt == segments

    def test_single_chunk_for_short_transcript(self) -> None:
        segments = parse_to_segments(SAMPLE_TRANSCRIPT)
        chunks = TranscriptChunker().chunk(segments)
        assert len(chunks) == 1
        assert chunks[0].id == "chunk_000"
        assert not chunks[0].has_overlap

    def test_empty_segments(self) -> None:
        assert TranscriptChunker().chunk([]) == []


class TestOverlap:
    def test_leading_content_repeats_previous_tail(self) -> None:
        chunker = TranscriptChunker(target_tokens=300, overlap_tokens=60, min_tokens=150)
        chunks = chunker.chunk(make_segments(40))

        for previous, current in zip(chunks, chunks[1:], strict=False):
            assert current.overlap_with == previous.id
            overlap = current.segments[: current.overlap_segment_count]
            assert overlap == previous.segments[-len(overlap) :]

            overlap_text = "\n".join(format_segment_line(s) for s in overlap)
            assert current.content.startswith(overlap_text)
            assert previous.content.endswith(overlap_text)

    def test_overlap_bounded_by_budget(self) -> None:
        chunker = TranscriptChunker(target_tokens=300, overlap_tokens=60, min_tokens=150)
        chunks = chunker.chunk(make_segments(40, chars=120))

        for chunk in chunks[1:]:
            overlap = chunk.segments[: chunk.overlap_segment_count]
            assert overlap
            # Only the earliest overlap segment may cross the budget.
            assert sum(estimate_tokens(s.text) for s in overlap[1:]) < chunker.overlap_tokens


class TestTokenBudget:
    def test_chunks_stay_within_one_segment_of_target(self) -> None:
        segments = make_segments(60, chars=180)
        chunker = TranscriptChunker(target_tokens=400, overlap_tokens=80, min_tokens=200)
        chunks = chunker.chunk(segments)
        largest = max(estimate_tokens(s.text) for s in segments)

        for chunk in chunks[:-1]:
            spoken = sum(estimate_tokens(s.text) for s in chunk.segments)
            assert spoken <= chunker.target_tokens + largest

    def test_estimate_tokens_rounds_up(self) -> None:
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class TestDominantSpeaker:
    def test_most_tokens_wins(self) -> None:
        segments = [
            TranscriptSegment(speaker="X", text="a" * 400),
            TranscriptSegment(speaker="Y", text="b" * 200),
        ]
        assert dominant_speaker(segments) == "X"

    def test_summed_across_turns(self) -> None:
        segments = [
            TranscriptSegment(speaker="X", text="a" * 100),
            TranscriptSegment(speaker="Y", text="b" * 160),
            TranscriptSegment(speaker="X", text="a" * 100),
        ]
        assert dominant_speaker(segments) == "X"

    def test_missing_speaker_is_unknown(self) -> None:
        assert dominant_speaker([TranscriptSegment(speaker=None, text="oi")]) == "Unknown"
        assert dominant_speaker([]) == "Unknown"

    def test_chunk_reports_dominant_speaker(self) -> None:
        chunks = TranscriptChunker().chunk(
            [
                TranscriptSegment(speaker="X", text="a" * 400, start_time=0.0, end_time=5.0),
                TranscriptSegment(speaker="Y", text="b" * 200, start_time=5.0, end_time=8.0),
            ]
        )
        assert chunks[0].dominant_speaker == "X"
        assert chunks[0].speakers == ["X", "Y"]
        assert chunks[0].start_time == 0.0
        assert chunks[0].end_time == 8.0


class TestProcessTranscript:
    def test_returns_segments_chunks_and_stats(self) -> None:
        segments, chunks, stats = process_transcript(SAMPLE_TRANSCRIPT)
        assert stats.total_segments == len(segments) == 6
        assert stats.total_chunks == len(chunks)
        assert stats.speakers == ["Vendedor", "Cliente"]
        assert stats.duration == 280.0

    def test_chunk_lookup_helpers(self) -> None:
        chunks = TranscriptChunker(target_tokens=300, overlap_tokens=60, min_tokens=150).chunk(make_segments(40))
        in_range = find_chunks_by_time_range(chunks, 0.0, 15.0)
        assert in_range and in_range[0].id == "chunk_000"
        assert find_chunks_by_speaker(chunks, "cliente") == chunks
        assert find_chunks_by_speaker(chunks, "nobody") == []
