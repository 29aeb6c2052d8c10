"""Transcript parsers: timestamped speaker lines and stored segment records."""

from __future__ import annotations

import re
from typing import Any

from src.ingestion.models import TranscriptSegment

# Seconds assigned per line when a transcript carries no timestamps
FALLBACK_SECONDS_PER_LINE = 30

# Tried in order; the first pattern with at least one match is used for the
# whole transcript. Each lookahead requires a full next header so times
# mentioned inside the speech do not split a segment.
TIMESTAMP_PATTERNS: tuple[re.Pattern[str], ...] = (
    # 00:01:23 - Speaker: text
    re.compile(
        r"(\d{2}:\d{2}:\d{2})\s*-\s*([^:\n]+?):\s*(.+?)"
        r"(?=\d{2}:\d{2}:\d{2}\s*-\s*[^:\n]+?:|\Z)",
        re.DOTALL,
    ),
    # 1:23 - Speaker: text
    re.compile(
        r"(\d{1,2}:\d{2})\s*-\s*([^:\n]+?):\s*(.+?)"
        r"(?=\d{1,2}:\d{2}\s*-\s*[^:\n]+?:|\Z)",
        re.DOTALL,
    ),
    # [00:01:23] Speaker: text
    re.compile(
        r"\[(\d{2}:\d{2}:\d{2})\]\s*([^:\n]+?):\s*(.+?)"
        r"(?=\[\d{2}:\d{2}:\d{2}\]|\Z)",
        re.DOTALL,
    ),
)


def parse_timestamp(ts: str) -> float:
    """Convert ``HH:MM:SS`` or ``M:SS`` to seconds."""
    try:
        parts = [int(p) for p in ts.strip().split(":")]
    except ValueError:
        return 0.0
    if len(parts) == 3:
        hours, minutes, seconds = parts
    elif len(parts) == 2:
        hours = 0
        minutes, seconds = parts
    else:
        return 0.0
    return float(hours * 3600 + minutes * 60 + seconds)


def format_timestamp(seconds: float) -> str:
    """Render seconds as ``mm:ss`` (minutes keep growing past the hour)."""
    total = max(0, int(seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


def _parse_with_pattern(content: str, pattern: re.Pattern[str]) -> list[TranscriptSegment]:
    segments: list[TranscriptSegment] = []
    for match in pattern.finditer(content):
        label, speaker, text = match.group(1), match.group(2), match.group(3)
        text = " ".join(text.split())
        if not text:
            continue
        segments.append(
            TranscriptSegment(
                speaker=speaker.strip(),
                text=text,
                start_time=parse_timestamp(label),
                timestamp=label,
            )
        )
    # A segment ends where the next one starts; the last one is instantaneous.
    for current, following in zip(segments, segments[1:], strict=False):
        current.end_time = following.start_time
    if segments:
        segments[-1].end_time = segments[-1].start_time
    return segments


def _parse_lines(content: str) -> list[TranscriptSegment]:
    """Fallback: one segment per non-empty line with synthetic timestamps."""
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    segments: list[TranscriptSegment] = []
    for index, line in enumerate(lines):
        start = float(index * FALLBACK_SECONDS_PER_LINE)
        minutes, seconds = divmod(int(start), 60)
        segments.append(
            TranscriptSegment(
                speaker="Unknown",
                text=line,
                start_time=start,
                end_time=start + FALLBACK_SECONDS_PER_LINE,
                timestamp=f"{minutes}:{seconds:02d}",
            )
        )
    return segments


def parse_to_segments(content: str) -> list[TranscriptSegment]:
    """Parse raw transcript text into speaker segments.

    Supported line formats, tried in order:

    - ``HH:MM:SS - Speaker: text``
    - ``M:SS - Speaker: text``
    - ``[HH:MM:SS] Speaker: text``

    Mixed formats are not supported. When no pattern matches, every
    non-empty line becomes a segment spoken by ``"Unknown"`` spaced 30
    seconds apart.

    Args:
        content: Raw transcript text.

    Returns:
        Parsed segments in transcript order (empty for blank input).
    """
    if not content or not content.strip():
        return []

    for pattern in TIMESTAMP_PATTERNS:
        segments = _parse_with_pattern(content, pattern)
        if segments:
            return segments

    return _parse_lines(content)


def segments_from_records(records: list[dict[str, Any]]) -> list[TranscriptSegment]:
    """Build segments from stored records ``{"speaker", "text", "start", "end"}``.

    Accepts both ``start``/``end`` and ``start_time``/``end_time`` keys;
    records without text are skipped.
    """
    segments: list[TranscriptSegment] = []
    for record in records:
        text = (record.get("text") or "").strip()
        if not text:
            continue
        start = record.get("start", record.get("start_time"))
        end = record.get("end", record.get("end_time"))
        segments.append(
            TranscriptSegment(
                speaker=record.get("speaker"),
                text=text,
                start_time=float(start) if start is not None else None,
                end_time=float(end) if end is not None else None,
            )
        )
    return segments
