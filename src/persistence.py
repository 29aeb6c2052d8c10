"""Meeting, transcript and analysis persistence.

The analysis core is persistence-agnostic; the job processor and the API
talk to a ``MeetingRepository``. The Supabase implementation uses the
``meetings``, ``transcripts`` and ``analyses`` tables; the in-memory one
backs local development and tests.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, TypeVar, cast

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from src.analysis.results import PersistableAnalysis
from src.config import Settings, settings
from src.errors import UpstreamServiceError
from src.ingestion.models import TranscriptSegment
from src.ingestion.parsers import segments_from_records
from src.ingestion.storage import get_supabase_client

logger = logging.getLogger(__name__)

MEETINGS_TABLE = "meetings"
TRANSCRIPTS_TABLE = "transcripts"
ANALYSES_TABLE = "analyses"

T = TypeVar("T")


class MeetingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TranscriptRecord:
    id: str
    meeting_id: str
    raw_text: str
    language: str = "pt-BR"
    segments: list[dict[str, Any]] = field(default_factory=list)
    processed: bool = False
    processing_error: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> TranscriptRecord:
        return cls(
            id=str(row["id"]),
            meeting_id=str(row["meeting_id"]),
            raw_text=row.get("raw_text") or "",
            language=row.get("language") or "pt-BR",
            segments=list(row.get("segments") or []),
            processed=bool(row.get("processed")),
            processing_error=row.get("processing_error"),
        )


@dataclass
class NewMeeting:
    """Meeting metadata received from an ingestion webhook."""

    source_id: str
    title: str
    seller_name: str
    started_at: datetime
    recording_url: str | None = None
    seller_email: str | None = None
    client_email: str | None = None
    source: str = "n8n"
    language: str = "pt-BR"


@dataclass
class MeetingChatContext:
    """Everything the chat engine can ground an answer on."""

    meeting_id: str
    transcript_text: str = ""
    segments: list[TranscriptSegment] = field(default_factory=list)
    report: dict[str, Any] | None = None


class MeetingRepository(Protocol):
    async def get_transcript(self, transcript_id: str) -> TranscriptRecord | None: ...

    async def find_existing_analysis(self, meeting_id: str) -> str | None: ...

    async def insert_analysis(self, meeting_id: str, analysis: PersistableAnalysis) -> str: ...

    async def mark_transcript_processed(self, transcript_id: str, error: str | None = None) -> None: ...

    async def update_meeting_status(self, meeting_id: str, status: MeetingStatus) -> None: ...

    async def find_pending_transcripts(self, limit: int) -> list[TranscriptRecord]: ...

    async def create_meeting_with_transcript(self, meeting: NewMeeting, transcript_text: str) -> tuple[str, str]: ...

    async def get_chat_context(self, meeting_id: str) -> MeetingChatContext | None: ...


def _now() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryMeetingRepository:
    """Process-local repository; each instance owns its own state."""

    def __init__(self) -> None:
        self.meetings: dict[str, dict[str, Any]] = {}
        self.transcripts: dict[str, TranscriptRecord] = {}
        self.analyses: dict[str, dict[str, Any]] = {}

    async def get_transcript(self, transcript_id: str) -> TranscriptRecord | None:
        return self.transcripts.get(transcript_id)

    async def find_existing_analysis(self, meeting_id: str) -> str | None:
        row = self.analyses.get(meeting_id)
        return row["id"] if row else None

    async def insert_analysis(self, meeting_id: str, analysis: PersistableAnalysis) -> str:
        row = {"id": str(uuid.uuid4()), **analysis.to_row(meeting_id), "created_at": _now()}
        self.analyses[meeting_id] = row
        return row["id"]

    async def mark_transcript_processed(self, transcript_id: str, error: str | None = None) -> None:
        record = self.transcripts.get(transcript_id)
        if record is None:
            return
        if error is None:
            record.processed = True
            record.processing_error = None
        else:
            record.processing_error = error

    async def update_meeting_status(self, meeting_id: str, status: MeetingStatus) -> None:
        if meeting_id in self.meetings:
            self.meetings[meeting_id]["status"] = status.value
            self.meetings[meeting_id]["updated_at"] = _now()

    async def find_pending_transcripts(self, limit: int) -> list[TranscriptRecord]:
        pending = [
            t
            for t in self.transcripts.values()
            if not t.processed
            and t.processing_error is None
            and t.raw_text.strip()
            and t.meeting_id not in self.analyses
        ]
        return pending[:limit]

    async def create_meeting_with_transcript(self, meeting: NewMeeting, transcript_text: str) -> tuple[str, str]:
        meeting_id = next(
            (mid for mid, row in self.meetings.items() if row["source_id"] == meeting.source_id),
            None,
        )
        if meeting_id is None:
            meeting_id = str(uuid.uuid4())
            self.meetings[meeting_id] = {
                "id": meeting_id,
                "source_id": meeting.source_id,
                "title": meeting.title,
                "seller_name": meeting.seller_name,
                "started_at": meeting.started_at.isoformat(),
                "url_fathom": meeting.recording_url,
                "status": MeetingStatus.PROCESSING.value,
                "language": meeting.language,
                "source": meeting.source,
                "created_at": _now(),
            }
        transcript_id = str(uuid.uuid4())
        self.transcripts[transcript_id] = TranscriptRecord(
            id=transcript_id,
            meeting_id=meeting_id,
            raw_text=transcript_text,
            language=meeting.language,
        )
        return meeting_id, transcript_id

    async def get_chat_context(self, meeting_id: str) -> MeetingChatContext | None:
        if meeting_id not in self.meetings:
            return None
        transcripts = [t for t in self.transcripts.values() if t.meeting_id == meeting_id]
        latest = transcripts[-1] if transcripts else None
        analysis = self.analyses.get(meeting_id)
        return MeetingChatContext(
            meeting_id=meeting_id,
            transcript_text=latest.raw_text if latest else "",
            segments=segments_from_records(latest.segments) if latest else [],
            report=analysis.get("full_report") if analysis else None,
        )


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------


class SupabaseMeetingRepository:
    """Repository over the Supabase ``meetings``/``transcripts``/``analyses`` tables."""

    def __init__(self, client: Client) -> None:
        self.client = client

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except (APIError, httpx.HTTPError) as exc:
            msg = f"{operation} failed: {exc}"
            logger.error("Supabase %s", msg)
            raise UpstreamServiceError(msg, service="database", stage=operation) from exc

    async def _select(self, operation: str, fn: Callable[[], Any]) -> list[dict[str, Any]]:
        result = await self._run(operation, fn)
        # Supabase .data is typed as JSON (broad union); cast to concrete type.
        return cast(list[dict[str, Any]], result.data or [])

    async def get_transcript(self, transcript_id: str) -> TranscriptRecord | None:
        rows = await self._select(
            "get_transcript",
            lambda: self.client.table(TRANSCRIPTS_TABLE).select("*").eq("id", transcript_id).limit(1).execute(),
        )
        return TranscriptRecord.from_row(rows[0]) if rows else None

    async def find_existing_analysis(self, meeting_id: str) -> str | None:
        rows = await self._select(
            "find_existing_analysis",
            lambda: self.client.table(ANALYSES_TABLE).select("id").eq("meeting_id", meeting_id).limit(1).execute(),
        )
        return str(rows[0]["id"]) if rows else None

    async def insert_analysis(self, meeting_id: str, analysis: PersistableAnalysis) -> str:
        # One current analysis per meeting: drop the previous one first.
        await self._run(
            "delete_analysis",
            lambda: self.client.table(ANALYSES_TABLE).delete().eq("meeting_id", meeting_id).execute(),
        )
        rows = await self._select(
            "insert_analysis",
            lambda: self.client.table(ANALYSES_TABLE).insert(analysis.to_row(meeting_id)).execute(),
        )
        return str(rows[0]["id"]) if rows else ""

    async def mark_transcript_processed(self, transcript_id: str, error: str | None = None) -> None:
        values: dict[str, Any] = {"updated_at": _now()}
        if error is None:
            values.update(processed=True, processing_error=None)
        else:
            values["processing_error"] = error
        await self._run(
            "mark_transcript_processed",
            lambda: self.client.table(TRANSCRIPTS_TABLE).update(values).eq("id", transcript_id).execute(),
        )

    async def update_meeting_status(self, meeting_id: str, status: MeetingStatus) -> None:
        await self._run(
            "update_meeting_status",
            lambda: self.client.table(MEETINGS_TABLE)
            .update({"status": status.value, "updated_at": _now()})
            .eq("id", meeting_id)
            .execute(),
        )

    async def find_pending_transcripts(self, limit: int) -> list[TranscriptRecord]:
        rows = await self._select(
            "find_pending_transcripts",
            lambda: self.client.table(TRANSCRIPTS_TABLE)
            .select("*")
            .eq("processed", False)
            .is_("processing_error", "null")
            .not_.is_("raw_text", "null")
            .order("created_at")
            .limit(limit)
            .execute(),
        )
        if not rows:
            return []
        meeting_ids = list({str(r["meeting_id"]) for r in rows})
        analysed = await self._select(
            "find_pending_transcripts",
            lambda: self.client.table(ANALYSES_TABLE).select("meeting_id").in_("meeting_id", meeting_ids).execute(),
        )
        done = {str(r["meeting_id"]) for r in analysed}
        return [TranscriptRecord.from_row(r) for r in rows if str(r["meeting_id"]) not in done]

    async def create_meeting_with_transcript(self, meeting: NewMeeting, transcript_text: str) -> tuple[str, str]:
        existing = await self._select(
            "find_meeting",
            lambda: self.client.table(MEETINGS_TABLE).select("id").eq("source_id", meeting.source_id).limit(1).execute(),
        )
        if existing:
            meeting_id = str(existing[0]["id"])
        else:
            created = await self._select(
                "create_meeting",
                lambda: self.client.table(MEETINGS_TABLE)
                .insert(
                    {
                        "source_id": meeting.source_id,
                        "title": meeting.title,
                        "started_at": meeting.started_at.isoformat(),
                        "url_fathom": meeting.recording_url,
                        "participant_count": 2,
                        "status": MeetingStatus.PROCESSING.value,
                        "language": meeting.language,
                        "source": meeting.source,
                    }
                )
                .execute(),
            )
            meeting_id = str(created[0]["id"])

        transcript = await self._select(
            "create_transcript",
            lambda: self.client.table(TRANSCRIPTS_TABLE)
            .insert({"meeting_id": meeting_id, "raw_text": transcript_text, "language": meeting.language})
            .execute(),
        )
        return meeting_id, str(transcript[0]["id"])

    async def get_chat_context(self, meeting_id: str) -> MeetingChatContext | None:
        meetings = await self._select(
            "get_meeting",
            lambda: self.client.table(MEETINGS_TABLE).select("id").eq("id", meeting_id).limit(1).execute(),
        )
        if not meetings:
            return None
        transcripts, analyses = await asyncio.gather(
            self._select(
                "get_chat_transcript",
                lambda: self.client.table(TRANSCRIPTS_TABLE)
                .select("raw_text,segments")
                .eq("meeting_id", meeting_id)
                .order("created_at", desc=True)
                .limit(1)
                .execute(),
            ),
            self._select(
                "get_chat_analysis",
                lambda: self.client.table(ANALYSES_TABLE)
                .select("full_report")
                .eq("meeting_id", meeting_id)
                .limit(1)
                .execute(),
            ),
        )
        transcript = transcripts[0] if transcripts else {}
        return MeetingChatContext(
            meeting_id=meeting_id,
            transcript_text=transcript.get("raw_text") or "",
            segments=segments_from_records(transcript.get("segments") or []),
            report=analyses[0].get("full_report") if analyses else None,
        )


def create_meeting_repository(config: Settings | None = None) -> MeetingRepository:
    """Supabase repository when configured, else an in-memory one."""
    config = config or settings
    if config.vector_store_configured:
        return SupabaseMeetingRepository(get_supabase_client(config))
    logger.warning("Supabase not configured; meetings are kept in memory")
    return InMemoryMeetingRepository()
