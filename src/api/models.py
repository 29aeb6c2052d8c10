"""Pydantic request/response schemas for the Sales Call Analysis API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field

from src.jobs import AnalysisJob
from src.pipeline_config import ChatStrategy

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ProcessRequest(BaseModel):
    """Request body for /api/analysis/process.

    With ``transcript_id`` one transcript is queued; without it, up to
    ``limit`` pending transcripts are.
    """

    transcript_id: str | None = None
    limit: int | None = Field(default=None, ge=1, le=100)


class JobResponse(BaseModel):
    job_id: str
    transcript_id: str
    status: str
    attempts: int = 0
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_job(cls, job: AnalysisJob) -> JobResponse:
        return cls(
            job_id=job.job_id,
            transcript_id=job.transcript_id,
            status=job.status.value,
            attempts=job.attempts,
            error_message=job.error_message,
            created_at=job.created_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
        )


class ProcessResponse(BaseModel):
    jobs: list[JobResponse]


class QuickAnalysisRequest(BaseModel):
    meeting_id: str = Field(min_length=1)
    transcript: str = Field(min_length=10)


class QuickAnalysisResponse(BaseModel):
    meeting_id: str
    summary: str


class ChatMessageRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)


class ChatResponse(BaseModel):
    """Grounded answer; ``strategy`` is ``none`` when no evidence was found."""

    answer: str
    strategy: ChatStrategy
    sources: list[dict[str, Any]] = []
    model: str | None = None
    tokens_used: int = 0


class N8NTranscriptPayload(BaseModel):
    """Transcript pushed by the n8n automation (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    seller_name: str = Field(alias="sellerName", min_length=1)
    seller_email: str | None = Field(default=None, alias="sellerEmail", pattern=EMAIL_PATTERN)
    meeting_date: datetime = Field(alias="meetingDate")
    meeting_title: str | None = Field(default=None, alias="meetingTitle", min_length=1)
    recording_url: AnyHttpUrl = Field(alias="recordingUrl")
    transcript: str = Field(min_length=10)
    client_email: str = Field(alias="clientEmail", pattern=EMAIL_PATTERN)
    external_id: str | None = Field(default=None, alias="externalId", min_length=1)


class WebhookAccepted(BaseModel):
    success: bool = True
    meeting_id: str
    transcript_id: str
    job_id: str
    message: str = "Transcrição recebida; análise enfileirada"
