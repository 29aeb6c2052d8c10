"""Webhook endpoints: transcripts pushed by the n8n automation."""

from __future__ import annotations

import json
import logging
import secrets
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from src.api.deps import Services, get_services
from src.api.models import N8NTranscriptPayload, WebhookAccepted
from src.config import Settings, get_settings
from src.errors import MeetingAnalysisError
from src.persistence import NewMeeting

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks")


def _check_bearer(authorization: str | None, secret: str) -> None:
    provided = (authorization or "").removeprefix("Bearer ").strip()
    if not secret or not secrets.compare_digest(provided.encode(), secret.encode()):
        logger.warning("Unauthorized n8n webhook attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _read_payload(request: Request) -> Any:
    try:
        body = await request.json()
        # n8n in RAW mode sends the JSON document as a string literal
        return json.loads(body) if isinstance(body, str) else body
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Dados inválidos: JSON malformado") from exc


@router.post("/n8n", response_model=WebhookAccepted, status_code=202)
async def n8n_webhook(
    request: Request,
    services: Annotated[Services, Depends(get_services)],
    config: Annotated[Settings, Depends(get_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> WebhookAccepted:
    """Store the meeting and transcript, then queue the analysis.

    Responds once the transcript is stored; the analysis runs on the job
    queue and its progress is polled through the returned job id.
    """
    _check_bearer(authorization, config.webhook_secret)

    raw = await _read_payload(request)
    try:
        payload = N8NTranscriptPayload.model_validate(raw)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={"error": "Dados inválidos", "details": exc.errors(include_url=False, include_context=False)},
        ) from exc

    source_id = f"n8n_{payload.external_id}" if payload.external_id else f"n8n_{uuid.uuid4()}"
    meeting = NewMeeting(
        source_id=source_id,
        title=payload.meeting_title or f"Reunião - {payload.seller_name}",
        seller_name=payload.seller_name,
        started_at=payload.meeting_date,
        recording_url=str(payload.recording_url),
        seller_email=payload.seller_email,
        client_email=payload.client_email,
    )

    try:
        meeting_id, transcript_id = await services.repository.create_meeting_with_transcript(
            meeting, payload.transcript
        )
        job = await services.queue.submit(transcript_id)
    except MeetingAnalysisError as exc:
        logger.error("Could not store webhook transcript: %s", exc)
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {exc.message}") from exc

    logger.info(
        "Webhook accepted: meeting %s, transcript %s (%d chars), job %s",
        meeting_id,
        transcript_id,
        len(payload.transcript),
        job.job_id,
    )
    return WebhookAccepted(meeting_id=meeting_id, transcript_id=transcript_id, job_id=job.job_id)
