"""Meeting endpoints: grounded chat over one meeting."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from src.api.deps import Services, get_services
from src.api.models import ChatMessageRequest, ChatResponse
from src.errors import MeetingAnalysisError

router = APIRouter()


@router.post("/api/meetings/{meeting_id}/chat", response_model=ChatResponse)
async def chat_with_meeting(
    meeting_id: str,
    request: ChatMessageRequest,
    services: Annotated[Services, Depends(get_services)],
) -> ChatResponse:
    """Answer one question about a meeting.

    Uses the live index when the meeting has one, otherwise the stored
    transcript and report. Conversation history stays with the client.
    """
    try:
        context = await services.repository.get_chat_context(meeting_id)
        if context is None and not await services.rag.has_index(meeting_id):
            raise HTTPException(status_code=404, detail="Meeting not found")

        answer = await services.pipeline.chat_with_meeting(
            meeting_id,
            request.question,
            report=context.report if context else None,
            transcript_text=context.transcript_text if context else "",
            segments=context.segments if context else None,
        )
    except MeetingAnalysisError as exc:
        raise HTTPException(status_code=503, detail=f"Chat unavailable: {exc.message}") from exc

    return ChatResponse(
        answer=answer.answer,
        strategy=answer.strategy,
        sources=answer.sources,
        model=answer.model,
        tokens_used=answer.tokens_used,
    )
