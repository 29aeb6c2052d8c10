"""Analysis endpoints: background processing, job status, quick summaries, health."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from src.api.deps import Services, get_services
from src.api.models import (
    JobResponse,
    ProcessRequest,
    ProcessResponse,
    QuickAnalysisRequest,
    QuickAnalysisResponse,
)
from src.errors import MeetingAnalysisError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analysis")

ServicesDep = Annotated[Services, Depends(get_services)]


@router.get("/health")
async def analysis_health(services: ServicesDep) -> dict[str, Any]:
    """Model, vector-store and queue status."""
    health = await services.pipeline.get_system_health()
    return {**health.to_dict(), "queue": services.queue.get_statistics()}


@router.post("/process", response_model=ProcessResponse, status_code=202)
async def process(request: ProcessRequest, services: ServicesDep) -> ProcessResponse:
    """Queue one transcript, or the pending batch, for full analysis."""
    try:
        if request.transcript_id:
            jobs = [await services.queue.submit(request.transcript_id)]
        else:
            jobs = await services.queue.submit_pending(request.limit)
    except MeetingAnalysisError as exc:
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {exc.message}") from exc
    return ProcessResponse(jobs=[JobResponse.from_job(job) for job in jobs])


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, services: ServicesDep) -> JobResponse:
    job = services.queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.from_job(job)


@router.post("/quick", response_model=QuickAnalysisResponse)
async def quick_analysis(request: QuickAnalysisRequest, services: ServicesDep) -> QuickAnalysisResponse:
    """Index a transcript and return a two-to-three sentence summary."""
    try:
        summary = await services.pipeline.quick_analysis(request.meeting_id, request.transcript)
    except MeetingAnalysisError as exc:
        logger.error("Quick analysis failed for meeting %s: %s", request.meeting_id, exc)
        raise HTTPException(status_code=503, detail=f"Analysis unavailable: {exc.message}") from exc
    return QuickAnalysisResponse(meeting_id=request.meeting_id, summary=summary)
