"""Background analysis jobs.

``AnalysisProcessor`` runs the pipeline for one stored transcript and
persists the outcome. ``AnalysisJobQueue`` hands transcripts to it through
an ``asyncio.Queue`` consumed by a single worker task, so HTTP handlers can
acknowledge immediately and callers poll the job id for completion.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from src.analysis.pipeline import AnalysisPipeline
from src.analysis.results import build_persistable_analysis
from src.config import settings
from src.errors import MeetingAnalysisError
from src.persistence import MeetingRepository, MeetingStatus
from src.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class AnalysisJob:
    """One queued analysis of a stored transcript.

    Attributes:
        transcript_id: Transcript to analyse.
        job_id: Identifier returned to the submitter for polling.
        attempts: Number of times the job has been started.
    """

    transcript_id: str
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    status: JobStatus = JobStatus.PENDING
    error_message: str | None = None
    attempts: int = 0

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.IN_PROGRESS)

    def mark_started(self) -> None:
        self.started_at = _utcnow()
        self.status = JobStatus.IN_PROGRESS
        self.attempts += 1

    def mark_completed(self) -> None:
        self.finished_at = _utcnow()
        self.status = JobStatus.COMPLETED
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        self.finished_at = _utcnow()
        self.status = JobStatus.FAILED
        self.error_message = error_message

    def mark_cancelled(self) -> None:
        self.finished_at = _utcnow()
        self.status = JobStatus.CANCELLED

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "transcript_id": self.transcript_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class AnalysisProcessor:
    """Analyses stored transcripts and writes the results back.

    Skips meetings that already have an analysis. Moves the meeting through
    processing → completed/failed and records failures on the transcript.
    """

    def __init__(
        self,
        pipeline: AnalysisPipeline,
        repository: MeetingRepository,
        pipeline_config: PipelineConfig | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.repository = repository
        self.pipeline_config = pipeline_config or PipelineConfig()
        self._batch_lock = asyncio.Lock()

    async def process_transcript(self, transcript_id: str) -> bool:
        """Run the full pipeline for one transcript; True when an analysis exists afterwards."""
        record = await self.repository.get_transcript(transcript_id)
        if record is None or not record.raw_text.strip():
            logger.error("No valid transcript found for id %s", transcript_id)
            return False

        meeting_id = record.meeting_id
        if await self.repository.find_existing_analysis(meeting_id):
            logger.info("Analysis already exists for meeting %s, skipping", meeting_id)
            return True

        await self.repository.update_meeting_status(meeting_id, MeetingStatus.PROCESSING)
        logger.info("Starting analysis for transcript %s (meeting %s)", transcript_id, meeting_id)
        result = await self.pipeline.execute_full_pipeline(meeting_id, record.raw_text, self.pipeline_config)

        if result.success:
            try:
                analysis = build_persistable_analysis(result)
                await self.repository.insert_analysis(meeting_id, analysis)
            except MeetingAnalysisError as exc:
                error = f"could not store analysis: {exc.message}"
            else:
                await self.repository.mark_transcript_processed(transcript_id)
                await self.repository.update_meeting_status(meeting_id, MeetingStatus.COMPLETED)
                logger.info("Processed transcript %s in %dms", transcript_id, result.stats.processing_time_ms)
                return True
        else:
            error = result.error or "analysis failed"

        logger.error("Analysis failed for transcript %s: %s", transcript_id, error)
        await self.repository.mark_transcript_processed(transcript_id, error=error)
        await self.repository.update_meeting_status(meeting_id, MeetingStatus.FAILED)
        return False

    async def process_pending(self, limit: int | None = None) -> int:
        """Process up to *limit* pending transcripts in order; returns the success count.

        A second call while a batch is running returns 0 immediately.
        """
        if self._batch_lock.locked():
            logger.info("Batch processing already in progress")
            return 0
        async with self._batch_lock:
            pending = await self.repository.find_pending_transcripts(limit or settings.pending_batch_size)
            logger.info("Found %d pending transcripts", len(pending))
            processed = 0
            for record in pending:
                if await self.process_transcript(record.id):
                    processed += 1
            logger.info("Processed %d of %d pending transcripts", processed, len(pending))
            return processed


class AnalysisJobQueue:
    """FIFO queue of analysis jobs processed one at a time by a worker task.

    Submitting a transcript that already has a pending or running job
    returns that job instead of queueing a duplicate. Failed jobs are
    re-queued up to ``max_retries`` times.

    Args:
        processor: Processor that runs each job.
        max_retries: Extra attempts allowed for a failed job.
    """

    def __init__(self, processor: AnalysisProcessor, max_retries: int = settings.job_max_retries) -> None:
        self.processor = processor
        self.max_retries = max_retries
        self._queue: asyncio.Queue[AnalysisJob] = asyncio.Queue()
        self._jobs: dict[str, AnalysisJob] = {}
        self._active_by_transcript: dict[str, str] = {}
        self._worker_task: asyncio.Task[None] | None = None
        self._is_running = False
        self._current_job: AnalysisJob | None = None
        self._total_completed = 0
        self._total_failed = 0

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def submit(self, transcript_id: str) -> AnalysisJob:
        """Queue *transcript_id* for analysis, starting the worker if needed."""
        active_id = self._active_by_transcript.get(transcript_id)
        if active_id is not None:
            logger.info("Transcript %s already queued as job %s", transcript_id, active_id)
            return self._jobs[active_id]

        job = AnalysisJob(transcript_id=transcript_id)
        self._jobs[job.job_id] = job
        self._active_by_transcript[transcript_id] = job.job_id
        await self._queue.put(job)
        logger.info("Queued job %s for transcript %s", job.job_id, transcript_id)

        if not self._is_running:
            await self.start()
        return job

    async def submit_pending(self, limit: int | None = None) -> list[AnalysisJob]:
        pending = await self.processor.repository.find_pending_transcripts(limit or settings.pending_batch_size)
        return [await self.submit(record.id) for record in pending]

    def get_job(self, job_id: str) -> AnalysisJob | None:
        return self._jobs.get(job_id)

    async def start(self) -> None:
        if self._is_running:
            return
        self._is_running = True
        self._worker_task = asyncio.create_task(self._worker())

    async def stop(self, wait_for_completion: bool = True) -> None:
        """Stop the worker; without *wait_for_completion* the running job is cancelled."""
        if not self._is_running:
            return
        self._is_running = False
        if self._worker_task is not None:
            if not wait_for_completion:
                self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
        self._worker_task = None

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _worker(self) -> None:
        while self._is_running:
            try:
                job = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue
            self._current_job = job
            try:
                await self._process(job)
            except asyncio.CancelledError:
                job.mark_cancelled()
                self._active_by_transcript.pop(job.transcript_id, None)
                raise
            finally:
                self._current_job = None
                self._queue.task_done()

    async def _process(self, job: AnalysisJob) -> None:
        job.mark_started()
        try:
            succeeded = await self.processor.process_transcript(job.transcript_id)
            error = None if succeeded else "analysis failed"
        except MeetingAnalysisError as exc:
            error = str(exc)
        except Exception as exc:
            logger.exception("Job %s crashed", job.job_id)
            error = f"unexpected error: {exc!r}"

        if error is None:
            job.mark_completed()
            self._total_completed += 1
            self._active_by_transcript.pop(job.transcript_id, None)
            logger.info("Job %s completed", job.job_id)
            return

        if job.attempts <= self.max_retries:
            logger.warning("Job %s failed (%s); retrying", job.job_id, error)
            job.status = JobStatus.PENDING
            job.error_message = error
            await self._queue.put(job)
            return

        job.mark_failed(error)
        self._total_failed += 1
        self._active_by_transcript.pop(job.transcript_id, None)
        logger.error("Job %s failed after %d attempts: %s", job.job_id, job.attempts, error)

    def get_statistics(self) -> dict[str, Any]:
        return {
            "is_running": self._is_running,
            "queue_size": self._queue.qsize(),
            "total_completed": self._total_completed,
            "total_failed": self._total_failed,
            "current_job_id": self._current_job.job_id if self._current_job else None,
        }
