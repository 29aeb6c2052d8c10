"""Four-layer analysis pipeline: index, analyse, consolidate, prepare chat."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import asdict, dataclass, field
from typing import Any, TypeVar

from src.analysis.engine import AnalysisContext, ModelResponse, MultiModelEngine
from src.analysis.guidelines import ActiveGuidelines, GuidelineSource, get_active_guidelines
from src.analysis.models import FullAnalysisReport
from src.analysis.validation import parse_model_json, validate_report
from src.config import Settings, settings
from src.errors import (
    IndexingError,
    MeetingAnalysisError,
    ModelResponseFormatError,
    StageTimeoutError,
)
from src.ingestion.models import EmbeddingSearchResult, TranscriptSegment
from src.pipeline_config import AnalysisType, PipelineConfig
from src.retrieval.generation import ChatAnswer, ChatRequest, MeetingChatEngine
from src.retrieval.search import GENERAL_ANALYSIS_TYPE, RAGService, dedupe_results

logger = logging.getLogger(__name__)

CONSOLIDATION_ANALYSIS_TYPE = "consolidation"

T = TypeVar("T")


@dataclass
class ProcessingStats:
    """Work accounted for during one run, including runs that failed midway."""

    total_tokens: int = 0
    processing_time_ms: int = 0
    models_used: list[str] = field(default_factory=list)
    chunks_processed: int = 0
    embeddings_generated: int = 0
    evidence_chunks: int = 0

    def record(self, response: ModelResponse) -> None:
        self.total_tokens += response.tokens_used
        if response.model not in self.models_used:
            self.models_used.append(response.model)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PipelineResult:
    success: bool
    meeting_id: str
    report: FullAnalysisReport | None
    stats: ProcessingStats
    raw_analyses: dict[str, Any] = field(default_factory=dict)
    quick_summary: str | None = None
    chat_ready: bool = False
    error: str | None = None
    failed_stage: str | None = None


@dataclass
class SystemHealth:
    general_model: bool
    deep_model: bool
    vector_store: bool
    storage: dict[str, Any]

    @property
    def healthy(self) -> bool:
        return self.general_model and self.vector_store

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "healthy": self.healthy}


class AnalysisPipeline:
    """Top-level orchestrator over the RAG service and the model engine.

    Layers run strictly in order: the index must be complete before any
    specialized analysis starts. Specialized analyses fan out concurrently
    and join by analysis type; one failure fails the layer and cancels the
    others. Every stage has its own timeout. Failures never raise: they come
    back as a ``PipelineResult`` with ``success=False`` and the work done so
    far in ``stats``. Retries belong to the caller.

    Args:
        rag: Indexing and retrieval service.
        engine: Multi-model engine for analyses and summaries.
        chat: Chat engine; built from *engine* and *rag* when omitted.
        guideline_source: Provider of custom script/ICP playbooks.
        config: Settings supplying stage timeouts.
    """

    def __init__(
        self,
        rag: RAGService,
        engine: MultiModelEngine,
        chat: MeetingChatEngine | None = None,
        guideline_source: GuidelineSource | None = None,
        config: Settings = settings,
    ) -> None:
        self.rag = rag
        self.engine = engine
        self.guideline_source = guideline_source
        self.chat = chat or MeetingChatEngine(engine, rag, guideline_source)
        self.analysis_timeout = config.analysis_timeout_seconds
        self.consolidation_timeout = config.consolidation_timeout_seconds

    async def _timed(self, coro: Awaitable[T], stage: str, timeout: float, meeting_id: str) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except TimeoutError as exc:
            msg = f"stage exceeded {timeout:.0f}s"
            raise StageTimeoutError(msg, meeting_id=meeting_id, stage=stage) from exc

    # ------------------------------------------------------------------
    # Full pipeline
    # ------------------------------------------------------------------

    async def execute_full_pipeline(
        self,
        meeting_id: str,
        transcript: str,
        pipeline_config: PipelineConfig | None = None,
    ) -> PipelineResult:
        """Index *transcript*, run the configured analyses and consolidate them."""
        config = pipeline_config or PipelineConfig()
        started = time.perf_counter()
        stats = ProcessingStats()
        raw_analyses: dict[str, Any] = {}
        stage = "index"

        try:
            logger.info("Layer 1: indexing meeting %s", meeting_id)
            index = await self.rag.index_transcript(meeting_id, transcript)
            stats.chunks_processed = index.chunk_count
            stats.embeddings_generated = index.embedding_count
            if index.chunk_count == 0:
                raise IndexingError("transcript produced no chunks", meeting_id=meeting_id, stage=stage)

            stage = "analysis"
            logger.info("Layer 2: %d specialized analyses for meeting %s", len(config.analysis_types), meeting_id)
            guidelines = await get_active_guidelines(self.guideline_source)
            evidence = await self._run_analyses(meeting_id, config, guidelines, stats, raw_analyses)

            stage = "consolidation"
            logger.info("Layer 3: consolidating meeting %s", meeting_id)
            report = await self._consolidate(meeting_id, raw_analyses, evidence, stats)

            stage = "chat_preparation"
            logger.info("Layer 4: preparing chat for meeting %s", meeting_id)
            chat_ready = await self.rag.has_index(meeting_id)
            quick_summary = await self._preview_summary(meeting_id, stats) if config.generate_quick_summary else None
        except MeetingAnalysisError as exc:
            stats.processing_time_ms = int((time.perf_counter() - started) * 1000)
            failed_stage = exc.stage or stage
            logger.error("Pipeline failed for meeting %s at %s: %s", meeting_id, failed_stage, exc)
            return PipelineResult(
                success=False,
                meeting_id=meeting_id,
                report=None,
                stats=stats,
                raw_analyses=raw_analyses,
                error=exc.message,
                failed_stage=failed_stage,
            )

        stats.processing_time_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Pipeline completed for meeting %s in %dms (%d tokens, models: %s)",
            meeting_id,
            stats.processing_time_ms,
            stats.total_tokens,
            ", ".join(stats.models_used),
        )
        return PipelineResult(
            success=True,
            meeting_id=meeting_id,
            report=report,
            stats=stats,
            raw_analyses=raw_analyses,
            quick_summary=quick_summary,
            chat_ready=chat_ready,
        )

    async def _analyze(
        self,
        meeting_id: str,
        analysis_type: AnalysisType,
        config: PipelineConfig,
        guidelines: ActiveGuidelines,
    ) -> tuple[ModelResponse, list[EmbeddingSearchResult]]:
        results = await self.rag.search_for_type(meeting_id, analysis_type, use_cache=config.enable_rag_cache)
        context = AnalysisContext(meeting_id, results, analysis_type.value)
        logger.debug("%s analysis for meeting %s with %d chunks", analysis_type.value, meeting_id, len(results))

        if analysis_type is AnalysisType.SCRIPT:
            call = self.engine.analyze_script(context, guidelines.script, allow_deep=config.use_deep_model)
        elif analysis_type is AnalysisType.ICP:
            call = self.engine.analyze_icp(context, guidelines.icp, allow_deep=config.use_deep_model)
        else:
            call = self.engine.analyze_objections(context)
        response = await self._timed(call, f"analysis:{analysis_type.value}", self.analysis_timeout, meeting_id)
        return response, results

    async def _run_analyses(
        self,
        meeting_id: str,
        config: PipelineConfig,
        guidelines: ActiveGuidelines,
        stats: ProcessingStats,
        raw_analyses: dict[str, Any],
    ) -> list[EmbeddingSearchResult]:
        async def run_one(analysis_type: AnalysisType) -> list[EmbeddingSearchResult]:
            response, results = await self._analyze(meeting_id, analysis_type, config, guidelines)
            stats.record(response)
            parsed = parse_model_json(response.content, analysis_type.value)
            if not isinstance(parsed, dict):
                raise ModelResponseFormatError(
                    analysis_type.value, raw=response.content, meeting_id=meeting_id, stage="analysis"
                )
            raw_analyses[analysis_type.value] = parsed
            return results

        tasks = [asyncio.create_task(run_one(t)) for t in config.analysis_types]
        try:
            batches = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return dedupe_results([r for batch in batches for r in batch])

    async def _consolidate(
        self,
        meeting_id: str,
        raw_analyses: dict[str, Any],
        evidence: list[EmbeddingSearchResult],
        stats: ProcessingStats,
    ) -> FullAnalysisReport:
        stats.evidence_chunks = len(evidence)
        context = AnalysisContext(meeting_id, evidence, CONSOLIDATION_ANALYSIS_TYPE)
        response = await self._timed(
            self.engine.generate_final_report(
                raw_analyses.get(AnalysisType.SCRIPT.value, {}),
                raw_analyses.get(AnalysisType.ICP.value, {}),
                raw_analyses.get(AnalysisType.OBJECTIONS.value, {}),
                context,
            ),
            "consolidation",
            self.consolidation_timeout,
            meeting_id,
        )
        stats.record(response)
        return validate_report(response.content, "final_report")

    async def _preview_summary(self, meeting_id: str, stats: ProcessingStats) -> str | None:
        # The report is already validated; a failed preview does not fail the run.
        try:
            results = await self.rag.search_for_summary(meeting_id)
            response = await self._timed(
                self.engine.quick_summary(AnalysisContext(meeting_id, results, GENERAL_ANALYSIS_TYPE)),
                "quick_summary",
                self.analysis_timeout,
                meeting_id,
            )
        except MeetingAnalysisError as exc:
            logger.warning("Quick summary skipped for meeting %s: %s", meeting_id, exc)
            return None
        stats.record(response)
        return response.content.strip()

    # ------------------------------------------------------------------
    # Quick and chat modes
    # ------------------------------------------------------------------

    async def quick_analysis(self, meeting_id: str, transcript: str) -> str:
        """Index, then one targeted retrieval and a short summary.

        Raises:
            IndexingError: If the transcript yields no chunks.
            MeetingAnalysisError: If indexing or the summary call fails.
        """
        index = await self.rag.index_transcript(meeting_id, transcript)
        if index.chunk_count == 0:
            raise IndexingError("transcript produced no chunks", meeting_id=meeting_id, stage="index")
        results = await self.rag.search_for_summary(meeting_id)
        response = await self._timed(
            self.engine.quick_summary(AnalysisContext(meeting_id, results, GENERAL_ANALYSIS_TYPE)),
            "quick_summary",
            self.analysis_timeout,
            meeting_id,
        )
        return response.content.strip()

    async def chat_with_meeting(
        self,
        meeting_id: str,
        question: str,
        report: FullAnalysisReport | dict[str, Any] | None = None,
        transcript_text: str = "",
        segments: list[TranscriptSegment] | None = None,
    ) -> ChatAnswer:
        """Answer a question about an indexed (or at least stored) meeting."""
        request = ChatRequest(
            meeting_id=meeting_id,
            question=question,
            report=report,
            transcript_text=transcript_text,
            segments=segments or [],
        )
        return await self.chat.answer(request)

    async def get_system_health(self) -> SystemHealth:
        """Ping the models and the vector store and report storage usage."""
        models, store_ok = await asyncio.gather(self.engine.test_models(), self.rag.test_connection())
        storage: dict[str, Any] = {}
        if store_ok:
            try:
                storage = asdict(await self.rag.get_stats())
            except MeetingAnalysisError as exc:
                logger.warning("Storage stats unavailable: %s", exc)
        return SystemHealth(
            general_model=models.general_available,
            deep_model=models.deep_available,
            vector_store=store_ok,
            storage=storage,
        )
