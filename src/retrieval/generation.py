"""Grounded question answering over one meeting.

One chat component with two retrieval strategies: chunk-embedding search
when the meeting has a live index, segment keyword ranking when only the
raw transcript and the stored report are available.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any

from src.analysis import prompts
from src.analysis.engine import AnalysisContext, MultiModelEngine, build_context_content
from src.analysis.guidelines import GuidelineSource, get_active_guidelines
from src.analysis.models import FullAnalysisReport
from src.ingestion.models import TranscriptSegment
from src.ingestion.parsers import format_timestamp, parse_to_segments
from src.pipeline_config import ChatStrategy
from src.retrieval.ranking import pick_relevant_segments
from src.retrieval.search import CHAT_ANALYSIS_TYPE, RAGService

logger = logging.getLogger(__name__)

REPORT_MAX_CHARS = 8000
TRANSCRIPT_MAX_CHARS = 6000
GUIDELINE_EXCERPT_CHARS = 1000
MAX_CHAT_SEGMENTS = 8
MAX_CHAT_CHUNKS = 5


@dataclass
class ChatRequest:
    """One question about one meeting, with whatever grounding is at hand."""

    meeting_id: str
    question: str
    report: FullAnalysisReport | dict[str, Any] | None = None
    transcript_text: str = ""
    segments: list[TranscriptSegment] = field(default_factory=list)


@dataclass
class ChatAnswer:
    answer: str
    strategy: ChatStrategy
    sources: list[dict[str, Any]] = field(default_factory=list)
    model: str | None = None
    tokens_used: int = 0

    @property
    def grounded(self) -> bool:
        return self.strategy is not ChatStrategy.NONE


def _segment_time(seconds: float | None) -> str:
    if seconds is None or not math.isfinite(seconds):
        return "estimado"
    return format_timestamp(seconds)


def render_segment(segment: TranscriptSegment, index: int) -> str:
    """``n. [mm:ss-mm:ss] Speaker: text``; unlabeled turns default to the client."""
    speaker = f"{segment.speaker}:" if segment.speaker else "Cliente:"
    span = f"{_segment_time(segment.start_time)}-{_segment_time(segment.end_time)}"
    return f"{index + 1}. [{span}] {speaker} {segment.text.strip()}"


def _report_json(report: FullAnalysisReport | dict[str, Any] | None) -> str:
    if report is None:
        return ""
    data = report.model_dump(mode="json") if isinstance(report, FullAnalysisReport) else report
    return prompts.clamp_text(json.dumps(data, ensure_ascii=False, indent=2), REPORT_MAX_CHARS)


class MeetingChatEngine:
    """Answers free-form questions about a meeting, citing transcript evidence.

    Each call is stateless: conversation history lives with the client.

    Args:
        engine: Model engine providing ``chat_completion``.
        rag: RAG service for the embedding strategy; ``None`` restricts the
            engine to segment ranking.
        guideline_source: Source of the active script/ICP playbooks quoted
            as reference criteria.
    """

    def __init__(
        self,
        engine: MultiModelEngine,
        rag: RAGService | None = None,
        guideline_source: GuidelineSource | None = None,
        max_segments: int = MAX_CHAT_SEGMENTS,
        max_chunks: int = MAX_CHAT_CHUNKS,
    ) -> None:
        self.engine = engine
        self.rag = rag
        self.guideline_source = guideline_source
        self.max_segments = max_segments
        self.max_chunks = max_chunks

    async def select_strategy(self, request: ChatRequest) -> ChatStrategy:
        if self.rag is not None and await self.rag.has_index(request.meeting_id):
            return ChatStrategy.EMBEDDING
        if request.segments or request.transcript_text.strip() or request.report is not None:
            return ChatStrategy.SEGMENTS
        return ChatStrategy.NONE

    async def answer(self, request: ChatRequest) -> ChatAnswer:
        """Answer *request.question*; never calls the model without evidence."""
        strategy = await self.select_strategy(request)
        logger.info("Chat for meeting %s using %s strategy", request.meeting_id, strategy.value)

        if strategy is ChatStrategy.EMBEDDING:
            if self.rag is None:
                msg = "embedding strategy selected without a RAG service"
                raise RuntimeError(msg)
            results = await self.rag.search_for_chat(
                request.meeting_id, request.question, max_results=self.max_chunks
            )
            if not results:
                logger.info("No chunks above the similarity floor for meeting %s", request.meeting_id)
                return ChatAnswer(answer=prompts.NO_EVIDENCE_ANSWER, strategy=ChatStrategy.NONE)
            evidence = build_context_content(AnalysisContext(request.meeting_id, results, CHAT_ANALYSIS_TYPE))
            sources = [r.to_dict() for r in results]
        elif strategy is ChatStrategy.SEGMENTS:
            segments = request.segments or parse_to_segments(request.transcript_text)
            picked = pick_relevant_segments(request.question, segments, self.max_segments)
            evidence = (
                "\n".join(render_segment(s, i) for i, s in enumerate(picked))
                if picked
                else prompts.NO_SEGMENTS_PLACEHOLDER
            )
            sources = [
                {"speaker": s.speaker, "text": s.text, "start_time": s.start_time, "end_time": s.end_time}
                for s in picked
            ]
        else:
            return ChatAnswer(answer=prompts.NO_EVIDENCE_ANSWER, strategy=ChatStrategy.NONE)

        guidelines = await get_active_guidelines(self.guideline_source)
        guideline_excerpt = (
            f"SCRIPT:\n{guidelines.script[:GUIDELINE_EXCERPT_CHARS]}\n\n"
            f"ICP:\n{guidelines.icp[:GUIDELINE_EXCERPT_CHARS]}"
        )
        user_prompt = prompts.build_chat_prompt(
            request.question,
            evidence,
            _report_json(request.report),
            prompts.clamp_text(request.transcript_text, TRANSCRIPT_MAX_CHARS),
            guideline_excerpt,
        )
        response = await self.engine.chat_completion(prompts.CHAT_SYSTEM_PROMPT, user_prompt)
        return ChatAnswer(
            answer=response.content.strip() or prompts.NO_EVIDENCE_ANSWER,
            strategy=strategy,
            sources=sources,
            model=response.model,
            tokens_used=response.tokens_used,
        )
