"""Multi-model analysis engine: Claude for deep context, OpenAI for the rest."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import anthropic
import openai
from anthropic import AsyncAnthropic
from anthropic.types import TextBlock
from openai import AsyncOpenAI

from src.analysis import prompts
from src.analysis.guidelines import ICP_GUIDELINES, SCRIPT_GUIDELINES
from src.config import Settings, settings
from src.errors import QuotaExceededError, StageTimeoutError, UpstreamServiceError
from src.ingestion.models import EmbeddingSearchResult
from src.ingestion.parsers import format_timestamp
from src.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "=== TRECHOS RELEVANTES DA REUNIÃO ==="
TRUNCATION_MARKER = "[CONTEÚDO TRUNCADO]"
QUICK_CONTEXT_CHARS = 2000

# Anthropic "overloaded" responses signal resource exhaustion
_ANTHROPIC_EXHAUSTED_STATUSES = {429, 529}

T = TypeVar("T")


@dataclass
class ModelResponse:
    """Raw model output plus accounting; ``content`` is expected to be JSON."""

    content: str
    model: str
    tokens_used: int
    processing_time_ms: int


@dataclass
class AnalysisContext:
    """Retrieved evidence threaded through one engine call."""

    meeting_id: str
    chunks: list[EmbeddingSearchResult] = field(default_factory=list)
    analysis_type: str = "general"


@dataclass
class ModelAvailability:
    general_available: bool
    deep_available: bool


def render_evidence_block(chunk: EmbeddingSearchResult) -> str:
    speaker = chunk.dominant_speaker or (chunk.speakers[0] if chunk.speakers else "Unknown")
    return f"[{format_timestamp(chunk.start_time)}] {speaker}:\n{chunk.content}\n\n"


def build_context_content(context: AnalysisContext, max_length: int | None = None) -> str:
    """Render retrieved chunks as prompt text, in retrieval order.

    When *max_length* is given, only whole evidence blocks that fit are kept
    and a truncation marker is appended.
    """
    content = f"{CONTEXT_HEADER}\n\n"
    for chunk in context.chunks:
        block = render_evidence_block(chunk)
        if max_length is not None and len(content) + len(block) > max_length:
            return content + TRUNCATION_MARKER
        content += block
    return content


class MultiModelEngine:
    """Issues analysis prompts with a single-level deep → general fallback.

    Script and ICP analyses prefer the deep-context (Anthropic) model when
    it is enabled; a quota or overload error from it re-runs the same
    prompt once on the general (OpenAI) model. Objections and consolidation
    always use the general model; quick summaries and chat use the quick
    model. Output is returned raw; callers parse and validate it.

    Args:
        openai_client: Async OpenAI client (general and quick models).
        anthropic_client: Async Anthropic client, or None to disable the
            deep-context model.
        config: Settings supplying model names, limits and timeouts.
        limiter: Concurrency/rate limiter shared by all model calls.
    """

    def __init__(
        self,
        openai_client: AsyncOpenAI,
        anthropic_client: AsyncAnthropic | None = None,
        config: Settings = settings,
        limiter: AsyncRateLimiter | None = None,
    ) -> None:
        self.openai = openai_client
        self.anthropic = anthropic_client
        self.config = config
        self.general_model = config.general_model
        self.quick_model = config.quick_model
        self.deep_model = config.deep_model
        self.use_deep_model = config.use_deep_model
        self.timeout = config.llm_timeout_seconds
        self.limiter = limiter or AsyncRateLimiter(rate=0, max_concurrency=config.llm_max_concurrency)

    @property
    def deep_enabled(self) -> bool:
        return self.use_deep_model and self.anthropic is not None

    async def _bounded(self, coro: Awaitable[T], stage: str) -> T:
        async with self.limiter.limit():
            try:
                return await asyncio.wait_for(coro, timeout=self.timeout)
            except TimeoutError as exc:
                msg = f"model call exceeded {self.timeout:.0f}s"
                raise StageTimeoutError(msg, stage=stage) from exc

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _openai_completion(
        self,
        model: str,
        messages: list[dict[str, str]],
        stage: str,
        *,
        max_tokens: int,
        temperature: float,
        json_mode: bool = False,
    ) -> ModelResponse:
        started = time.perf_counter()
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._bounded(self.openai.chat.completions.create(**kwargs), stage)
        except openai.RateLimitError as exc:
            raise QuotaExceededError(f"OpenAI quota exceeded: {exc}", service="openai", stage=stage) from exc
        except openai.OpenAIError as exc:
            raise UpstreamServiceError(f"OpenAI request failed: {exc}", service="openai", stage=stage) from exc

        usage = response.usage
        return ModelResponse(
            content=response.choices[0].message.content or "",
            model=model,
            tokens_used=usage.total_tokens if usage else 0,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )

    async def _general(self, context: AnalysisContext, prompt: str, system_prompt: str) -> ModelResponse:
        user_content = f"{build_context_content(context)}\n\n{prompt}"
        return await self._openai_completion(
            self.general_model,
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            context.analysis_type,
            max_tokens=self.config.general_max_tokens,
            temperature=self.config.analysis_temperature,
            json_mode=True,
        )

    async def _deep(self, context: AnalysisContext, prompt: str, system_prompt: str) -> ModelResponse:
        if self.anthropic is None:
            msg = "deep-context model is not configured"
            raise RuntimeError(msg)
        started = time.perf_counter()
        stage = context.analysis_type
        try:
            response = await self._bounded(
                self.anthropic.messages.create(
                    model=self.deep_model,
                    max_tokens=self.config.deep_max_tokens,
                    temperature=self.config.analysis_temperature,
                    system=system_prompt,
                    messages=[
                        {"role": "user", "content": f"{build_context_content(context)}\n\n{prompt}"}
                    ],
                ),
                stage,
            )
        except anthropic.RateLimitError as exc:
            raise QuotaExceededError(f"Anthropic rate limit: {exc}", service="anthropic", stage=stage) from exc
        except anthropic.APIStatusError as exc:
            if exc.status_code in _ANTHROPIC_EXHAUSTED_STATUSES:
                msg = f"Anthropic resources exhausted ({exc.status_code})"
                raise QuotaExceededError(msg, service="anthropic", stage=stage) from exc
            raise UpstreamServiceError(f"Anthropic request failed: {exc.message}", service="anthropic", stage=stage) from exc
        except anthropic.AnthropicError as exc:
            raise UpstreamServiceError(f"Anthropic request failed: {exc}", service="anthropic", stage=stage) from exc

        text = "".join(block.text for block in response.content if isinstance(block, TextBlock))
        return ModelResponse(
            content=text,
            model=self.deep_model,
            tokens_used=response.usage.input_tokens + response.usage.output_tokens,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )

    async def _deep_with_fallback(
        self, context: AnalysisContext, prompt: str, system_prompt: str, allow_deep: bool
    ) -> ModelResponse:
        if not (allow_deep and self.deep_enabled):
            return await self._general(context, prompt, system_prompt)
        try:
            return await self._deep(context, prompt, system_prompt)
        except QuotaExceededError as exc:
            logger.warning(
                "Deep model unavailable for %s analysis (%s); falling back to %s",
                context.analysis_type,
                exc.message,
                self.general_model,
            )
            return await self._general(context, prompt, system_prompt)

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    async def analyze_script(
        self, context: AnalysisContext, guidelines: str | None = None, *, allow_deep: bool = True
    ) -> ModelResponse:
        text = guidelines if guidelines and guidelines.strip() else SCRIPT_GUIDELINES
        return await self._deep_with_fallback(
            context, prompts.script_analysis_prompt(), prompts.script_system_prompt(text), allow_deep
        )

    async def analyze_icp(
        self, context: AnalysisContext, guidelines: str | None = None, *, allow_deep: bool = True
    ) -> ModelResponse:
        text = guidelines if guidelines and guidelines.strip() else ICP_GUIDELINES
        return await self._deep_with_fallback(
            context, prompts.icp_analysis_prompt(), prompts.icp_system_prompt(text), allow_deep
        )

    async def analyze_objections(self, context: AnalysisContext) -> ModelResponse:
        return await self._general(
            context, prompts.OBJECTIONS_ANALYSIS_PROMPT, prompts.OBJECTIONS_SYSTEM_PROMPT
        )

    async def generate_final_report(
        self,
        script_analysis: dict[str, Any],
        icp_analysis: dict[str, Any],
        objections_analysis: dict[str, Any],
        context: AnalysisContext,
    ) -> ModelResponse:
        """Consolidate the three partial analyses into one report (raw JSON)."""
        prompt = prompts.consolidation_prompt(script_analysis, icp_analysis, objections_analysis)
        return await self._general(context, prompt, prompts.CONSOLIDATION_SYSTEM_PROMPT)

    async def quick_summary(self, context: AnalysisContext) -> ModelResponse:
        """Two-to-three sentence summary from a reduced context."""
        content = build_context_content(context, QUICK_CONTEXT_CHARS)
        return await self._openai_completion(
            self.quick_model,
            [
                {"role": "system", "content": prompts.QUICK_SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": f"{content}\n\n{prompts.QUICK_SUMMARY_PROMPT}"},
            ],
            "quick_summary",
            max_tokens=self.config.quick_max_tokens,
            temperature=self.config.analysis_temperature,
        )

    async def chat_completion(self, system_prompt: str, user_prompt: str) -> ModelResponse:
        """Single-turn grounded answer from the quick model."""
        return await self._openai_completion(
            self.quick_model,
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "chat",
            max_tokens=self.config.chat_max_tokens,
            temperature=self.config.chat_temperature,
        )

    async def test_models(self) -> ModelAvailability:
        """Ping each configured model with a one-token request."""
        general_ok = True
        try:
            await self._openai_completion(
                self.quick_model,
                [{"role": "user", "content": "test"}],
                "health",
                max_tokens=1,
                temperature=0,
            )
        except (UpstreamServiceError, StageTimeoutError) as exc:
            logger.warning("General model health check failed: %s", exc)
            general_ok = False

        deep_ok = False
        if self.anthropic is not None:
            try:
                await self._bounded(
                    self.anthropic.messages.create(
                        model=self.deep_model,
                        max_tokens=1,
                        messages=[{"role": "user", "content": "test"}],
                    ),
                    "health",
                )
                deep_ok = True
            except (anthropic.AnthropicError, StageTimeoutError) as exc:
                logger.warning("Deep model health check failed: %s", exc)

        return ModelAvailability(general_available=general_ok, deep_available=deep_ok)

