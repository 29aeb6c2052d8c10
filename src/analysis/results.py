"""Flatten a pipeline result into the fields stored on an analysis row."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from src.analysis.pipeline import PipelineResult

_BRACKETED_TS = re.compile(r"\[(\d{1,2}):(\d{2})(?::(\d{2}))?\]")
_INLINE_TS = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?")

HANDLED_THRESHOLD = 7


@dataclass
class PersistableAnalysis:
    script_score: int
    icp_fit: str
    summary: str
    next_action: str
    objections: list[dict[str, Any]]
    full_report: dict[str, Any]
    processing_duration_ms: int
    pipeline_stats: dict[str, Any]

    def to_row(self, meeting_id: str) -> dict[str, Any]:
        return {
            "meeting_id": meeting_id,
            "script_score": self.script_score,
            "icp_fit": self.icp_fit,
            "summary": self.summary,
            "next_action": self.next_action,
            "objections": self.objections,
            "highlights": [],
            "full_report": self.full_report,
            "processing_duration_ms": self.processing_duration_ms,
            "pipeline_stats": self.pipeline_stats,
        }


def clamp_score(value: Any) -> int:
    """Round half-up and clamp to ``[0, 100]``; non-numbers become 0."""
    if isinstance(value, bool) or not isinstance(value, int | float) or not math.isfinite(value):
        return 0
    return max(0, min(100, math.floor(value + 0.5)))


def normalize_icp_status(status: Any) -> str:
    """Map HIGH/MEDIUM/LOW (any case) to lowercase; anything else is ``low``."""
    if not isinstance(status, str):
        return "low"
    normalized = status.strip().lower()
    return normalized if normalized in ("high", "medium") else "low"


def extract_timestamp_hint(text: str) -> int:
    """Seconds of the first ``[mm:ss]``/``[hh:mm:ss]`` in *text* (bare times as a fallback), else 0."""
    if not text:
        return 0
    match = _BRACKETED_TS.search(text) or _INLINE_TS.search(text)
    if match is None:
        return 0
    first, second, third = match.groups()
    if third is not None:
        return int(first) * 3600 + int(second) * 60 + int(third)
    return int(first) * 60 + int(second)


def build_persistable_analysis(result: PipelineResult) -> PersistableAnalysis:
    """Derive the flat analysis fields from a successful pipeline run.

    Raises:
        ValueError: If the run failed or carries no report.
    """
    if not result.success or result.report is None:
        msg = f"Pipeline result for meeting {result.meeting_id} indicates failure"
        raise ValueError(msg)

    report = result.report
    objections = [
        {
            "type": item.categoria,
            "text": item.cliente_citacao_ampliada,
            "timestamp": extract_timestamp_hint(item.cliente_citacao_ampliada),
            "handled": item.avaliacao_resposta.nota >= HANDLED_THRESHOLD,
        }
        for item in report.analise_objecoes.lista
    ]
    return PersistableAnalysis(
        script_score=clamp_score(report.aderencia_ao_script.score_geral),
        icp_fit=normalize_icp_status(report.analise_icp.status.value),
        summary=report.resumo_executivo.strip(),
        next_action=report.proxima_acao_recomendada.acao.strip(),
        objections=objections,
        full_report=report.model_dump(mode="json"),
        processing_duration_ms=result.stats.processing_time_ms,
        pipeline_stats=result.stats.to_dict(),
    )
