"""Pydantic schema for the consolidated sales-call analysis report.

Field names follow the Portuguese JSON contract the models are prompted
with. Scores are clamped into range before validation; missing fields and
unknown enum values are rejected.
"""

from __future__ import annotations

import math
import unicodedata
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict


def clamp_number(value: Any, lower: float, upper: float) -> Any:
    """Clamp numeric-looking *value* into ``[lower, upper]``.

    Non-numeric values are returned unchanged so the field's own type check
    reports them. NaN clamps to *lower*.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return value
    if isinstance(value, int | float):
        if math.isnan(value):
            return lower
        return min(upper, max(lower, value))
    return value


def _clamped(lower: float, upper: float) -> BeforeValidator:
    return BeforeValidator(lambda value: clamp_number(value, lower, upper))


def _enum_token(value: Any) -> Any:
    """Lowercase, strip accents and join words with underscores."""
    if not isinstance(value, str):
        return value
    decomposed = unicodedata.normalize("NFD", value.strip().lower())
    plain = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return "_".join(plain.replace("-", " ").split())


Score100 = Annotated[float, _clamped(0, 100)]
Score20 = Annotated[float, _clamped(0, 20)]
Score10 = Annotated[float, _clamped(0, 10)]


def _count(value: Any) -> Any:
    value = clamp_number(value, 0, math.inf)
    if isinstance(value, float) and math.isfinite(value):
        return round(value)
    return value


Count = Annotated[int, BeforeValidator(_count)]


class IcpStatus(StrEnum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class IcpClassification(StrEnum):
    ALTO = "alto"
    MEDIO = "medio"
    BAIXO = "baixo"
    NAO_MENCIONADO = "nao_mencionado"


class PursueStatus(StrEnum):
    INSISTIR = "insistir"
    DESPRIORIZAR = "despriorizar"
    AVALIAR = "avaliar"


class _ReportModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Script adherence
# ---------------------------------------------------------------------------


class ScriptStage(_ReportModel):
    nota: Score10
    justificativa: str
    evidencias_que_sustentam: list[str]
    faltou_para_10: list[str]


class ScriptStages(_ReportModel):
    """The nine fixed stages of the demo script."""

    introducao: ScriptStage
    exploracao_cenario: ScriptStage
    apresentacao_freelaw: ScriptStage
    beneficios_escritorio: ScriptStage
    metodologia: ScriptStage
    como_funciona_delegacao: ScriptStage
    conversa_com_prestador: ScriptStage
    plano_ideal: ScriptStage
    encerramento_follow_up: ScriptStage


class ScriptAdherence(_ReportModel):
    score_geral: Score100
    etapas: ScriptStages


# ---------------------------------------------------------------------------
# ICP fit
# ---------------------------------------------------------------------------


class IcpCriterion(_ReportModel):
    classificacao: Annotated[IcpClassification, BeforeValidator(_enum_token)]
    evidencia: str
    nota: Score20


class IcpCriteria(_ReportModel):
    """The seven fixed ICP criteria."""

    porte_estrutura: IcpCriterion
    faturamento: IcpCriterion
    volume_casos: IcpCriterion
    dores_principais: IcpCriterion
    regiao: IcpCriterion
    maturidade_digital: IcpCriterion
    perfil_decisao: IcpCriterion


class WorthPursuing(_ReportModel):
    recomendacao: str
    condicoes: list[str]
    status: Annotated[PursueStatus, BeforeValidator(_enum_token)]


class IcpAnalysis(_ReportModel):
    status: Annotated[IcpStatus, BeforeValidator(lambda v: v.strip().upper() if isinstance(v, str) else v)]
    score_geral: Score100
    criterios: IcpCriteria
    vale_insistir: WorthPursuing
    observacoes: str | None = None


# ---------------------------------------------------------------------------
# Objections
# ---------------------------------------------------------------------------


class ResponseEvaluation(_ReportModel):
    nota: Score10
    racional: str


class SuggestedResponse(_ReportModel):
    texto: str
    por_que_funciona: str


class ObjectionItem(_ReportModel):
    categoria: str
    cliente_citacao_ampliada: str
    resposta_vendedor_citacao: str
    avaliacao_resposta: ResponseEvaluation
    resposta_sugerida: SuggestedResponse
    proximo_passo_demo: str


class ObjectionKpis(_ReportModel):
    total: Count
    tratadas_efetivamente: Count
    score_medio_por_categoria: dict[str, Score10]
    principais_lacunas: list[str]


class ObjectionAnalysis(_ReportModel):
    lista: list[ObjectionItem]
    kpis: ObjectionKpis


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


class PracticalSuggestion(_ReportModel):
    sugestao: str
    como_executar: list[str]
    impacto: str | None = None


class RecommendedAction(_ReportModel):
    acao: str
    prazo: str
    racional: str
    condicoes: list[str] | None = None


class SuggestedMessage(_ReportModel):
    texto: str
    por_que_funciona: str


class FullAnalysisReport(_ReportModel):
    """Canonical structured output of one successful pipeline run."""

    aderencia_ao_script: ScriptAdherence
    analise_icp: IcpAnalysis
    analise_objecoes: ObjectionAnalysis
    pontos_positivos: list[str]
    pontos_a_melhorar: list[str]
    sugestoes_praticas: list[PracticalSuggestion]
    resumo_executivo: str
    proxima_acao_recomendada: RecommendedAction
    mensagem_sugerida: SuggestedMessage
    checklist_follow_up: list[str]
