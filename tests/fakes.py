"""Deterministic stand-ins for the OpenAI and Anthropic async clients.

Completions are routed by prompt content, so one fake serves topic
tagging, the three analyses, consolidation, summaries and chat.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import anthropic
import httpx
import openai
from anthropic.types import TextBlock

from src.analysis.prompts import ICP_CRITERIA_NAMES, SCRIPT_STAGE_NAMES
from src.rate_limit import AsyncRateLimiter

SAMPLE_TRANSCRIPT = """00:00:05 - Vendedor: Bom dia, sou especialista da Freelaw. Posso gravar nossa conversa?
00:00:20 - Cliente: Pode sim. Somos cinco advogados e estamos com sobrecarga de prazos no contencioso.
00:01:10 - Vendedor: Entendo. A Freelaw monta uma equipe jurídica remota sob demanda para o escritório.
00:02:30 - Cliente: Achei interessante, mas o plano está caro para o nosso faturamento atual.
00:03:15 - Vendedor: O plano de entrada custa R$ 1.690 por mês, sem fidelidade.
00:04:40 - Cliente: Vou avaliar com meu sócio e retorno na próxima semana."""

OVERLOAD_QUOTE = "estamos com sobrecarga de prazos no contencioso"
PRICE_QUOTE = "o plano está caro para o nosso faturamento atual"

GENERAL_MODEL = "gpt-4o"
DEEP_MODEL = "claude-3-5-haiku-20241022"


def _stage(nota: float = 7) -> dict[str, Any]:
    return {
        "nota": nota,
        "justificativa": "Etapa conduzida parcialmente.",
        "evidencias_que_sustentam": ['"Posso gravar nossa conversa?" [00:05]'],
        "faltou_para_10": ["Explorar o histórico do escritório"],
    }


def _criterion(classificacao: str = "medio", evidencia: str = "não houve menção", nota: float = 10) -> dict[str, Any]:
    return {"classificacao": classificacao, "evidencia": evidencia, "nota": nota}


def script_analysis(score: float = 72) -> dict[str, Any]:
    return {"score_geral": score, "etapas": {name: _stage() for name in SCRIPT_STAGE_NAMES}}


def icp_analysis(status: str = "HIGH") -> dict[str, Any]:
    criterios = {name: _criterion() for name in ICP_CRITERIA_NAMES}
    criterios["dores_principais"] = _criterion("alto", f'"{OVERLOAD_QUOTE}" [00:20]', 18)
    return {
        "status": status,
        "score_geral": 78,
        "criterios": criterios,
        "vale_insistir": {
            "recomendacao": "Vale insistir: dor clara de sobrecarga.",
            "condicoes": ["Envolver o sócio na próxima conversa"],
            "status": "insistir",
        },
        "observacoes": "Escritório enxuto com dor declarada.",
    }


def objections_analysis() -> dict[str, Any]:
    return {
        "lista": [
            {
                "categoria": "preço",
                "cliente_citacao_ampliada": f'[02:30] Cliente: "{PRICE_QUOTE}"',
                "resposta_vendedor_citacao": '[03:15] Vendedor: "O plano de entrada custa R$ 1.690 por mês"',
                "avaliacao_resposta": {"nota": 5, "racional": "Respondeu com o preço sem ancorar valor."},
                "resposta_sugerida": {
                    "texto": "Compare o custo do plano com uma contratação CLT.",
                    "por_que_funciona": "Ancora o valor no custo evitado.",
                },
                "proximo_passo_demo": "Mostrar o cálculo de custo por peça.",
            }
        ],
        "kpis": {
            "total": 1,
            "tratadas_efetivamente": 0,
            "score_medio_por_categoria": {"preço": 5},
            "principais_lacunas": ["Ancoragem de valor"],
        },
    }


def full_report(**overrides: Any) -> dict[str, Any]:
    """A consolidated report that passes schema validation."""
    report: dict[str, Any] = {
        "aderencia_ao_script": script_analysis(),
        "analise_icp": icp_analysis(),
        "analise_objecoes": objections_analysis(),
        "pontos_positivos": ['Pediu autorização para gravar [00:05]'],
        "pontos_a_melhorar": ["Explorar melhor o volume de processos"],
        "sugestoes_praticas": [
            {
                "sugestao": "Quantificar a dor antes do preço",
                "como_executar": ["Perguntar quantos prazos vencem por semana"],
                "impacto": "alto",
            }
        ],
        "resumo_executivo": "Cliente com sobrecarga clara, objeção de preço não tratada.",
        "proxima_acao_recomendada": {
            "acao": "Agendar conversa com o sócio",
            "prazo": "7 dias",
            "racional": "O sócio participa da decisão.",
        },
        "mensagem_sugerida": {
            "texto": "Olá! Conforme combinamos, envio o comparativo de custos.",
            "por_que_funciona": "Retoma a objeção com dados.",
        },
        "checklist_follow_up": ["Enviar comparativo de custos"],
    }
    report.update(copy.deepcopy(overrides))
    return report


# ---------------------------------------------------------------------------
# Response routing
# ---------------------------------------------------------------------------

Responder = Callable[[dict[str, Any]], "str | Exception"]


def _system_and_user(kwargs: dict[str, Any]) -> tuple[str, str]:
    system = kwargs.get("system") or ""
    user = ""
    for message in kwargs.get("messages", []):
        if message["role"] == "system":
            system = message["content"]
        elif message["role"] == "user":
            user = message["content"]
    return system, user


def default_responder(kwargs: dict[str, Any]) -> str:
    system, user = _system_and_user(kwargs)
    if "Extraia os principais tópicos" in user:
        return "sobrecarga, preço, delegação"
    if "análise de demos de vendas B2B" in system:
        return json.dumps(script_analysis(), ensure_ascii=False)
    if "qualificação de ICP" in system:
        return json.dumps(icp_analysis(), ensure_ascii=False)
    if "análise de objeções" in system:
        return json.dumps(objections_analysis(), ensure_ascii=False)
    if "consolidação de análises" in system:
        return "```json\n" + json.dumps(full_report(), ensure_ascii=False) + "\n```"
    if "resumos de reuniões" in system:
        return "Cliente com sobrecarga; próxima ação é falar com o sócio."
    if "modo de chat" in system:
        return f'O cliente disse "{PRICE_QUOTE}" [02:30].'
    return "ok"


def _api_request(url: str) -> httpx.Request:
    return httpx.Request("POST", url)


def openai_rate_limit() -> openai.RateLimitError:
    request = _api_request("https://api.openai.com/v1/chat/completions")
    return openai.RateLimitError("rate limited", response=httpx.Response(429, request=request), body=None)


def openai_connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=_api_request("https://api.openai.com/v1/embeddings"))


def anthropic_rate_limit() -> anthropic.RateLimitError:
    request = _api_request("https://api.anthropic.com/v1/messages")
    return anthropic.RateLimitError("rate limited", response=httpx.Response(429, request=request), body=None)


def anthropic_status_error(status: int) -> anthropic.APIStatusError:
    request = _api_request("https://api.anthropic.com/v1/messages")
    return anthropic.APIStatusError("upstream error", response=httpx.Response(status, request=request), body=None)


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def unlimited() -> AsyncRateLimiter:
    return AsyncRateLimiter(rate=0, max_concurrency=8)


class FakeOpenAI:
    """Records every request; ``responder`` decides each completion."""

    def __init__(self, responder: Responder | None = None, vector: list[float] | None = None) -> None:
        self.responder = responder or default_responder
        self.vector = vector or [0.1, 0.2, 0.3]
        self.embedding_error: Exception | None = None
        self.completion_calls: list[dict[str, Any]] = []
        self.embedding_calls: list[list[str]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create_completion))
        self.embeddings = SimpleNamespace(create=self._create_embeddings)

    async def _create_completion(self, **kwargs: Any) -> SimpleNamespace:
        self.completion_calls.append(kwargs)
        result = self.responder(kwargs)
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=result))],
            usage=SimpleNamespace(total_tokens=100),
            model=kwargs["model"],
        )

    async def _create_embeddings(self, *, input: list[str], model: str, dimensions: int) -> SimpleNamespace:
        self.embedding_calls.append(list(input))
        if self.embedding_error is not None:
            raise self.embedding_error
        return SimpleNamespace(data=[SimpleNamespace(embedding=list(self.vector)) for _ in input])

    def calls_with_system(self, marker: str) -> list[dict[str, Any]]:
        return [c for c in self.completion_calls if marker in _system_and_user(c)[0]]


class FakeAnthropic:
    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder or default_responder
        self.calls: list[dict[str, Any]] = []
        self.messages = SimpleNamespace(create=self._create_message)

    async def _create_message(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        result = self.responder(kwargs)
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(
            content=[TextBlock(type="text", text=result)],
            usage=SimpleNamespace(input_tokens=60, output_tokens=40),
        )
