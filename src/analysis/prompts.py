"""Prompt templates for the analysis engine and meeting chat (pt-BR)."""

from __future__ import annotations

import json
from typing import Any

TRUNCATION_SUFFIX = "\n[...truncado...]"


def clamp_text(text: str, max_chars: int) -> str:
    """Cut *text* to *max_chars*, preferring to end on a sentence.

    When the last ``.`` before the cut lies past 70% of it, the text ends
    there. A truncation marker is appended whenever text was removed.
    """
    if not text or len(text) <= max_chars:
        return text or ""
    cut = text[:max_chars]
    last_period = cut.rfind(".")
    if last_period > max_chars * 0.7:
        cut = cut[: last_period + 1]
    return cut + TRUNCATION_SUFFIX


EVIDENCE_RULES = """DIRETRIZES DE EVIDÊNCIA:
- Use apenas os trechos fornecidos como evidência
- Cite trechos literais da transcrição entre aspas com o timestamp [mm:ss]
- Se algo não foi mencionado, diga explicitamente "não houve menção a X"
- Não invente informações que não estão na transcrição
- Responda somente com JSON válido, sem texto adicional"""

# ---------------------------------------------------------------------------
# Script adherence
# ---------------------------------------------------------------------------

SCRIPT_STAGE_NAMES: tuple[str, ...] = (
    "introducao",
    "exploracao_cenario",
    "apresentacao_freelaw",
    "beneficios_escritorio",
    "metodologia",
    "como_funciona_delegacao",
    "conversa_com_prestador",
    "plano_ideal",
    "encerramento_follow_up",
)

ICP_CRITERIA_NAMES: tuple[str, ...] = (
    "porte_estrutura",
    "faturamento",
    "volume_casos",
    "dores_principais",
    "regiao",
    "maturidade_digital",
    "perfil_decisao",
)


def script_system_prompt(guidelines: str) -> str:
    return f"""Você é um especialista em análise de demos de vendas B2B para a Freelaw.

CONTEXTO CRÍTICO:
- Esta é uma demonstração de vendas da Freelaw para escritórios de advocacia
- Analise a aderência ao Script Demo oficial fornecido
- Avalie cada etapa do script com nota 0-10 e evidências específicas

{EVIDENCE_RULES}

SCRIPT DEMO OFICIAL:
{guidelines}"""


def script_analysis_prompt() -> str:
    stages = ",\n    ".join(f'"{name}": {{ ... }}' for name in SCRIPT_STAGE_NAMES[1:])
    return f"""Analise a aderência ao Script Demo desta reunião.

Para cada uma das nove etapas, forneça nota de 0 a 10, justificativa em 2-4 frases,
evidências literais com timestamp e o que faltou para a nota 10.

Retorne JSON com exatamente esta estrutura:
{{
  "score_geral": 0-100,
  "etapas": {{
    "{SCRIPT_STAGE_NAMES[0]}": {{
      "nota": 0-10,
      "justificativa": "string",
      "evidencias_que_sustentam": ["string"],
      "faltou_para_10": ["string"]
    }},
    {stages}
  }}
}}"""


# ---------------------------------------------------------------------------
# ICP fit
# ---------------------------------------------------------------------------


def icp_system_prompt(guidelines: str) -> str:
    return f"""Você é um especialista em qualificação de ICP (Ideal Customer Profile) para a Freelaw.

CONTEXTO CRÍTICO:
- Analise se este escritório se encaixa no ICP ideal da Freelaw
- Use os critérios oficiais fornecidos
- Foque em dados concretos mencionados na reunião

{EVIDENCE_RULES}

CRITÉRIOS ICP FREELAW:
{guidelines}"""


def icp_analysis_prompt() -> str:
    criteria = ",\n    ".join(f'"{name}": {{ ... }}' for name in ICP_CRITERIA_NAMES[1:])
    return f"""Analise o fit de ICP deste cliente com base nos trechos da reunião.

Avalie os sete critérios com nota 0-20 e evidência literal com timestamp.
Use "nao_mencionado" quando o critério não aparecer na conversa.

Retorne JSON com exatamente esta estrutura:
{{
  "status": "HIGH" | "MEDIUM" | "LOW",
  "score_geral": 0-100,
  "criterios": {{
    "{ICP_CRITERIA_NAMES[0]}": {{
      "classificacao": "alto" | "medio" | "baixo" | "nao_mencionado",
      "evidencia": "string com citação literal e timestamp",
      "nota": 0-20
    }},
    {criteria}
  }},
  "vale_insistir": {{
    "recomendacao": "string",
    "condicoes": ["string"],
    "status": "insistir" | "despriorizar" | "avaliar"
  }},
  "observacoes": "string"
}}"""


# ---------------------------------------------------------------------------
# Objections
# ---------------------------------------------------------------------------

OBJECTIONS_SYSTEM_PROMPT = f"""Você é um especialista em análise de objeções em vendas B2B para a Freelaw.

FOQUE EM:
- Identificar objeções explícitas e implícitas
- Avaliar como foram tratadas pelo vendedor
- Sugerir respostas otimizadas para cada objeção
- Recomendar próximos passos dentro da demo

{EVIDENCE_RULES}"""

OBJECTIONS_ANALYSIS_PROMPT = """Identifique e analise todas as objeções nesta reunião.

Retorne JSON com exatamente esta estrutura:
{
  "lista": [
    {
      "categoria": "preço" | "necessidade" | "autoridade" | "timing" | "confiança",
      "cliente_citacao_ampliada": "citação literal do cliente com contexto e timestamp",
      "resposta_vendedor_citacao": "citação literal da resposta do vendedor com timestamp",
      "avaliacao_resposta": { "nota": 0-10, "racional": "string" },
      "resposta_sugerida": { "texto": "string", "por_que_funciona": "string" },
      "proximo_passo_demo": "string"
    }
  ],
  "kpis": {
    "total": number,
    "tratadas_efetivamente": number,
    "score_medio_por_categoria": { "categoria": 0-10 },
    "principais_lacunas": ["string"]
  }
}"""

# ---------------------------------------------------------------------------
# Consolidation
# ---------------------------------------------------------------------------

CONSOLIDATION_SYSTEM_PROMPT = f"""Você é um especialista em consolidação de análises de vendas B2B para a Freelaw.

TAREFA: Consolidar as análises parciais em um relatório executivo final.

FOQUE EM:
- Resumo executivo claro e acionável
- Próxima ação recomendada específica (nunca "agendar outra demo")
- Insights baseados em evidências literais

{EVIDENCE_RULES}"""


def consolidation_prompt(
    script_analysis: dict[str, Any],
    icp_analysis: dict[str, Any],
    objections_analysis: dict[str, Any],
) -> str:
    def dump(value: dict[str, Any]) -> str:
        return json.dumps(value, ensure_ascii=False, indent=2)

    return f"""Consolide as análises em um relatório final estruturado.

ANÁLISE DE SCRIPT:
{dump(script_analysis)}

ANÁLISE DE ICP:
{dump(icp_analysis)}

ANÁLISE DE OBJEÇÕES:
{dump(objections_analysis)}

Retorne JSON com exatamente estas chaves (todas obrigatórias):
{{
  "aderencia_ao_script": {{ ... mesma estrutura da análise de script, com as nove etapas ... }},
  "analise_icp": {{ ... mesma estrutura da análise de ICP, com os sete critérios ... }},
  "analise_objecoes": {{ ... mesma estrutura da análise de objeções ... }},
  "pontos_positivos": ["string com citação e timestamp"],
  "pontos_a_melhorar": ["string"],
  "sugestoes_praticas": [
    {{ "sugestao": "string", "como_executar": ["string"], "impacto": "string" }}
  ],
  "resumo_executivo": "2-3 frases",
  "proxima_acao_recomendada": {{
    "acao": "string", "prazo": "string", "racional": "string", "condicoes": ["string"]
  }},
  "mensagem_sugerida": {{ "texto": "string", "por_que_funciona": "string" }},
  "checklist_follow_up": ["string"]
}}"""


# ---------------------------------------------------------------------------
# Quick summary and chat
# ---------------------------------------------------------------------------

QUICK_SUMMARY_SYSTEM_PROMPT = (
    "Você é um especialista em resumos de reuniões de vendas. Crie um resumo executivo "
    "conciso focando nos pontos principais, decisões e próximos passos."
)

QUICK_SUMMARY_PROMPT = (
    "Crie um resumo executivo desta reunião em 2-3 frases, focando no resultado "
    "principal e próxima ação."
)

CHAT_SYSTEM_PROMPT = (
    "Você é o modo de chat da Freelaw para analisar uma demo específica. Sempre responda "
    "citando trechos literais com timestamps. Se o dado vier do relatório e não houver "
    "timestamp, indique que é derivado do relatório."
)

NO_EVIDENCE_ANSWER = "Não encontrei informações relevantes sobre essa pergunta na reunião."

NO_SEGMENTS_PLACEHOLDER = (
    "Nenhum trecho altamente relevante encontrado. Utilize apenas o relatório para "
    "responder e sinalize a ausência de trechos."
)

CHAT_ANSWER_MAX_CHARS = 600


def build_chat_prompt(
    question: str,
    evidence: str,
    report_json: str,
    transcript_excerpt: str,
    guidelines_excerpt: str,
) -> str:
    """Single-turn chat prompt combining every available grounding source."""
    sections = [
        "Você receberá partes relevantes da transcrição e, quando houver, o relatório da demo. "
        "Responda à pergunta do usuário com base apenas nesses dados.",
        "",
        "CONTEXTOS DISPONÍVEIS:",
    ]
    if report_json:
        sections += ["--- RELATÓRIO DA DEMO (JSON) ---", report_json, ""]
    sections += ["--- TRECHOS DE TRANSCRIÇÃO MAIS RELEVANTES ---", evidence, ""]
    if transcript_excerpt:
        sections += ["--- TRANSCRIÇÃO (TRECHO REDUZIDO PARA REFERÊNCIA) ---", transcript_excerpt, ""]
    if guidelines_excerpt:
        sections += ["--- CRITÉRIOS DE REFERÊNCIA (SCRIPT E ICP) ---", guidelines_excerpt, ""]
    sections += [
        "INSTRUÇÕES DE RESPOSTA:",
        '- Cite sempre trechos literais entre aspas e inclua timestamps no formato [mm:ss] ou indique "[estimado]"',
        '- Se usar informação do relatório sem timestamp, sinalize como "(relatório)"',
        "- Responda em português, com tom consultivo e objetivo",
        "- Se não houver menção na transcrição, diga explicitamente que não encontrou evidência",
        "- Jamais invente informações novas",
        f"- Máximo de {CHAT_ANSWER_MAX_CHARS} caracteres",
        "",
        f"Pergunta do usuário: {question}",
    ]
    return "\n".join(sections)
