"""Script and ICP reference guidelines, with built-in defaults.

Custom playbooks may be stored in the ``playbooks`` table; when none is
active (or no database is configured) the defaults below are used.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, cast

import httpx
from postgrest.exceptions import APIError
from supabase import Client

logger = logging.getLogger(__name__)

SCRIPT_GUIDELINES = """
### 1. Introdução
- Cumprimentar, apresentar-se como especialista da Freelaw.
- Pedir autorização para gravar a conversa.
- Explicar o objetivo: conhecer o escritório, apresentar a Freelaw pelo olhar de contratante e, se fizer sentido, falar de planos.

### 2. Exploração do cenário do cliente (PIPE)
- Histórico: há quanto tempo o escritório opera, o que motivou a conversa.
- Operação: rotina interna, quem cuida do contencioso, quantos processos ativos, tipos de peças mais frequentes, experiências anteriores com delegação, quem usaria a plataforma.
- Negócio: principal objetivo com a parceria (reestruturar equipe, ganhar controle, reduzir carga).
- Decisão: quando pretende decidir e quem mais participa da decisão.

### 3. Apresentação da Freelaw (autoridade e diferencial)
- 7 anos de mercado, 700+ escritórios atendidos, 9 mil+ advogados cadastrados, 50 mil+ peças elaboradas.
- Diferencial: atendimento artesanal, peças personalizadas sob medida, nada de produção em massa.

### 4. Benefícios para o escritório
- Equipe jurídica remota e sob demanda, sem vínculo trabalhista nem encargos.
- Até 3 peças simultâneas, peça pronta com formatação e timbrado do escritório.
- Suporte humanizado com gerente de contas, chat direto com o advogado, IA para resumos de autos, acompanhamento de publicações.

### 5. Metodologia: montagem da equipe jurídica
- O objetivo é entregar uma equipe remota calibrada com o escritório, não peças avulsas.
- Delegar as primeiras demandas, avaliar os advogados, fixar os mais alinhados na equipe.
- Até 1 revisão por peça, substituições ilimitadas, advogados podem ser excluídos da equipe.

### 6. Como funciona a delegação
- Instruções por texto ou áudio, anexos ou número do processo (autos buscados automaticamente), prazo e tipo de peça.
- Revisão gratuita em até 2 dias corridos; substituição de advogado gratuita em 3 dias corridos.
- Prazo padrão de 5 dias corridos; urgência em 3 ou 2 dias mediante taxa.

### 7. Conversa com o prestador
- Relação direta com o advogado via chat interno assim que o serviço é aceito.
- Alinhamento de estratégia, dúvidas e ajustes centralizados e registrados.

### 8. Plano ideal para o perfil
- Escritórios com até 100 processos ativos: plano de entrada, R$ 1.690/mês, sem fidelidade (aviso prévio de 60 dias).
- Até 3 peças simultâneas sem limite mensal fixo; quanto mais usar, menor o custo por peça.

### 9. Encerramento e follow-up
- Perguntar o que ainda precisa ser avaliado internamente para decidir.
- Deixar o próximo contato agendado com data e horário.
""".strip()

ICP_GUIDELINES = """
Foco em escritórios pequenos e consolidados, prontos para escalar mas com gargalos de operação.

### Perfil ideal (fit alto)
- Faturamento mensal entre R$ 20.000 e R$ 90.000.
- Entre 100 e 500 processos ativos; valor médio da causa de R$ 30.000+.
- Estrutura enxuta (1 a 10 pessoas).
- Áreas com alta demanda de peças: cível, consumidor, empresarial, trabalhista.
- Reclama de demora no protocolo ou acúmulo de petições; quer crescer sem contratar.
- Perfil digital ativo (Instagram, site, LinkedIn).

### Sinais de atenção (fit médio ou baixo)
- Advogado autônomo com volume muito baixo.
- Escritório muito júnior, sem estrutura mínima.
- Resistência clara à tecnologia ou ao modelo sob demanda.
- Equipe declaradamente ociosa (baixa urgência).

### Quando vale insistir
- Dor clara: sobrecarga, volume alto, falta de braço ("não tô dando conta", "tá acumulando").
- Estrutura ativa e sinais de crescimento (contratando, novos clientes, nova filial).
- Clareza de que precisa ganhar tempo para focar na estratégia.

### Quando não vale insistir
- Respostas genéricas, sem dor nem urgência ("não precisamos no momento").
- Sem presença digital, sem processos ativos ou volume muito baixo.
- "Não é prioridade" sem que a dor apareça.

Se não tem dor, não tem venda. Escutar nas entrelinhas, sem converter a qualquer custo.
""".strip()


@dataclass(frozen=True)
class ActiveGuidelines:
    """Guideline texts used for one analysis run."""

    script: str
    icp: str
    script_playbook_id: str | None = None
    icp_playbook_id: str | None = None


@dataclass(frozen=True)
class Playbook:
    id: str
    content: str


class GuidelineSource(Protocol):
    """Pluggable provider of the active custom playbooks."""

    async def get_active_playbook(self, playbook_type: str) -> Playbook | None: ...


class SupabaseGuidelineSource:
    """Reads the active playbook of each type from the ``playbooks`` table."""

    def __init__(self, client: Client) -> None:
        self.client = client

    async def get_active_playbook(self, playbook_type: str) -> Playbook | None:
        result = await asyncio.to_thread(
            lambda: self.client.table("playbooks")
            .select("id,content")
            .eq("type", playbook_type)
            .eq("is_active", True)
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = cast(list[dict[str, Any]], result.data or [])
        if not rows or not (rows[0].get("content") or "").strip():
            return None
        return Playbook(id=str(rows[0]["id"]), content=rows[0]["content"])


async def get_active_guidelines(source: GuidelineSource | None = None) -> ActiveGuidelines:
    """Return the active script and ICP guidelines.

    Falls back to the built-in texts per type when no source is given, no
    playbook is active, or the source is unreachable.
    """
    if source is None:
        return ActiveGuidelines(script=SCRIPT_GUIDELINES, icp=ICP_GUIDELINES)

    async def load(playbook_type: str) -> Playbook | None:
        try:
            return await source.get_active_playbook(playbook_type)
        except (APIError, httpx.HTTPError) as exc:
            logger.warning("Could not load %s playbook, using default: %s", playbook_type, exc)
            return None

    script, icp = await asyncio.gather(load("script"), load("icp"))
    return ActiveGuidelines(
        script=script.content if script else SCRIPT_GUIDELINES,
        icp=icp.content if icp else ICP_GUIDELINES,
        script_playbook_id=script.id if script else None,
        icp_playbook_id=icp.id if icp else None,
    )
