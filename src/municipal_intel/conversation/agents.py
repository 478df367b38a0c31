from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from municipal_intel.conversation.context import AnalyticalContext
from municipal_intel.core.models import (
    NEED_TOTAL_COUNT,
    AnalysisReport,
    FilteredResident,
    FilterType,
    Intent,
    QueryAnalysisResult,
)
from municipal_intel.core.resident_filter import extract_name_candidate

logger = logging.getLogger(__name__)

RESULT_NAME_SEARCH = "name_search_result"
RESULT_NAME_NOT_FOUND = "name_search_not_found"

REPORT_TITLES: Dict[str, str] = {
    "satisfaction_analysis": "ANÁLISE DE SATISFAÇÃO",
    "age_analysis": "SATISFAÇÃO POR IDADE",
    "geographic": "DESEMPENHO POR BAIRRO",
    "issues_analysis": "PRINCIPAIS PROBLEMAS",
    "engagement_analysis": "ENGAJAMENTO",
    "participation_analysis": "PARTICIPAÇÃO COMUNITÁRIA",
    "abandonment": "NÃO RESPONDENTES",
    "dissatisfied": "CIDADÃOS INSATISFEITOS",
    "data_quality": "QUALIDADE DOS DADOS",
    "segment": "SEGMENTO",
}

SEGMENT_LABELS: Dict[FilterType, str] = {
    FilterType.dissatisfied: "Insatisfeitos",
    FilterType.satisfied: "Satisfeitos",
    FilterType.participation_interested: "Interessados em participar",
    FilterType.participation_not_interested: "Não interessados em participar",
    FilterType.all_with_survey: "Todos os respondentes",
    FilterType.name_search: "Busca por nome",
}

_RULE = "=" * 60


@dataclass
class AgentResult:
    """Deterministic answer produced by one downstream agent."""
    agent: str
    result_type: str
    summary: str
    residents: List[FilteredResident] = field(default_factory=list)
    report: Optional[Dict[str, Any]] = None
    insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def is_focused_name_search(self) -> bool:
        return self.result_type == RESULT_NAME_SEARCH


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------

def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(i for i in items if i))


def render_report(key: str, report: AnalysisReport) -> Dict[str, Any]:
    lines = [f"📊 RELATÓRIO: {REPORT_TITLES.get(key, key.upper())}", _RULE, ""]
    lines.append(f"• Total analisado: {report.total}")
    for name in ("averageScore", "dissatisfiedPercent", "avgResponseRate", "diversityIndex", "rate", "health"):
        if name in report.metrics:
            lines.append(f"• {name}: {report.metrics[name]}")
    if report.breakdown:
        lines.append("")
        lines.append("📊 DISTRIBUIÇÃO:")
        for item in report.breakdown:
            bar = "█" * int(round(item.percentage / 2))
            lines.append(f"  {item.label:<24} {item.count:>4} ({item.percentage}%) {bar}")
    if report.insights:
        lines.append("")
        lines.append("💡 INSIGHTS:")
        lines.extend(f"• {i}" for i in report.insights)
    return {
        "text": "\n".join(lines),
        "metrics": dict(report.metrics, total=report.total, qualityTier=report.quality_tier.value),
        "type": report.domain,
    }


def render_resident(r: FilteredResident) -> str:
    lines = [f"**{r.name}**"]
    if r.neighborhood:
        lines.append(f"Bairro: {r.neighborhood}")
    if r.age is not None:
        lines.append(f"Idade: {r.age} anos")
    if r.satisfaction:
        lines.append(f"Satisfação: {r.satisfaction}")
    if r.issue:
        lines.append(f"Questão principal: {r.issue}")
    if r.participate:
        lines.append(f"Interesse em participar: {r.participate}")
    if r.whatsapp:
        lines.append(f"WhatsApp: {r.whatsapp}")
    return "\n".join(lines)


def render_segment(filter_type: FilterType, residents: Sequence[FilteredResident], report: AnalysisReport) -> str:
    total = len(residents)
    label = SEGMENT_LABELS.get(filter_type, filter_type.value)
    lines = [f"📊 RELATÓRIO DE SEGMENTO: {label.upper()}", _RULE, "", "📈 MÉTRICAS PRINCIPAIS:"]
    lines.append(f"• Total de Cidadãos: {total}")

    with_phone = sum(1 for r in residents if r.whatsapp)
    if total:
        lines.append(f"• Com WhatsApp: {with_phone} ({with_phone / total * 100:.1f}% contactáveis)")

    priorities = report.metrics.get("priorityCounts", {})
    if filter_type == FilterType.dissatisfied:
        high, medium = priorities.get("HIGH", 0), priorities.get("MEDIUM", 0)
        lines.append(f"• Prioridade Alta (Muito insatisfeitos): {high} cidadãos")
        lines.append(f"• Prioridade Média (Insatisfeitos): {medium} cidadãos")
        if high:
            lines.append(f"\n🚨 URGÊNCIA: {high} cidadão(s) com prioridade ALTA precisam de contato imediato (24-48h)")
    elif filter_type == FilterType.satisfied:
        advocates = priorities.get("ADVOCATE", 0)
        lines.append(f"• Potenciais Defensores: {advocates} cidadãos")
        lines.append(f"• Positivos: {priorities.get('POSITIVE', 0)} cidadãos")

    if report.breakdown:
        lines.append("\n📊 DISTRIBUIÇÃO DE SATISFAÇÃO:")
        lines.extend(f"  • {b.label}: {b.count} ({b.percentage}%)" for b in report.breakdown)

    top = report.metrics.get("topNeighborhoods", [])
    if top:
        lines.append("\n📍 DISTRIBUIÇÃO GEOGRÁFICA:")
        lines.extend(f"  {i}. {n['neighborhood']}: {n['count']} cidadãos" for i, n in enumerate(top, start=1))

    if residents:
        lines.append("\n👥 MORADORES:")
        for r in residents[:20]:
            extra = f" [{r.priority}]" if r.priority else ""
            lines.append(f"  • {r.name} ({r.neighborhood or 'bairro não informado'}){extra}")
        if total > 20:
            lines.append(f"  ... e mais {total - 20}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

class Agent(ABC):
    name: str = "agent"

    @abstractmethod
    def handle(self, query: str, analysis: QueryAnalysisResult, context: AnalyticalContext) -> AgentResult:
        ...

    def _from_reports(self, context: AnalyticalContext, result_type: str, lead: str) -> AgentResult:
        rendered = [render_report(key, rep) for key, rep in context.reports.items()]
        primary = rendered[0] if rendered else None
        summary = lead
        if primary:
            summary = f"{lead}\n\n{primary['text']}"
        return AgentResult(
            agent=self.name,
            result_type=primary["type"] if primary else result_type,
            summary=summary,
            residents=list(context.residents),
            report=primary,
            insights=_unique(i for rep in context.reports.values() for i in rep.insights),
            recommendations=_unique(r for rep in context.reports.values() for r in rep.recommendations),
        )


class KnowledgeAgent(Agent):
    name = "knowledge_agent"

    def handle(self, query: str, analysis: QueryAnalysisResult, context: AnalyticalContext) -> AgentResult:
        if analysis.is_name_search:
            return self._name_search(query, context)

        snap = context.snapshot
        if NEED_TOTAL_COUNT in analysis.data_needs and not context.reports:
            summary = (
                f"Existem {snap.total_contacts} registros de cidadãos no banco de dados. "
                f"{snap.answered} responderam à pesquisa ({snap.response_rate}% de taxa de resposta)."
            )
            return AgentResult(agent=self.name, result_type="total_count", summary=summary,
                               residents=list(context.residents))

        if context.criteria is not None and "segment" in context.reports:
            return _segment_result(self.name, context)

        lead = (
            f"Análise municipal de {snap.total_contacts} cidadãos com {snap.response_rate}% de taxa de resposta. "
            f"Satisfação média: {snap.satisfaction_score}/5. Cobertura: {snap.neighborhood_count} bairros."
        )
        return self._from_reports(context, "analysis", lead)

    def _name_search(self, query: str, context: AnalyticalContext) -> AgentResult:
        name = extract_name_candidate(query) or query.strip()
        residents = list(context.residents)
        if not residents:
            return AgentResult(
                agent=self.name,
                result_type=RESULT_NAME_NOT_FOUND,
                summary=f'Não encontrei registros para "{name}" no banco de dados municipal.',
            )
        noun = "registro" if len(residents) == 1 else "registros"
        blocks = "\n\n".join(render_resident(r) for r in residents)
        return AgentResult(
            agent=self.name,
            result_type=RESULT_NAME_SEARCH,
            summary=f'Encontrei {len(residents)} {noun} para "{name}":\n\n{blocks}',
            residents=residents,
        )


def _segment_result(agent_name: str, context: AnalyticalContext) -> AgentResult:
    report = context.reports["segment"]
    text = render_segment(context.criteria.type, context.residents, report)
    rendered = render_report("segment", report)
    rendered["text"] = text
    return AgentResult(
        agent=agent_name,
        result_type=context.criteria.type.value,
        summary=text,
        residents=list(context.residents),
        report=rendered,
        insights=list(report.insights),
        recommendations=list(report.recommendations),
    )


class NotificationAgent(Agent):
    name = "notification_agent"

    def handle(self, query: str, analysis: QueryAnalysisResult, context: AnalyticalContext) -> AgentResult:
        if context.criteria is not None and "segment" in context.reports:
            return _segment_result(self.name, context)

        if context.reports:
            lead = f"Público-alvo para comunicação: {len(context.residents)} moradores selecionados."
            return self._from_reports(context, "notification", lead)

        if context.criteria is not None:
            label = SEGMENT_LABELS.get(context.criteria.type, context.criteria.type.value)
            return AgentResult(
                agent=self.name,
                result_type=context.criteria.type.value,
                summary=f"Nenhum morador encontrado no segmento: {label}.",
            )

        return AgentResult(
            agent=self.name,
            result_type="notification_guidance",
            summary=(
                f'Segmentação pronta para: "{query}". Especifique o público (insatisfeitos, satisfeitos, '
                "interessados em participar) para listar moradores com nome e contato."
            ),
        )


class TicketAgent(Agent):
    name = "ticket_agent"

    def handle(self, query: str, analysis: QueryAnalysisResult, context: AnalyticalContext) -> AgentResult:
        snap = context.snapshot
        lead = f"Status do sistema: {snap.total_contacts} contatos, {snap.sent} mensagens enviadas, {snap.answered} respostas."
        return self._from_reports(context, "system_health", lead)


DEFAULT_AGENTS: Dict[Intent, Agent] = {
    Intent.knowledge: KnowledgeAgent(),
    Intent.notification: NotificationAgent(),
    Intent.ticket: TicketAgent(),
}
