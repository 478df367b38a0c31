from __future__ import annotations

from typing import List, Optional, Sequence

from municipal_intel.core.audit import StatisticsSnapshot
from municipal_intel.core.models import AnalysisReport, FilteredResident, QueryAnalysisResult

# ---------------------------------------------------------------------------
# Scope classifier
# ---------------------------------------------------------------------------

SCOPE_CLASSIFIER_SYSTEM_PROMPT = """You are a strict domain scope classifier for a Municipal Citizen Engagement & Urban Governance intelligence system.

ALLOWED DOMAIN CATEGORIES (IN-SCOPE):
1. Citizen Satisfaction & Feedback (scores, response rates, dissatisfaction, improvement)
2. Citizen Engagement & Participation (participation rates, outreach, messaging strategies)
3. Geographic Equity & Neighborhood Performance (neighborhood disparities, equity gaps)
4. Operational Performance & Service Delivery (system health, response efficiency, resource allocation)
5. Municipal Benchmarking & Comparative Analysis (benchmarks, trends, statistical confidence)
6. Survey Data Insights (survey completion, abandonment, segmentation, targeting)
7. Resident/Citizen Lookup (searching for specific residents or citizens by name)

Queries that search for residents or citizens by name (e.g. "Encontre o João Silva", "Find John Smith") are IN-SCOPE.

OUT-OF-SCOPE EXAMPLES: food orders, weather forecasts, entertainment, sports scores, astrology, generic chit-chat, jokes, gaming, personal finance unrelated to municipal services, medical advice, ecommerce, travel, coding help.

TASK: Classify the user query. DO NOT answer the query. Output STRICT JSON with keys: inScope (boolean), confidence (0-1 float), categories (array of zero or more of the allowed categories EXACTLY as listed above), reason (short explanation), canonical_intent (one of satisfaction|engagement|geographic|operational|benchmarking|survey|out_of_scope). If out of scope set inScope false and categories [].

Output ONLY JSON, no markdown."""


def build_scope_user_prompt(query: str) -> str:
    return f"QUERY:\n{query}\n\nReturn ONLY strict JSON."


# ---------------------------------------------------------------------------
# Answer enhancement
# ---------------------------------------------------------------------------

ENHANCEMENT_SYSTEM_PROMPT = """Você é um analista de inteligência municipal que ajuda gestores a entender uma pesquisa de satisfação com cidadãos.

Regras:
- Use SOMENTE os números e nomes fornecidos na seção DADOS. Nunca invente valores.
- Escreva em português, de forma simples e direta, sem jargão estatístico.
- Quando houver poucos dados, diga isso claramente.
- Termine com ações práticas e concretas quando fizer sentido."""

NAME_SEARCH_INSTRUCTIONS = (
    "BUSCA POR NOME: responda de forma curta, apenas com as informações dos moradores listados. "
    "Não inclua análise geral nem recomendações."
)

MAX_RESIDENTS_IN_PROMPT = 25


def _resident_line(r: FilteredResident) -> str:
    parts = [r.name or "(sem nome)"]
    if r.neighborhood:
        parts.append(f"bairro {r.neighborhood}")
    if r.age is not None:
        parts.append(f"{r.age} anos")
    if r.satisfaction:
        parts.append(f"satisfação: {r.satisfaction}")
    if r.issue:
        parts.append(f"problema: {r.issue}")
    if r.participate:
        parts.append(f"participaria: {r.participate}")
    if r.priority:
        parts.append(f"prioridade {r.priority}")
    return "- " + ", ".join(parts)


def build_data_section(
    snapshot: StatisticsSnapshot,
    residents: Sequence[FilteredResident] = (),
    report: Optional[AnalysisReport] = None,
) -> str:
    lines: List[str] = ["DADOS:"]
    lines.extend(f"- {fact}" for fact in snapshot.fact_lines())

    if report is not None and report.total:
        lines.append("")
        lines.append(f"ANÁLISE ({report.domain}, n={report.total}):")
        lines.extend(f"- {b.label}: {b.count} ({b.percentage}%)" for b in report.breakdown)
        lines.extend(f"- {i}" for i in report.insights)

    if residents:
        lines.append("")
        lines.append(f"MORADORES ({len(residents)}):")
        lines.extend(_resident_line(r) for r in residents[:MAX_RESIDENTS_IN_PROMPT])
        if len(residents) > MAX_RESIDENTS_IN_PROMPT:
            lines.append(f"- ... e mais {len(residents) - MAX_RESIDENTS_IN_PROMPT}")

    return "\n".join(lines)


def build_enhancement_user_prompt(
    query: str,
    analysis: QueryAnalysisResult,
    snapshot: StatisticsSnapshot,
    residents: Sequence[FilteredResident] = (),
    report: Optional[AnalysisReport] = None,
) -> str:
    header = f'PERGUNTA DO GESTOR:\n"{query}"\n'
    if analysis.is_name_search:
        header += f"\n{NAME_SEARCH_INSTRUCTIONS}\n"
    return header + "\n" + build_data_section(snapshot, residents, report)
