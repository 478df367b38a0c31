from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from municipal_intel.core.data_loader import records_to_frame
from municipal_intel.core.models import (
    AnalysisReport,
    BreakdownItem,
    CitizenRecord,
    FilteredResident,
    QualityTier,
)
from municipal_intel.core.vocabulary import (
    AGE_BRACKETS,
    AGE_GROUP_NAMES,
    DISSATISFIED_LABELS,
    MAX_SATISFACTION_SCORE,
    NEUTRAL_LABEL,
    SATISFACTION_LABELS,
    SATISFACTION_WEIGHTS,
    issue_recommendation,
)

logger = logging.getLogger(__name__)

# Unknown satisfaction labels count as neutral
_DEFAULT_WEIGHT = 3

STALE_PENDING_DAYS = 7


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def round_half_up(value: Optional[float], places: int = 2) -> float:
    """
    Round like a person would (3.825 -> 3.83), not like binary floats do.
    """
    if value is None:
        return 0.0
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return 0.0
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percent(part: float, whole: float, places: int = 1) -> float:
    if not whole:
        return 0.0
    return round_half_up(part / whole * 100.0, places)


def _fmt(value: float, places: int = 1) -> str:
    return f"{round_half_up(value, places):.{places}f}"


def sample_quality_tier(n: int) -> QualityTier:
    if n <= 0:
        return QualityTier.insufficient_data
    if n < 30:
        return QualityTier.limited
    if n >= 100:
        return QualityTier.excellent
    return QualityTier.good


def dissatisfaction_tier(dissatisfied_percent: float) -> str:
    if dissatisfied_percent >= 40:
        return "critical"
    if dissatisfied_percent >= 25:
        return "elevated"
    return "low"


def satisfaction_trend(average_score: float) -> str:
    if average_score >= 4.0:
        return "positive"
    if average_score >= 3.0:
        return "neutral"
    return "concerning"


def shannon_diversity(counts: Iterable[int]) -> float:
    counts = [c for c in counts if c > 0]
    total = sum(counts)
    if total == 0:
        return 0.0
    return round_half_up(-sum((c / total) * math.log2(c / total) for c in counts), 2)


def check_breakdown_integrity(report: AnalysisReport) -> bool:
    """
    Σ breakdown.count must equal report.total. A mismatch is logged, never raised.
    """
    if not report.breakdown:
        return True
    summed = sum(item.count for item in report.breakdown)
    if summed != report.total:
        logger.warning(
            "Breakdown total mismatch in %s report: total=%d sum(counts)=%d",
            report.domain, report.total, summed,
        )
        return False
    return True


def _build_breakdown(counts: Sequence[tuple], total: int) -> List[BreakdownItem]:
    return [BreakdownItem(label=str(label), count=int(count), percentage=percent(count, total)) for label, count in counts]


def _empty_report(domain: str, insight: str, recommendations: List[str], version: str) -> AnalysisReport:
    return AnalysisReport(
        domain=domain,
        total=0,
        insights=[insight],
        recommendations=list(recommendations),
        quality_tier=QualityTier.insufficient_data,
        computation_version=version,
    )


class AnalysisEngine:
    """
    Statistics, narrative insights and recommendations per analysis domain.

    The engine is stateless: every method takes the record collection it
    should work on and returns a fresh AnalysisReport. Aggregation runs on a
    pandas DataFrame built from the (read-only) records.
    """

    # -- satisfaction -------------------------------------------------------

    def analyze_satisfaction(self, records: Iterable[CitizenRecord]) -> AnalysisReport:
        df = records_to_frame(records)
        if df.empty:
            return self.satisfaction_report_from_counts({})

        answered = df[df["answered"] & df["satisfaction"].notna()]
        counts = answered["satisfaction"].value_counts().to_dict()
        return self.satisfaction_report_from_counts(counts)

    def satisfaction_report_from_counts(self, counts: Mapping[str, int], total: Optional[int] = None) -> AnalysisReport:
        """
        Build the satisfaction report from a label -> count map.

        `total` defaults to the sum of the counts; passing a different value is
        how callers reconcile against an externally reported total (the
        integrity check then logs the mismatch).
        """
        ordered = [(label, int(counts.get(label, 0))) for label in SATISFACTION_LABELS]
        extra = [(label, int(c)) for label, c in counts.items() if label not in SATISFACTION_WEIGHTS]
        ordered.extend(extra)

        responses = sum(c for _, c in ordered)
        total = responses if total is None else int(total)

        if total == 0:
            return _empty_report(
                "satisfaction",
                "Não há respostas de pesquisa disponíveis para análise.",
                ["Aumentar a participação na pesquisa para coletar dados de satisfação dos cidadãos."],
                "sat_v0.2",
            )

        weighted = sum(SATISFACTION_WEIGHTS.get(label, _DEFAULT_WEIGHT) * c for label, c in ordered)
        average = weighted / responses if responses else 0.0

        diss_count = sum(c for label, c in ordered if label in DISSATISFIED_LABELS)
        diss_percent = (diss_count / responses * 100.0) if responses else 0.0
        tier = dissatisfaction_tier(diss_percent)

        report = AnalysisReport(
            domain="satisfaction",
            total=total,
            breakdown=_build_breakdown([(l, c) for l, c in ordered if c > 0], total),
            quality_tier=sample_quality_tier(total),
            computation_version="sat_v0.2",
        )
        report.metrics = {
            "averageScore": round_half_up(average, 2),
            "maxScore": MAX_SATISFACTION_SCORE,
            "dissatisfiedCount": diss_count,
            "dissatisfiedPercent": round_half_up(diss_percent, 1),
            "dissatisfactionTier": tier,
            "satisfactionTrend": satisfaction_trend(average),
        }

        insights, recommendations = report.insights, report.recommendations

        if total < 30:
            insights.append(
                f"Poucos respondentes ({total} pessoas) - os resultados podem não representar toda a população. "
                "É recomendável coletar mais respostas."
            )
            recommendations.append("Aumentar a participação na pesquisa para ter uma visão mais confiável da satisfação dos cidadãos.")
        elif total >= 100:
            insights.append(f"Boa quantidade de respostas ({total} pessoas) - os dados são confiáveis para tomada de decisão.")

        if tier == "critical":
            insights.append(f"Situação crítica: {_fmt(diss_percent)}% dos cidadãos estão insatisfeitos. Isso requer ação imediata.")
            recommendations.append("Ação prioritária: identificar e resolver os principais problemas que estão causando insatisfação.")
            recommendations.append("Agendar reuniões urgentes com os cidadãos afetados para ouvir suas preocupações e buscar soluções.")
        elif tier == "elevated":
            insights.append(
                f"Alerta: {_fmt(diss_percent)}% dos cidadãos estão insatisfeitos. "
                "É necessário agir para evitar que a situação piore."
            )
            recommendations.append("Investigar as causas da insatisfação através de contatos diretos e conversas com os cidadãos afetados.")

        score = _fmt(average, 2)
        if average < 3.0:
            insights.append(f"Satisfação baixa: nota média de {score}/5 indica problemas estruturais que precisam ser corrigidos.")
            recommendations.append("Implementar ações direcionadas para melhorar a satisfação, focando nos problemas mais relatados.")
        elif average >= 4.0:
            insights.append(f"Satisfação positiva: nota média de {score}/5 mostra que os cidadãos estão satisfeitos com os serviços.")
            recommendations.append("Documentar o que está funcionando bem para manter esses níveis de satisfação.")
        elif tier == "low":
            insights.append(f"Satisfação moderada: nota média de {score}/5 com pouca insatisfação. Há espaço para melhorar.")
            recommendations.append("Focar em converter os cidadãos neutros em satisfeitos através de melhorias nos serviços.")

        neutral = int(counts.get(NEUTRAL_LABEL, 0))
        if neutral > total * 0.3:
            insights.append(
                f"Muitos cidadãos neutros ({neutral} pessoas, {_fmt(neutral / total * 100)}%) - isso pode indicar que "
                "eles não estão nem satisfeitos nem insatisfeitos, ou que não têm opinião formada."
            )
            recommendations.append(
                "Entrar em contato com os cidadãos neutros para entender suas necessidades específicas "
                "e identificar oportunidades de melhoria."
            )

        check_breakdown_integrity(report)
        return report

    # -- satisfaction by age ------------------------------------------------

    def analyze_satisfaction_by_age(self, records: Iterable[CitizenRecord]) -> AnalysisReport:
        df = records_to_frame(records)
        empty = _empty_report(
            "age_satisfaction",
            "Não há informações suficientes sobre a idade dos respondentes para fazer uma análise por faixa etária.",
            [
                "Solicitar a idade dos cidadãos nas próximas pesquisas para poder identificar se há problemas "
                "específicos em diferentes grupos de idade.",
                "Entre em contato com os cidadãos que já responderam para coletar informações de idade quando possível.",
            ],
            "age_sat_v0.1",
        )
        if df.empty:
            return empty

        rows = df.loc[df["answered"] & df["satisfaction"].notna() & df["age"].notna(), ["age", "satisfaction"]].copy()
        edges = [AGE_BRACKETS[0][1] - 1] + [hi for _, _, hi in AGE_BRACKETS]
        labels = [label for label, _, _ in AGE_BRACKETS]
        rows["bracket"] = pd.cut(rows["age"], bins=edges, labels=labels)
        rows = rows[rows["bracket"].notna()]
        if rows.empty:
            return empty

        rows["score"] = rows["satisfaction"].map(lambda s: SATISFACTION_WEIGHTS.get(s, _DEFAULT_WEIGHT))
        grouped = rows.groupby("bracket", observed=True)["score"].agg(["count", "mean"])

        brackets: List[Dict[str, Any]] = []
        for label in labels:
            if label not in grouped.index:
                continue
            brackets.append(
                {
                    "label": label,
                    "count": int(grouped.loc[label, "count"]),
                    "averageScore": round_half_up(grouped.loc[label, "mean"], 2),
                }
            )

        total = int(sum(b["count"] for b in brackets))
        report = AnalysisReport(
            domain="age_satisfaction",
            total=total,
            breakdown=_build_breakdown([(b["label"], b["count"]) for b in brackets], total),
            quality_tier=sample_quality_tier(total),
            computation_version="age_sat_v0.1",
        )

        summary = "A satisfação está distribuída de forma similar entre as diferentes faixas etárias."
        gap = 0.0
        lowest = highest = None
        if len(brackets) > 1:
            ranked = sorted(brackets, key=lambda b: b["averageScore"])
            lowest, highest = ranked[0], ranked[-1]
            gap = round_half_up(highest["averageScore"] - lowest["averageScore"], 2)
            if gap >= 0.5:
                low_name = AGE_GROUP_NAMES.get(lowest["label"], lowest["label"])
                high_name = AGE_GROUP_NAMES.get(highest["label"], highest["label"])
                summary = (
                    f"Há uma diferença importante: {high_name} estão mais satisfeitos "
                    f"({_fmt(highest['averageScore'])}/5) do que {low_name} ({_fmt(lowest['averageScore'])}/5). "
                    f"Isso indica que {low_name} podem estar enfrentando problemas específicos que precisam de atenção."
                )
        report.insights.append(summary)

        low_bracket = next((b for b in brackets if b["averageScore"] < 3.0), None)
        if low_bracket is not None:
            name = AGE_GROUP_NAMES.get(low_bracket["label"], f"faixa {low_bracket['label']}")
            report.recommendations.extend(
                [
                    f"Ação prioritária: Contatar diretamente os {name} que estão insatisfeitos para entender suas "
                    "preocupações específicas. Agendar reuniões ou visitas para ouvir suas necessidades.",
                    "Investigar quais serviços municipais estão falhando para esta faixa etária. Pode ser transporte "
                    "público, saúde, segurança ou outros serviços que afetam mais esta população.",
                    f"Desenvolver um plano de ação específico para melhorar os serviços que afetam os {name}, "
                    "com prazos claros e acompanhamento mensal.",
                ]
            )
        else:
            report.recommendations.extend(
                [
                    "A satisfação está em níveis aceitáveis em todas as faixas etárias. Continue monitorando e "
                    "mantendo os serviços de qualidade.",
                    "Mantenha o diálogo aberto com todas as faixas etárias para identificar problemas antes que se tornem críticos.",
                ]
            )

        report.metrics = {
            "brackets": brackets,
            "scoreGap": gap,
            "highestBracket": highest["label"] if highest else None,
            "lowestBracket": lowest["label"] if lowest else None,
            "insightSummary": summary,
        }
        check_breakdown_integrity(report)
        return report

    # -- neighborhoods --------------------------------------------------------

    def analyze_neighborhoods(self, records: Iterable[CitizenRecord]) -> AnalysisReport:
        df = records_to_frame(records)
        if df.empty:
            return self.neighborhood_report_from_stats({})

        grouped = df.groupby("neighborhood", sort=False).agg(
            total=("id", "size"),
            sent=("sent", "sum"),
            clicked=("clicked", "sum"),
            answered=("answered", "sum"),
        )
        stats = {
            str(name): {k: int(row[k]) for k in ("total", "sent", "clicked", "answered")}
            for name, row in grouped.iterrows()
        }
        return self.neighborhood_report_from_stats(stats)

    def neighborhood_report_from_stats(self, stats: Mapping[str, Mapping[str, int]]) -> AnalysisReport:
        """
        stats: neighborhood -> {total, sent, clicked, answered}.
        """
        if not stats:
            report = _empty_report(
                "neighborhoods",
                "Não há dados de bairros disponíveis para análise.",
                ["Certifique-se de coletar informações de bairro durante o cadastro dos cidadãos."],
                "neigh_v0.2",
            )
            report.metrics["equityAssessment"] = "unknown"
            return report

        rows = []
        for name, s in stats.items():
            total, sent = int(s.get("total", 0)), int(s.get("sent", 0))
            clicked, answered = int(s.get("clicked", 0)), int(s.get("answered", 0))
            rows.append(
                {
                    "neighborhood": name,
                    "total": total,
                    "sent": sent,
                    "clicked": clicked,
                    "answered": answered,
                    "responseRate": (answered / total * 100.0) if total else 0.0,
                    "engagementRate": (clicked / sent * 100.0) if sent else 0.0,
                }
            )
        frame = pd.DataFrame(rows)

        for row in rows:
            if row["responseRate"] > 100 or row["engagementRate"] > 100:
                logger.warning("Rate above 100%% for neighborhood %s: %s", row["neighborhood"], row)

        by_response = frame.sort_values("responseRate", ascending=False, kind="mergesort")
        avg_response = float(frame["responseRate"].mean())
        cutoff = max(0.0, avg_response - 10.0)
        below = by_response[by_response["responseRate"] < cutoff]
        high = by_response[by_response["responseRate"] >= 80]

        n = len(frame)
        if below.empty:
            equity = "excellent"
        elif len(below) > n * 0.4:
            equity = "concern"
        else:
            equity = "moderate"

        contacts = int(frame["total"].sum())
        top = by_response.iloc[0]
        largest = frame.sort_values("total", ascending=False, kind="mergesort").iloc[0]
        largest_share = (float(largest["total"]) / contacts * 100.0) if contacts else 0.0
        representativeness_risk = bool(largest_share > 40)

        report = AnalysisReport(
            domain="neighborhoods",
            total=contacts,
            quality_tier=sample_quality_tier(contacts),
            computation_version="neigh_v0.2",
        )
        by_size = frame.sort_values("total", ascending=False, kind="mergesort")
        report.breakdown = _build_breakdown(list(zip(by_size["neighborhood"], by_size["total"])), contacts)

        report.insights.append(
            f"Cobertura geográfica: {n} bairros, com taxa média de resposta de {_fmt(avg_response)}%."
        )
        report.insights.append(f"Melhor desempenho: {top['neighborhood']} com {_fmt(top['responseRate'])}% de resposta.")

        if not high.empty:
            names = ", ".join(high["neighborhood"].head(3))
            report.recommendations.append(
                f"Copiar as práticas que funcionam bem nos bairros: {names}. "
                "Identifique o que está funcionando e aplique em outros bairros."
            )

        if not below.empty:
            listed = ", ".join(f"{r.neighborhood} ({_fmt(r.responseRate)}%)" for r in below.head(5).itertuples())
            report.insights.append(
                f"Bairros que precisam de atenção: {listed}. Estes bairros têm participação abaixo da média."
            )
            report.recommendations.append(
                "Ação prioritária: Contatar diretamente os cidadãos nos bairros com baixa participação para entender "
                "por que não estão respondendo. Visitar estes bairros e fazer reuniões presenciais pode aumentar o engajamento."
            )
        else:
            report.insights.append(
                "A participação está consistente entre os bairros, o que é um bom sinal de engajamento equilibrado."
            )

        if representativeness_risk:
            report.insights.append(
                f"Atenção: {largest['neighborhood']} concentra {_fmt(largest_share)}% dos contatos. "
                "Isso pode indicar que outros bairros não estão sendo bem representados."
            )
            report.recommendations.append(
                "Expandir o cadastro de cidadãos em outros bairros para ter uma representação mais equilibrada da população."
            )

        report.metrics = {
            "neighborhoods": [
                {
                    **{k: r[k] for k in ("neighborhood", "total", "sent", "clicked", "answered")},
                    "responseRate": round_half_up(r["responseRate"], 1),
                    "engagementRate": round_half_up(r["engagementRate"], 1),
                    "needsAttention": r["responseRate"] < cutoff,
                }
                for r in sorted(rows, key=lambda r: -r["total"])
            ],
            "totalNeighborhoods": n,
            "avgResponseRate": round_half_up(avg_response, 2),
            "attentionCutoff": round_half_up(cutoff, 2),
            "needsAttention": [
                {"neighborhood": r.neighborhood, "responseRate": round_half_up(r.responseRate, 1)}
                for r in below.itertuples()
            ],
            "equityAssessment": equity,
            "equityGap": round_half_up(frame["responseRate"].max() - frame["responseRate"].min(), 1),
            "bestPerforming": {
                "neighborhood": str(top["neighborhood"]),
                "responseRate": round_half_up(top["responseRate"], 1),
            },
            "largestShare": {"neighborhood": str(largest["neighborhood"]), "percentage": round_half_up(largest_share, 1)},
            "representativenessRisk": representativeness_risk,
        }
        check_breakdown_integrity(report)
        return report

    # -- issues ---------------------------------------------------------------

    def analyze_issues(self, records: Iterable[CitizenRecord]) -> AnalysisReport:
        df = records_to_frame(records)
        rows = df[df["answered"] & df["issue"].notna()] if not df.empty else df
        if rows.empty:
            return _empty_report(
                "issues",
                "Não há dados de problemas relatados pelos cidadãos para análise.",
                ["Aumentar a participação na pesquisa para identificar as principais preocupações da comunidade."],
                "issues_v0.1",
            )

        counts = rows["issue"].value_counts()
        total = int(counts.sum())
        ranked = [(str(issue), int(c)) for issue, c in counts.items()]

        report = AnalysisReport(
            domain="issues",
            total=total,
            breakdown=_build_breakdown(ranked, total),
            quality_tier=sample_quality_tier(total),
            computation_version="issues_v0.1",
        )

        top_issue, top_count = ranked[0]
        top_fraction = top_count / total
        top3_fraction = sum(c for _, c in ranked[:3]) / total

        report.insights.append(
            f"Principal preocupação da comunidade: {top_issue} ({_fmt(top_fraction * 100)}% de {total} respostas)."
        )
        report.insights.append(
            f"As 3 principais questões representam {_fmt(top3_fraction * 100)}% de todas as preocupações relatadas."
        )

        if top_fraction > 0.5:
            concentration = "dominant"
            report.insights.append(f"Há uma questão dominante que precisa de atenção prioritária: {top_issue}.")
            report.recommendations.append(
                f"Ação imediata: Focar recursos e esforços para resolver o problema de {top_issue}. "
                "Este é claramente a prioridade número 1 da comunidade."
            )
        elif top3_fraction > 0.7:
            concentration = "concentrated"
            report.insights.append(
                "As preocupações estão concentradas em poucas áreas principais, o que facilita o trabalho de intervenção."
            )
            report.recommendations.append(
                "Desenvolver um plano integrado que aborde as 3 principais questões simultaneamente, de forma coordenada."
            )
        else:
            concentration = "diverse"
            report.insights.append(
                "Há uma ampla gama de preocupações diferentes, indicando que a comunidade tem necessidades diversas."
            )
            report.recommendations.append(
                "Considerar um plano abrangente de melhorias municipais que aborde múltiplas prioridades de forma organizada."
            )

        for issue, _ in ranked[:3]:
            report.recommendations.append(issue_recommendation(issue))

        details = [
            str(d) for d in rows.loc[rows["issue"].str.casefold() == "outros", "other_issue_detail"].dropna().head(3)
        ]
        if details:
            report.insights.append("Exemplos de problemas em \"Outros\": " + "; ".join(details) + ".")

        report.metrics = {
            "priorityIssues": [b.to_dict() for b in report.breakdown[:3]],
            "diversityIndex": shannon_diversity(c for _, c in ranked),
            "topIssuePercent": round_half_up(top_fraction * 100, 1),
            "topThreePercent": round_half_up(top3_fraction * 100, 1),
            "concentration": concentration,
            "otherIssueDetails": details,
        }
        check_breakdown_integrity(report)
        return report

    # -- engagement -------------------------------------------------------------

    def analyze_engagement(self, records: Iterable[CitizenRecord]) -> AnalysisReport:
        df = records_to_frame(records)
        total = len(df)
        if total == 0:
            return _empty_report(
                "engagement",
                "Não há contatos cadastrados para analisar o engajamento.",
                ["Cadastrar cidadãos e enviar a pesquisa para começar a medir o engajamento."],
                "eng_v0.1",
            )

        sent = int(df["sent"].sum())
        clicked = int(df["clicked"].sum())
        answered = int(df["answered"].sum())

        response_rate = percent(answered, total)
        engagement_rate = percent(clicked, sent)
        completion_rate = percent(answered, clicked)

        not_answered = ~df["answered"]
        partition = [
            ("Responderam", answered),
            ("Clicaram sem responder", int((not_answered & df["clicked"]).sum())),
            ("Receberam sem clicar", int((not_answered & ~df["clicked"] & df["sent"]).sum())),
            ("Não contatados", int((not_answered & ~df["clicked"] & ~df["sent"]).sum())),
        ]

        report = AnalysisReport(
            domain="engagement",
            total=total,
            breakdown=_build_breakdown(partition, total),
            quality_tier=sample_quality_tier(total),
            computation_version="eng_v0.1",
        )
        insights, recs = report.insights, report.recommendations

        if response_rate >= 70:
            level = "excellent"
            insights.append(f"Taxa de resposta excelente ({response_rate}%) - a estratégia de comunicação está funcionando muito bem.")
        elif response_rate >= 50:
            level = "good"
            insights.append(f"Taxa de resposta boa ({response_rate}%) - há um bom engajamento da comunidade.")
        elif response_rate >= 30:
            level = "fair"
            insights.append(f"Taxa de resposta moderada ({response_rate}%) - há espaço para melhorar o engajamento.")
            recs.append(
                "Melhorar as estratégias de comunicação para aumentar as taxas de resposta. "
                "Testar diferentes horários de envio e formatos de mensagem."
            )
        else:
            level = "poor"
            insights.append(
                f"Taxa de resposta baixa ({response_rate}%) - há desafios significativos de engajamento que precisam ser resolvidos."
            )
            recs.append(
                "Revisão completa da abordagem de comunicação necessária. Considerar mudanças no conteúdo das mensagens, "
                "horários de envio e canais de comunicação."
            )

        insights.append(
            f"Resumo do engajamento: {answered} de {total} cidadãos responderam ({response_rate}% de taxa de resposta)."
        )
        insights.append(
            f"Eficácia da comunicação: {engagement_rate}% dos cidadãos clicaram no link da pesquisa após receber a mensagem."
        )

        if engagement_rate < 60:
            recs.append(
                "Melhorar o conteúdo e o horário das mensagens para aumentar o número de pessoas que clicam no link. "
                f"A taxa atual de {engagement_rate}% pode ser melhorada."
            )
        elif engagement_rate >= 80:
            insights.append("Taxa de cliques excelente - as mensagens estão interessantes e motivando os cidadãos a participar.")

        if clicked > 0 and completion_rate < 70:
            insights.append(
                f"Atenção: apenas {completion_rate}% completaram a pesquisa após clicar. "
                "Muitos cidadãos começam mas não terminam."
            )
            recs.append(
                "Revisar o design da pesquisa - pode estar muito longa ou difícil de completar. "
                "Simplificar e tornar mais rápida pode aumentar a conclusão."
            )

        report.metrics = {
            "sent": sent,
            "clicked": clicked,
            "answered": answered,
            "rates": {"response": response_rate, "engagement": engagement_rate, "completion": completion_rate},
            "performanceLevel": level,
            "funnel": {
                "registered": total,
                "contacted": sent,
                "engaged": clicked,
                "responded": answered,
                "contactToEngage": engagement_rate,
                "engageToRespond": completion_rate,
            },
        }
        check_breakdown_integrity(report)
        return report

    # -- participation ------------------------------------------------------------

    def analyze_participation(self, records: Iterable[CitizenRecord]) -> AnalysisReport:
        df = records_to_frame(records)
        answers = df.loc[df["answered"] & df["participate"].notna(), "participate"] if not df.empty else pd.Series(dtype=object)
        interested = int((answers == "yes").sum())
        not_interested = int((answers == "no").sum())
        total = interested + not_interested

        if total == 0:
            return _empty_report(
                "participation",
                "Não há dados de participação disponíveis.",
                ["Incluir perguntas sobre interesse em participar em eventos comunitários nas próximas pesquisas."],
                "part_v0.1",
            )

        rate = percent(interested, total)
        report = AnalysisReport(
            domain="participation",
            total=total,
            breakdown=_build_breakdown([("Sim", interested), ("Não", not_interested)], total),
            quality_tier=sample_quality_tier(total),
            computation_version="part_v0.1",
        )
        insights, recs = report.insights, report.recommendations

        if rate >= 70:
            potential = "high"
            insights.append(f"Excelente: {rate}% dos cidadãos demonstram interesse ativo em participar de eventos comunitários.")
            insights.append("Este alto engajamento cívico é um valioso capital social para iniciativas municipais.")
            recs.append("Aproveitar este interesse forte organizando eventos comunitários regulares e estruturados.")
            recs.append("Considerar formar comitês consultivos de cidadãos com os residentes mais engajados.")
        elif rate >= 40:
            potential = "medium"
            insights.append(f"Bom potencial: {rate}% dos cidadãos mostram interesse em participar de eventos comunitários.")
            insights.append("Base sólida para construir um engajamento comunitário mais forte.")
            recs.append(
                f"Organizar eventos comunitários piloto com os {interested} cidadãos interessados para começar a construir participação."
            )
            recs.append("Usar o feedback dos primeiros eventos para melhorar e expandir a programação.")
        else:
            potential = "low"
            insights.append(f"Engajamento limitado: apenas {rate}% expressam interesse em participar.")
            insights.append(
                "O baixo interesse pode indicar barreiras (falta de tempo, transporte), desconfiança ou falhas na comunicação."
            )
            recs.append("Pesquisar barreiras à participação: perguntar sobre preferências de horário, local e formato de eventos.")
            recs.append("Começar com pequenos encontros comunitários informais para construir confiança.")
            recs.append(
                "Considerar oferecer incentivos ou formatos de eventos mais acessíveis (on-line, próximos ao bairro, etc.)."
            )

        if interested > 0:
            insights.append(f"Interesse comunitário: {interested} cidadãos interessados em participar de {total} respostas.")
            recs.append(f"Manter uma lista dos {interested} cidadãos engajados para convites direcionados para eventos futuros.")

        report.metrics = {
            "interested": interested,
            "notInterested": not_interested,
            "rate": rate,
            "engagementPotential": potential,
        }
        check_breakdown_integrity(report)
        return report

    # -- notification targeting -------------------------------------------------

    def analyze_dissatisfied_segment(self, records: Iterable[CitizenRecord]) -> AnalysisReport:
        df = records_to_frame(records)
        rows = df[df["answered"] & df["satisfaction"].isin(DISSATISFIED_LABELS)] if not df.empty else df
        if rows.empty:
            report = _empty_report(
                "dissatisfied",
                "Não há cidadãos insatisfeitos identificados nos dados atuais.",
                ["Continuar monitorando os níveis de satisfação em pesquisas futuras."],
                "diss_v0.1",
            )
            report.metrics["urgencyLevel"] = "low"
            return report

        total = len(rows)
        high = int((rows["satisfaction"] == "Muito insatisfeito").sum())
        counts = rows["satisfaction"].value_counts()
        report = AnalysisReport(
            domain="dissatisfied",
            total=total,
            breakdown=_build_breakdown([(l, int(counts.get(l, 0))) for l in SATISFACTION_LABELS if counts.get(l, 0)], total),
            quality_tier=sample_quality_tier(total),
            computation_version="diss_v0.1",
        )

        urgency = "medium"
        if high > total * 0.6:
            urgency = "high"
            report.insights.append(f"Situação crítica: {high} cidadãos estão muito insatisfeitos. Isso requer ação imediata.")
            report.insights.append(
                "A alta concentração de respostas \"muito insatisfeito\" indica problemas sistêmicos que afetam muitos cidadãos."
            )
            report.recommendations.append(
                f"Ação urgente: Contatar diretamente os {high} casos de alta prioridade para entender e resolver seus problemas."
            )
            report.recommendations.append(
                "Considerar um plano de resposta municipal de emergência para resolver problemas críticos rapidamente."
            )
        elif high > 0:
            report.insights.append(f"Preocupação prioritária: {high} casos precisam de atenção imediata.")
            report.insights.append(f"Além disso, {total - high} casos precisam de acompanhamento agendado.")
            report.recommendations.append(
                f"Resposta prioritária para os {high} casos mais críticos. Contatar pessoalmente ou por telefone."
            )

        issues = rows["issue"].dropna().value_counts()
        top_issue = None
        if not issues.empty:
            top_issue = str(issues.index[0])
            report.insights.append(
                f"Principal preocupação entre os cidadãos insatisfeitos: {top_issue} ({int(issues.iloc[0])} casos)."
            )
            report.recommendations.append(
                f"Resolver o problema sistêmico de {top_issue} que afeta múltiplos cidadãos insatisfeitos. "
                "Este é um problema comum que precisa de uma solução ampla."
            )

        report.metrics = {"highPriority": high, "mediumPriority": total - high, "urgencyLevel": urgency, "topIssue": top_issue}
        check_breakdown_integrity(report)
        return report

    def analyze_non_respondents(self, records: Iterable[CitizenRecord]) -> AnalysisReport:
        df = records_to_frame(records)
        pending = df[~df["answered"]] if not df.empty else df
        if pending.empty:
            return _empty_report(
                "non_respondents",
                "Todos os contatos foram processados com sucesso.",
                ["Continuar com as estratégias atuais de engajamento."],
                "nonresp_v0.1",
            )

        abandoned = int(pending["clicked"].sum())
        contacted = int((~pending["clicked"] & pending["sent"]).sum())
        not_contacted = int((~pending["clicked"] & ~pending["sent"]).sum())
        total = abandoned + contacted + not_contacted

        report = AnalysisReport(
            domain="non_respondents",
            total=total,
            breakdown=_build_breakdown(
                [("Clicou sem responder", abandoned), ("Contatado sem clique", contacted), ("Não contatado", not_contacted)],
                total,
            ),
            quality_tier=sample_quality_tier(total),
            computation_version="nonresp_v0.1",
        )
        insights, recs = report.insights, report.recommendations

        if abandoned:
            insights.append(
                f"Abandono da pesquisa: {abandoned} cidadãos clicaram mas não completaram ({_fmt(abandoned / total * 100)}%)."
            )
            if abandoned > total * 0.3:
                insights.append("Taxa alta de abandono sugere problemas de usabilidade ou pesquisa muito longa.")
            recs.append(
                f"Acompanhamento prioritário: {abandoned} cidadãos que mostraram interesse inicial (clicaram mas não completaram)."
            )
            recs.append("Considerar contato telefônico para cidadãos que clicaram mas não completaram a pesquisa.")
            if abandoned > 10:
                recs.append(
                    "Revisar o design da pesquisa para melhorias potenciais de usabilidade - pode estar muito longa ou complicada."
                )
        if contacted:
            insights.append(
                f"Engajamento inicial baixo: {contacted} cidadãos foram contatados mas não clicaram no link da pesquisa."
            )
            recs.append(f"Estratégia de re-engajamento: {contacted} cidadãos precisam de uma abordagem de comunicação diferente.")
            recs.append("Tentar mensagens alternativas ou horários diferentes para quem não clicou no link.")
        if not_contacted:
            insights.append(f"Oportunidade de alcance: {not_contacted} cidadãos ainda não foram contatados.")
            recs.append(f"Expandir o alcance: {not_contacted} cidadãos aguardam contato inicial.")
            recs.append("Criar um plano sistemático de contato para os cidadãos restantes.")

        report.metrics = {
            "clickedButNotResponded": abandoned,
            "contactedNoClick": contacted,
            "notContacted": not_contacted,
            "abandonmentRate": percent(abandoned, total),
        }
        check_breakdown_integrity(report)
        return report

    # -- data quality -------------------------------------------------------------

    def analyze_data_quality(self, records: Iterable[CitizenRecord], now: Optional[datetime] = None) -> AnalysisReport:
        df = records_to_frame(records)
        total = len(df)
        if total == 0:
            return _empty_report(
                "data_quality",
                "Não há contatos cadastrados para avaliar a qualidade dos dados.",
                ["Importar ou cadastrar contatos antes de avaliar a qualidade dos dados."],
                "health_v0.1",
            )

        now = now or datetime.now(timezone.utc)
        phones = df["whatsapp"].dropna().astype(str).str.replace(r"\D", "", regex=True)
        phones = phones[phones != ""]
        duplicates = int(phones.duplicated(keep="first").sum())

        incomplete_mask = (
            (df["name"].fillna("") == "")
            | (df["neighborhood"] == "Desconhecido")
            | df["whatsapp"].isna()
            | df["age"].isna()
        )
        incomplete = int(incomplete_mask.sum())

        sent_at = pd.to_datetime(df["whatsapp_sent_at"], errors="coerce", utc=True, format="ISO8601")
        stale_before = pd.Timestamp(now - timedelta(days=STALE_PENDING_DAYS))
        if stale_before.tzinfo is None:
            stale_before = stale_before.tz_localize("UTC")
        old_pending = int((~df["answered"] & sent_at.notna() & (sent_at < stale_before)).sum())

        issue_rate = (duplicates + incomplete) / total
        if issue_rate < 0.05:
            health, action_priority = "excellent", "low"
        elif issue_rate < 0.15:
            health, action_priority = "good", "medium"
        else:
            health, action_priority = "needs_attention", "high"

        report = AnalysisReport(
            domain="data_quality",
            total=total,
            quality_tier=sample_quality_tier(total),
            computation_version="health_v0.1",
        )
        health_text = {"excellent": "excelente", "good": "boa", "needs_attention": "precisa de atenção"}
        report.insights.append(
            f"Avaliação da qualidade dos dados: condição {health_text[health]} com {total} contatos no total."
        )
        if duplicates:
            report.insights.append(
                f"Problema de qualidade dos dados: {duplicates} contatos duplicados ({_fmt(duplicates / total * 100)}%)."
            )
            report.recommendations.append(
                "Implementar procedimentos de detecção e limpeza de duplicatas para melhorar a qualidade dos dados."
            )
        if incomplete:
            report.insights.append(
                f"Perfis incompletos: {incomplete} perfis com informações faltando ({_fmt(incomplete / total * 100)}%)."
            )
            report.recommendations.append(
                "Fazer uma campanha de contato para completar as informações faltantes nos perfis dos cidadãos."
            )
        if old_pending:
            report.insights.append(
                f"Acompanhamento necessário: {old_pending} contatos com respostas pendentes há mais de {STALE_PENDING_DAYS} dias."
            )
            report.recommendations.append(
                "Fazer acompanhamento sistemático para contatos com respostas pendentes há muito tempo."
            )
        if health == "excellent":
            report.insights.append("O sistema está operando com qualidade de dados ideal.")
            report.recommendations.append("Continuar com as práticas atuais de gestão de dados.")

        report.metrics = {
            "duplicates": duplicates,
            "incompleteProfiles": incomplete,
            "oldPending": old_pending,
            "issueRate": round_half_up(issue_rate * 100, 1),
            "health": health,
            "actionPriority": action_priority,
        }
        return report

    # -- listed residents ---------------------------------------------------------

    def segment_report(self, residents: Sequence[FilteredResident]) -> AnalysisReport:
        """
        Summary of an already-filtered resident list (priority mix,
        satisfaction distribution, top neighborhoods).
        """
        total = len(residents)
        if total == 0:
            return _empty_report(
                "segment",
                "Nenhum morador corresponde a este filtro.",
                [],
                "segment_v0.1",
            )

        frame = pd.DataFrame(
            {
                "priority": [r.priority for r in residents],
                "satisfaction": [r.satisfaction or "Sem resposta" for r in residents],
                "neighborhood": [r.neighborhood or "Desconhecido" for r in residents],
            }
        )
        sat_counts = frame["satisfaction"].value_counts()
        ordered = [(l, int(sat_counts[l])) for l in SATISFACTION_LABELS if l in sat_counts.index]
        ordered += [(l, int(c)) for l, c in sat_counts.items() if l not in SATISFACTION_WEIGHTS]

        priorities = {str(k): int(v) for k, v in frame["priority"].dropna().value_counts().items()}
        top_neighborhoods = [
            {"neighborhood": str(k), "count": int(v)} for k, v in frame["neighborhood"].value_counts().head(3).items()
        ]

        report = AnalysisReport(
            domain="segment",
            total=total,
            breakdown=_build_breakdown(ordered, total),
            quality_tier=sample_quality_tier(total),
            computation_version="segment_v0.1",
            metrics={"priorityCounts": priorities, "topNeighborhoods": top_neighborhoods},
        )
        if top_neighborhoods:
            lead = top_neighborhoods[0]
            report.insights.append(
                f"Concentração geográfica: {lead['neighborhood']} lidera com {lead['count']} moradores neste grupo."
            )
        check_breakdown_integrity(report)
        return report
