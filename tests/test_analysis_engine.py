import logging
from datetime import datetime, timezone

import pytest

from municipal_intel.core.analysis_engine import (
    AnalysisEngine,
    check_breakdown_integrity,
    dissatisfaction_tier,
    percent,
    round_half_up,
    sample_quality_tier,
    shannon_diversity,
)
from municipal_intel.core.models import AnalysisReport, BreakdownItem, CitizenRecord, QualityTier
from municipal_intel.core.resident_filter import ResidentFilterService


@pytest.fixture
def engine():
    return AnalysisEngine()


SATISFACTION_COUNTS = {
    "Muito satisfeito": 10,
    "Satisfeito": 20,
    "Neutro": 5,
    "Insatisfeito": 3,
    "Muito insatisfeito": 2,
}

NEIGHBORHOOD_STATS = {
    "Alpha": {"total": 10, "sent": 10, "clicked": 9, "answered": 9},
    "Beta": {"total": 20, "sent": 20, "clicked": 18, "answered": 17},
    "Gama": {"total": 10, "sent": 10, "clicked": 5, "answered": 4},
    "Delta": {"total": 50, "sent": 50, "clicked": 25, "answered": 19},
}


def test_round_half_up_and_percent():
    assert round_half_up(3.825) == 3.83
    assert round_half_up(2.675) == 2.68
    assert round_half_up(None) == 0.0
    assert percent(1, 3) == 33.3
    assert percent(5, 0) == 0.0


def test_tiers():
    assert sample_quality_tier(0) == QualityTier.insufficient_data
    assert sample_quality_tier(29) == QualityTier.limited
    assert sample_quality_tier(30) == QualityTier.good
    assert sample_quality_tier(100) == QualityTier.excellent
    assert dissatisfaction_tier(12.5) == "low"
    assert dissatisfaction_tier(25) == "elevated"
    assert dissatisfaction_tier(40) == "critical"


def test_satisfaction_report_from_counts(engine):
    report = engine.satisfaction_report_from_counts(SATISFACTION_COUNTS)
    assert report.total == 40
    assert report.metrics["averageScore"] == 3.83
    assert report.metrics["dissatisfiedPercent"] == 12.5
    assert report.metrics["dissatisfactionTier"] == "low"
    assert sum(b.count for b in report.breakdown) == report.total
    assert report.quality_tier == QualityTier.good


def test_neighborhood_equity(engine):
    report = engine.neighborhood_report_from_stats(NEIGHBORHOOD_STATS)
    m = report.metrics
    assert m["avgResponseRate"] == 63.25
    assert m["attentionCutoff"] == 53.25
    assert [n["neighborhood"] for n in m["needsAttention"]] == ["Gama", "Delta"]
    assert m["equityAssessment"] == "concern"
    assert m["bestPerforming"]["neighborhood"] == "Alpha"
    assert m["equityGap"] == 52.0
    assert m["representativenessRisk"] is True
    assert m["largestShare"] == {"neighborhood": "Delta", "percentage": 55.6}
    assert sum(b.count for b in report.breakdown) == report.total == 90


def test_neighborhood_equity_excellent_when_nobody_lags(engine):
    stats = {
        "Alpha": {"total": 10, "sent": 10, "clicked": 8, "answered": 8},
        "Beta": {"total": 10, "sent": 10, "clicked": 8, "answered": 7},
    }
    assert engine.neighborhood_report_from_stats(stats).metrics["equityAssessment"] == "excellent"


def test_integrity_check_logs_without_raising(engine, caplog):
    broken = AnalysisReport(domain="test", total=10, breakdown=[BreakdownItem("a", 3, 30.0)])
    with caplog.at_level(logging.WARNING, logger="municipal_intel.core.analysis_engine"):
        assert check_breakdown_integrity(broken) is False
        report = engine.satisfaction_report_from_counts(SATISFACTION_COUNTS, total=45)
    assert report.total == 45
    assert "mismatch" in caplog.text


def test_analyze_satisfaction_on_records(engine, records):
    report = engine.analyze_satisfaction(records)
    assert report.total == 4
    assert report.metrics["averageScore"] == 3.0
    assert report.metrics["dissatisfiedPercent"] == 50.0
    assert report.metrics["dissatisfactionTier"] == "critical"
    assert report.quality_tier == QualityTier.limited
    assert report.recommendations


def test_analyze_satisfaction_empty(engine):
    report = engine.analyze_satisfaction([])
    assert report.total == 0
    assert report.quality_tier == QualityTier.insufficient_data
    assert report.insights


def test_analyze_satisfaction_by_age(engine, records):
    report = engine.analyze_satisfaction_by_age(records)
    labels = [b["label"] for b in report.metrics["brackets"]]
    assert labels == ["15-24", "25-34", "45-54", "65+"]
    assert report.metrics["highestBracket"] == "15-24"
    assert report.metrics["lowestBracket"] == "25-34"
    assert report.metrics["scoreGap"] == 4.0
    assert "diferença importante" in report.metrics["insightSummary"]


def test_analyze_issues(engine, records):
    report = engine.analyze_issues(records)
    assert report.total == 4
    assert report.breakdown[0].label == "Segurança"
    assert report.metrics["concentration"] == "concentrated"
    assert report.metrics["diversityIndex"] == 1.5
    # one framing recommendation plus one per top issue
    assert len(report.recommendations) == 4


def test_analyze_engagement_partition(engine, records):
    report = engine.analyze_engagement(records)
    counts = {b.label: b.count for b in report.breakdown}
    assert counts == {
        "Responderam": 4,
        "Clicaram sem responder": 1,
        "Receberam sem clicar": 1,
        "Não contatados": 1,
    }
    assert report.metrics["rates"] == {"response": 57.1, "engagement": 83.3, "completion": 80.0}
    assert report.metrics["performanceLevel"] == "good"


def test_analyze_participation(engine, records):
    report = engine.analyze_participation(records)
    assert report.total == 4
    assert report.metrics["rate"] == 50.0
    assert report.metrics["engagementPotential"] == "medium"


def test_analyze_dissatisfied_segment(engine, records):
    report = engine.analyze_dissatisfied_segment(records)
    assert report.total == 2
    assert report.metrics["highPriority"] == 1
    assert report.metrics["urgencyLevel"] == "medium"
    assert report.metrics["topIssue"] == "Segurança"


def test_analyze_non_respondents(engine, records):
    report = engine.analyze_non_respondents(records)
    assert report.metrics["clickedButNotResponded"] == 1
    assert report.metrics["contactedNoClick"] == 1
    assert report.metrics["notContacted"] == 1


def test_analyze_data_quality(engine, records):
    report = engine.analyze_data_quality(records, now=datetime(2024, 3, 1, tzinfo=timezone.utc))
    m = report.metrics
    assert m["duplicates"] == 1
    assert m["incompleteProfiles"] == 2
    assert m["oldPending"] == 2
    assert m["health"] == "needs_attention"
    assert m["actionPriority"] == "high"


def test_segment_report(engine, records):
    residents = ResidentFilterService().filter_dissatisfied(records)
    report = engine.segment_report(residents)
    assert report.total == 2
    assert report.metrics["priorityCounts"] == {"HIGH": 1, "MEDIUM": 1}
    assert sum(b.count for b in report.breakdown) == 2


def test_shannon_diversity():
    assert shannon_diversity([5]) == 0.0
    assert shannon_diversity([1, 1]) == 1.0
    assert shannon_diversity([]) == 0.0


# ---------------------------------------------------------------------------
# Tier boundaries
# ---------------------------------------------------------------------------

def _citizen(i, survey=None, age=30, clicked=True):
    return CitizenRecord.from_dict(
        {
            "id": str(i),
            "name": f"Morador {i}",
            "neighborhood": "Centro",
            "age": age,
            "whatsapp": f"551199990{i:03d}",
            "whatsappSentAt": "2024-01-10T10:00:00Z",
            "clickedAt": "2024-01-10T12:00:00Z" if clicked else None,
            "survey": survey,
        }
    )


def _with_issues(*issues):
    return [_citizen(i, {"issue": issue, "satisfaction": "Neutro"}) for i, issue in enumerate(issues)]


def _with_answers(answered, total):
    return [_citizen(i, {"satisfaction": "Satisfeito"} if i < answered else None) for i in range(total)]


def _with_participation(yes, no):
    return [_citizen(i, {"participate": "Sim" if i < yes else "Não"}) for i in range(yes + no)]


def test_issues_dominant_above_half(engine):
    report = engine.analyze_issues(_with_issues("Segurança", "Segurança", "Segurança", "Saúde"))
    assert report.metrics["concentration"] == "dominant"
    assert report.metrics["topIssuePercent"] == 75.0
    assert report.recommendations[0].startswith("Ação imediata: Focar recursos e esforços para resolver o problema de Segurança.")
    assert any("questão dominante" in i for i in report.insights)


def test_issues_exactly_half_is_not_dominant(engine):
    report = engine.analyze_issues(_with_issues("Segurança", "Segurança", "Saúde", "Transporte"))
    assert report.metrics["topIssuePercent"] == 50.0
    assert report.metrics["concentration"] == "concentrated"


def test_issues_diverse_when_top_three_at_most_seventy_percent(engine):
    issues = ["Segurança"] * 3 + ["Saúde"] * 2 + ["Transporte"] * 2 + ["Educação", "Limpeza", "Iluminação"]
    report = engine.analyze_issues(_with_issues(*issues))
    assert report.metrics["topThreePercent"] == 70.0
    assert report.metrics["concentration"] == "diverse"
    assert report.recommendations[0].startswith("Considerar um plano abrangente")
    assert any("ampla gama de preocupações" in i for i in report.insights)


def test_age_satisfaction_roughly_even(engine):
    records = [
        _citizen(1, {"satisfaction": "Satisfeito"}, age=20),
        _citizen(2, {"satisfaction": "Satisfeito"}, age=30),
    ]
    report = engine.analyze_satisfaction_by_age(records)
    assert report.metrics["scoreGap"] == 0.0
    assert report.metrics["insightSummary"] == (
        "A satisfação está distribuída de forma similar entre as diferentes faixas etárias."
    )
    assert report.recommendations[0].startswith("A satisfação está em níveis aceitáveis")


def test_age_satisfaction_gap_of_half_point_is_reported(engine):
    records = [
        _citizen(1, {"satisfaction": "Satisfeito"}, age=20),
        _citizen(2, {"satisfaction": "Muito satisfeito"}, age=21),
        _citizen(3, {"satisfaction": "Satisfeito"}, age=30),
    ]
    report = engine.analyze_satisfaction_by_age(records)
    assert report.metrics["scoreGap"] == 0.5
    assert "diferença importante" in report.metrics["insightSummary"]


@pytest.mark.parametrize(
    "answered, level, remediation",
    [
        (7, "excellent", None),
        (5, "good", None),
        (3, "fair", "Melhorar as estratégias de comunicação"),
        (2, "poor", "Revisão completa da abordagem de comunicação"),
    ],
)
def test_engagement_performance_tiers(engine, answered, level, remediation):
    report = engine.analyze_engagement(_with_answers(answered, 10))
    assert report.metrics["performanceLevel"] == level
    tier_recs = [
        r for r in report.recommendations
        if r.startswith(("Melhorar as estratégias de comunicação", "Revisão completa da abordagem de comunicação"))
    ]
    if remediation is None:
        assert tier_recs == []
    else:
        assert len(tier_recs) == 1 and tier_recs[0].startswith(remediation)


@pytest.mark.parametrize(
    "yes, no, potential, marker",
    [
        (7, 3, "high", "comitês consultivos"),
        (4, 6, "medium", "eventos comunitários piloto"),
        (3, 7, "low", "Pesquisar barreiras à participação"),
    ],
)
def test_participation_tiers(engine, yes, no, potential, marker):
    report = engine.analyze_participation(_with_participation(yes, no))
    assert report.metrics["engagementPotential"] == potential
    assert report.metrics["rate"] == yes * 10.0
    assert any(marker in r for r in report.recommendations)
