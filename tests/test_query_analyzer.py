import pytest

from municipal_intel.conversation.query_analyzer import (
    CLASSIFICATION_RULES,
    QueryAnalyzer,
    QueryFeatures,
    is_statistical_query,
)
from municipal_intel.conversation.scope_classifier import ScopeClassifier
from municipal_intel.core.models import Intent, QueryType, Urgency


def _analyzer(stub_provider, scope):
    provider = stub_provider(scope=scope)
    return QueryAnalyzer(ScopeClassifier(provider)), provider


def test_rule_order_is_fixed():
    assert [r.name for r in CLASSIFICATION_RULES] == [
        "statistical", "analysis_keyword", "resident_segment", "name_search",
    ]


def test_satisfaction_analysis_query():
    result = QueryAnalyzer().analyze("Mostrar análise de satisfação")
    assert not result.blocked
    assert result.intent == Intent.knowledge
    assert result.query_type == QueryType.analysis
    assert "satisfaction_analysis" in result.data_needs
    assert "name_search" not in result.data_needs


@pytest.mark.parametrize(
    "query, tag",
    [
        ("Mostre o relatório de bairros", "geographic"),
        ("Exibir análise de engajamento", "engagement_analysis"),
        ("Mostre os problemas da Maria", "issues_analysis"),
        ("Análise por idade", "age_analysis"),
    ],
)
def test_analysis_keyword_never_yields_name_search(query, tag):
    result = QueryAnalyzer().analyze(query)
    assert result.query_type == QueryType.analysis
    assert tag in result.data_needs
    assert "name_search" not in result.data_needs


@pytest.mark.parametrize(
    "query",
    ["Quantos cadastros temos?", "Qual o total de moradores?", "How many citizens are registered", "Quantas pessoas Silva existem?"],
)
def test_statistical_queries_are_never_blocked(stub_provider, query):
    analyzer, provider = _analyzer(stub_provider, stub_provider.scope_json(in_scope=False, confidence=0.99))
    result = analyzer.analyze(query)
    assert not result.blocked
    assert result.data_needs[0] == "total_count"
    assert "name_search" not in result.data_needs
    assert provider.calls == []


def test_statistical_rule_takes_precedence_over_name_search():
    features = QueryFeatures.from_query("Quantas pessoas Silva existem?")
    assert is_statistical_query(features)


def test_segment_listing():
    result = QueryAnalyzer().analyze("Mostre os moradores insatisfeitos urgente")
    assert result.intent == Intent.notification
    assert result.query_type == QueryType.listing
    assert "dissatisfied" in result.data_needs
    assert result.urgency == Urgency.high


def test_not_interested_wins_over_name_search():
    result = QueryAnalyzer().analyze("Encontre Maria que não quer participar")
    assert "participation_not_interested" in result.data_needs
    assert "name_search" not in result.data_needs


def test_name_search():
    result = QueryAnalyzer().analyze("Encontre Maria Silva")
    assert result.intent == Intent.knowledge
    assert result.query_type == QueryType.listing
    assert result.is_name_search


def test_out_of_scope_query_is_blocked(stub_provider):
    analyzer, _ = _analyzer(stub_provider, stub_provider.scope_json(in_scope=True, confidence=0.4))
    result = analyzer.analyze("Quero pedir uma pizza")
    assert result.blocked
    assert result.intent == Intent.out_of_scope
    assert result.query_type == QueryType.blocked
    assert not result.scope.in_scope


def test_confident_out_of_scope_verdict_blocks(stub_provider):
    analyzer, _ = _analyzer(stub_provider, stub_provider.scope_json(in_scope=False, confidence=0.95))
    assert analyzer.analyze("Qual a previsão do tempo amanhã?").blocked


def test_disabled_classifier_blocks_only_without_anchor():
    analyzer = QueryAnalyzer()
    assert analyzer.analyze("Quero pedir uma pizza").blocked
    result = analyzer.analyze("E a pesquisa?")
    assert not result.blocked
    assert result.intent == Intent.knowledge


def test_canonical_intent_remaps_classifier_path(stub_provider):
    analyzer, _ = _analyzer(stub_provider, stub_provider.scope_json(confidence=0.9, canonical="engagement"))
    result = analyzer.analyze("Como está a cidade?")
    assert result.intent == Intent.notification
    assert result.query_type == QueryType.analysis


def test_operational_canonical_intent_maps_to_ticket(stub_provider):
    analyzer, _ = _analyzer(stub_provider, stub_provider.scope_json(confidence=0.9, canonical="operational"))
    result = analyzer.analyze("Qual o status do sistema?")
    assert result.intent == Intent.ticket


def test_abandonment_heuristic(stub_provider):
    analyzer, _ = _analyzer(stub_provider, stub_provider.scope_json(confidence=0.9))
    result = analyzer.analyze("Quem clicou mas não completou?")
    assert result.intent == Intent.notification
    assert result.query_type == QueryType.abandonment
    assert "abandonment" in result.data_needs


def test_empty_query_is_blocked():
    assert QueryAnalyzer().analyze("  ").blocked
