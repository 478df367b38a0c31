import json

import pytest

from municipal_intel.config import MAX_QUERY_LENGTH, PIPELINE_VERSION
from municipal_intel.conversation.agents import RESULT_NAME_SEARCH, AgentResult
from municipal_intel.conversation.orchestrator import (
    BLOCKED_MESSAGE,
    PipelineState,
    ResponseOrchestrator,
    arbitrate,
    calculate_confidence,
)
from municipal_intel.core.models import CandidateSource, FilteredResident, QualityLevel, ResponseCandidate
from municipal_intel.core.resident_filter import ResidentFilterService
from municipal_intel.core.vocabulary import VOCABULARY_VERSION
from municipal_intel.llm.client import LLMTimeoutError


@pytest.fixture
def maria(records):
    return ResidentFilterService().filter_by_name(records, "Encontre Maria Silva")


def _llm(text, quality=QualityLevel.good):
    return ResponseCandidate(text=text, source=CandidateSource.llm, quality_level=quality)


# ---------------------------------------------------------------------------
# Arbitration
# ---------------------------------------------------------------------------

def test_focused_name_search_always_keeps_deterministic(maria):
    d = AgentResult(agent="knowledge_agent", result_type=RESULT_NAME_SEARCH, summary="D", residents=maria)
    decision = arbitrate(d, _llm("Maria Silva mora no Centro.", QualityLevel.excellent), is_name_search=True)
    assert decision.text == "D"
    assert not decision.llm_used


def test_grounded_but_long_name_search_answer_is_rejected(maria):
    d = AgentResult(agent="knowledge_agent", result_type="custom", summary="D", residents=maria)
    long_text = ("Maria Silva " + "x" * 600)[:600]
    assert len(long_text) == 600
    assert arbitrate(d, _llm(long_text), is_name_search=True).text == "D"

    short = arbitrate(d, _llm("Maria Silva mora no Centro."), is_name_search=True)
    assert short.llm_used
    assert short.source == CandidateSource.llm


def test_name_fragment_inside_a_word_does_not_ground_the_answer():
    ana = [FilteredResident(id="9", name="Ana", neighborhood="Centro")]
    d = AgentResult(agent="knowledge_agent", result_type="custom", summary="D", residents=ana)
    answer = _llm("Análise geral do município sem citar nenhum morador.")
    decision = arbitrate(d, answer, is_name_search=True)
    assert not decision.llm_used
    assert decision.text == "D"


def test_low_quality_short_answer_used_for_name_search_only(maria):
    d = AgentResult(agent="knowledge_agent", result_type="custom", summary="D" * 10, residents=maria)
    poor = _llm("Sem registros.", QualityLevel.poor)
    assert arbitrate(d, poor, is_name_search=True).llm_used
    assert not arbitrate(d, poor, is_name_search=False).llm_used
    assert not arbitrate(d, _llm("", QualityLevel.poor), is_name_search=True).llm_used


def test_general_query_prefers_grounded_or_much_longer_answer(maria):
    d = AgentResult(agent="knowledge_agent", result_type="analysis", summary="x" * 100, residents=maria)
    assert arbitrate(d, _llm("Maria Silva precisa de contato."), is_name_search=False).llm_used
    assert arbitrate(d, _llm("y" * 150), is_name_search=False).llm_used
    assert not arbitrate(d, _llm("y" * 149), is_name_search=False).llm_used
    assert not arbitrate(d, _llm("y" * 500, QualityLevel.fair), is_name_search=False).llm_used
    assert not arbitrate(d, None, is_name_search=False).llm_used


def test_confidence_is_monotonic_and_capped():
    assert calculate_confidence(0, None) == 0.70
    assert calculate_confidence(1, None) == 0.85
    assert calculate_confidence(0, QualityLevel.good) == 0.75
    assert calculate_confidence(0, QualityLevel.fair) == 0.70
    assert calculate_confidence(1, QualityLevel.good) == 0.90
    assert calculate_confidence(1, QualityLevel.excellent) == 0.95
    levels = [None, QualityLevel.poor, QualityLevel.good, QualityLevel.excellent]
    for residents in (0, 1, 5):
        scores = [calculate_confidence(residents, q) for q in levels]
        assert scores == sorted(scores)
        assert max(scores) <= 0.95
    assert calculate_confidence(3, QualityLevel.excellent) >= calculate_confidence(0, QualityLevel.good)


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------

def test_satisfaction_analysis_end_to_end(record_source):
    result = ResponseOrchestrator(record_source).process("Mostrar análise de satisfação")
    data = result.to_dict()

    assert result.success
    assert not data["blocked"]
    assert data["intent"] == "knowledge"
    assert data["queryType"] == "analysis"
    assert "satisfaction_analysis" in data["dataNeeds"]
    assert "name_search" not in data["dataNeeds"]
    assert "ANÁLISE DE SATISFAÇÃO" in data["response"]
    assert data["report"]["type"] == "satisfaction"
    assert data["report"]["metrics"]["averageScore"] == 3.0
    assert data["insights"] and data["recommendations"]
    assert data["statistics"] == {"totalContacts": 7, "responseRate": 57.1, "satisfactionScore": 3.0}
    assert data["provenance"] == {
        "agent": "knowledge_agent",
        "source": "deterministic",
        "llmUsed": False,
        "quality": None,
        "pipelineVersion": PIPELINE_VERSION,
        "vocabularyVersion": VOCABULARY_VERSION,
    }
    assert data["confidence"] == 0.70
    assert PipelineState.enhancement_skipped in result.state_trail
    assert result.state_trail[-1] == PipelineState.returned


def test_out_of_scope_query_is_blocked(record_source, stub_provider):
    provider = stub_provider(scope=stub_provider.scope_json(in_scope=True, confidence=0.4), answer="nunca usado")
    result = ResponseOrchestrator(record_source, provider=provider).process("Quero pedir uma pizza")

    assert result.blocked
    assert result.analysis.intent.value == "out_of_scope"
    assert result.response == BLOCKED_MESSAGE
    assert result.residents == []
    assert provider.calls == ["scope"]
    assert result.state_trail == [
        PipelineState.received, PipelineState.classified, PipelineState.blocked, PipelineState.returned,
    ]


def test_statistical_query_answered_even_if_classifier_disagrees(record_source, stub_provider):
    provider = stub_provider(scope=stub_provider.scope_json(in_scope=False, confidence=0.99), answer="curto")
    result = ResponseOrchestrator(record_source, provider=provider).process("Quantos cadastros temos?")

    assert not result.blocked
    assert result.response.startswith("Existem 7 registros")
    assert "scope" not in provider.calls


def test_name_search_keeps_deterministic_text_over_long_grounded_answer(record_source, stub_provider):
    llm_text = ("Maria Silva mora no Centro. " + "Detalhes. " * 80)[:600]
    provider = stub_provider(answer=llm_text)
    result = ResponseOrchestrator(record_source, provider=provider).process("Encontre Maria Silva")

    assert result.response.startswith('Encontrei 1 registro para "Maria Silva"')
    assert "Bairro: Centro" in result.response
    assert result.response != llm_text
    assert not result.llm_used
    assert [r.name for r in result.residents] == ["Maria Silva"]
    assert result.insights == [] and result.recommendations == []
    assert provider.calls == ["enhance"]
    assert PipelineState.enhanced in result.state_trail
    assert result.confidence == 0.90


def test_name_search_not_found(record_source):
    result = ResponseOrchestrator(record_source).process("Encontre Fernanda")
    assert result.response == 'Não encontrei registros para "Fernanda" no banco de dados municipal.'
    assert result.residents == []


def test_participation_not_interested_beats_name_search(record_source):
    result = ResponseOrchestrator(record_source).process("Encontre Maria que não quer participar")
    assert not result.analysis.is_name_search
    assert "participation_not_interested" in result.analysis.data_needs


def test_segment_listing_end_to_end(record_source):
    result = ResponseOrchestrator(record_source).process("Mostre os moradores insatisfeitos")

    assert result.agent == "notification_agent"
    assert "RELATÓRIO DE SEGMENTO: INSATISFEITOS" in result.response
    assert "URGÊNCIA" in result.response
    assert {r.name for r in result.residents} == {"Maria Silva", "Pedro Lima"}
    assert result.report["type"] == "segment"
    assert result.confidence == 0.85


def test_rich_llm_answer_is_preferred_for_general_queries(record_source, stub_provider):
    provider = stub_provider(answer="- " + "análise detalhada " * 600)
    result = ResponseOrchestrator(record_source, provider=provider).process("Mostrar análise de satisfação")

    assert result.llm_used
    assert result.source == CandidateSource.llm
    assert result.quality == QualityLevel.good
    assert result.confidence == 0.75


def test_enhancement_failure_is_not_fatal(record_source, stub_provider):
    provider = stub_provider(answer=LLMTimeoutError("slow"))
    result = ResponseOrchestrator(record_source, provider=provider).process("Mostrar análise de satisfação")

    assert result.success
    assert not result.llm_used
    assert PipelineState.enhancement_failed in result.state_trail
    assert "ANÁLISE DE SATISFAÇÃO" in result.response


def test_unexpected_provider_error_is_not_fatal(record_source, stub_provider, caplog):
    provider = stub_provider(answer=RuntimeError("provider bug"))
    result = ResponseOrchestrator(record_source, provider=provider).process("Mostrar análise de satisfação")

    assert result.success
    assert not result.llm_used
    assert result.source == CandidateSource.deterministic
    assert PipelineState.enhancement_failed in result.state_trail
    assert result.state_trail[-1] == PipelineState.returned
    assert "ANÁLISE DE SATISFAÇÃO" in result.response
    assert "unknown" in caplog.text


def test_geographic_result_is_json_serializable(record_source):
    result = ResponseOrchestrator(record_source).process("Mostre o relatório de bairros")
    data = json.loads(json.dumps(result.to_dict()))

    assert data["report"]["type"] == "neighborhoods"
    metrics = data["report"]["metrics"]
    assert metrics["representativenessRisk"] is True
    assert metrics["largestShare"] == {"neighborhood": "Centro", "percentage": 42.9}
    assert metrics["bestPerforming"]["neighborhood"] == "Jardim"


def test_ticket_intent_skips_enhancement(record_source, stub_provider):
    provider = stub_provider(scope=stub_provider.scope_json(confidence=0.9, canonical="operational"), answer="x" * 5000)
    result = ResponseOrchestrator(record_source, provider=provider).process("Qual o status do sistema?")

    assert result.agent == "ticket_agent"
    assert provider.calls == ["scope"]
    assert PipelineState.enhancement_skipped in result.state_trail
    assert "QUALIDADE DOS DADOS" in result.response


class _BrokenSource:
    def get_all_records(self):
        raise RuntimeError("db down")


def test_context_failure_returns_error_result():
    result = ResponseOrchestrator(_BrokenSource()).process("Mostrar análise de satisfação")
    data = result.to_dict()

    assert data["success"] is False
    assert data["residents"] == []
    assert data["query"] == "Mostrar análise de satisfação"
    assert data["response"].startswith("Error processing query:")
    assert "db down" in data["response"]
    assert data["response"].endswith("Please try again.")


def test_long_query_is_truncated(record_source):
    result = ResponseOrchestrator(record_source).process("Mostrar análise de satisfação " + "a" * 1000)
    assert len(result.query) == MAX_QUERY_LENGTH
