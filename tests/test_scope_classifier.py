import logging

from municipal_intel.conversation.scope_classifier import (
    ScopeClassifier,
    apply_confidence_safeguard,
    has_domain_anchor,
    safe_parse_json,
    verdict_from_payload,
)
from municipal_intel.core.models import CanonicalIntent, ScopeVerdict
from municipal_intel.llm.client import LLMAuthError, LLMTransientError


def test_safe_parse_json():
    assert safe_parse_json('{"inScope": true}') == {"inScope": True}
    assert safe_parse_json('Claro! {"inScope": false, "confidence": 0.2} Fim.') == {"inScope": False, "confidence": 0.2}
    assert safe_parse_json("sem json aqui") is None
    assert safe_parse_json("[1, 2]") is None
    assert safe_parse_json("") is None


def test_verdict_from_payload_accepts_alternate_keys():
    verdict = verdict_from_payload({"status": "in-scope", "score": 0.8, "explanation": "ok", "canonicalIntent": "Survey"})
    assert verdict.in_scope
    assert verdict.confidence == 0.8
    assert verdict.reason == "ok"
    assert verdict.canonical_intent == CanonicalIntent.survey

    verdict = verdict_from_payload({"inScope": True, "confidence": True, "canonical_intent": "weather"})
    assert verdict.confidence == 0.5
    assert verdict.canonical_intent is None

    assert verdict_from_payload({"inScope": True, "confidence": 1.7}).confidence == 1.0


def test_confidence_safeguard():
    low = ScopeVerdict(in_scope=True, confidence=0.4)
    blocked = apply_confidence_safeguard(low, "Quero pedir uma pizza")
    assert not blocked.in_scope
    assert blocked.canonical_intent == CanonicalIntent.out_of_scope

    assert apply_confidence_safeguard(low, "E a pesquisa?").in_scope
    high = ScopeVerdict(in_scope=True, confidence=0.9)
    assert apply_confidence_safeguard(high, "Quero pedir uma pizza") is high


def test_domain_anchor():
    assert has_domain_anchor("Qual a satisfação no bairro?")
    assert not has_domain_anchor("Qual a previsão do tempo?")


def test_empty_query_is_out_of_scope(stub_provider):
    verdict = ScopeClassifier(stub_provider(scope=stub_provider.scope_json())).classify("   ")
    assert not verdict.in_scope
    assert verdict.confidence == 0.0


def test_disabled_classifier_is_optimistic():
    classifier = ScopeClassifier(provider=None)
    assert not classifier.enabled
    verdict = classifier.classify("Qualquer coisa")
    assert verdict.in_scope
    assert verdict.confidence == 0.5
    assert verdict.categories == ("unknown",)


def test_unconfigured_provider_disables_classifier(stub_provider):
    provider = stub_provider(scope=stub_provider.scope_json(), configured=False)
    classifier = ScopeClassifier(provider)
    assert not classifier.enabled
    classifier.classify("Qualquer coisa")
    assert provider.calls == []


def test_provider_failures_fall_back(stub_provider, caplog):
    with caplog.at_level(logging.WARNING):
        auth = ScopeClassifier(stub_provider(scope=LLMAuthError("bad key"))).classify("satisfação?")
        transient = ScopeClassifier(stub_provider(scope=LLMTransientError("503"))).classify("satisfação?")

    for verdict in (auth, transient):
        assert verdict.in_scope
        assert verdict.confidence == 0.5
        assert verdict.categories == ("error-fallback",)
    assert any(r.levelno == logging.ERROR for r in caplog.records)


def test_unexpected_provider_error_falls_back(stub_provider, caplog):
    with caplog.at_level(logging.ERROR):
        verdict = ScopeClassifier(stub_provider(scope=KeyError("content"))).classify("satisfação?")

    assert verdict.in_scope
    assert verdict.confidence == 0.5
    assert verdict.categories == ("error-fallback",)
    assert "unknown" in caplog.text


def test_unparsable_output(stub_provider):
    verdict = ScopeClassifier(stub_provider(scope="I think it is fine")).classify("satisfação?")
    assert verdict.in_scope
    assert verdict.confidence == 0.4
    assert verdict.categories == ("unparsed",)


def test_low_confidence_without_anchor_is_blocked(stub_provider):
    provider = stub_provider(scope=stub_provider.scope_json(in_scope=True, confidence=0.4))
    verdict = ScopeClassifier(provider).classify("Quero pedir uma pizza")
    assert not verdict.in_scope
    assert verdict.canonical_intent == CanonicalIntent.out_of_scope
    assert provider.calls == ["scope"]
