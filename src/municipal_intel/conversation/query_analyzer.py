"""
QueryAnalyzer: scope + intent + data needs for one free-text query.

Classification is an ordered list of rules (CLASSIFICATION_RULES), evaluated
top to bottom, first match wins:

  1. statistical        count/total questions about records
  2. analysis_keyword   analysis-domain keyword with a display verb or a
                        preposition right after it
  3. resident_segment   dissatisfied / satisfied / (not) interested residents
  4. name_search        search verb plus a residual name-like word

When nothing matches the external ScopeClassifier decides. An out-of-scope
verdict is re-checked against the OVERRIDE_RULES before the query is blocked.
A heuristic pass supplies query-type / data-need / urgency defaults on every
path, and on the classifier path a canonical intent from the model overrides
the heuristic intent.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from municipal_intel.core.models import (
    NEED_ABANDONMENT,
    NEED_AGE_ANALYSIS,
    NEED_DISSATISFIED,
    NEED_ENGAGEMENT_ANALYSIS,
    NEED_GEOGRAPHIC,
    NEED_ISSUES_ANALYSIS,
    NEED_NAME_SEARCH,
    NEED_PARTICIPATION,
    NEED_PARTICIPATION_ANALYSIS,
    NEED_PARTICIPATION_INTERESTED,
    NEED_PARTICIPATION_NOT_INTERESTED,
    NEED_SATISFACTION_ANALYSIS,
    NEED_SATISFIED,
    NEED_TOTAL_COUNT,
    CanonicalIntent,
    Intent,
    QueryAnalysisResult,
    QueryType,
    ScopeVerdict,
    Urgency,
)
from municipal_intel.core.resident_filter import extract_name_candidate, has_name_search_verb
from municipal_intel.core.text import has_any, has_term, tokenize
from municipal_intel.core.vocabulary import (
    ABANDONMENT_QUALIFIERS,
    ABANDONMENT_TERMS,
    AGE_SUBKEYS,
    ANALYSIS_KEYWORDS,
    ANALYSIS_PREPOSITIONS,
    CANONICAL_INTENT_MAP,
    COMPARISON_TERMS,
    DISPLAY_VERBS,
    DISSATISFIED_TERMS,
    ENGAGEMENT_SUBKEYS,
    FILTER_VERBS,
    GEOGRAPHIC_SUBKEYS,
    HEURISTIC_RESIDENT_NOUNS,
    INTERESTED_TERMS,
    ISSUE_SUBKEYS,
    LIST_VERBS,
    NEGATION_TERMS,
    NOT_INTERESTED_TERMS,
    NOTIFICATION_TERMS,
    PARTICIPATION_SUBKEYS,
    PARTICIPATION_TERMS,
    RECORD_NOUNS,
    RESIDENT_NOUNS,
    SATISFACTION_SUBKEYS,
    SATISFIED_TERMS,
    STATISTICAL_TERMS,
    TICKET_TERMS,
    TOTAL_PATTERNS,
    URGENCY_TERMS,
)
from municipal_intel.conversation.scope_classifier import ScopeClassifier, apply_confidence_safeguard

logger = logging.getLogger(__name__)

RULE_CONFIDENCE = 0.9


@dataclass(frozen=True)
class QueryFeatures:
    raw: str
    tokens: Tuple[str, ...]

    @classmethod
    def from_query(cls, query: str) -> "QueryFeatures":
        return cls(raw=query, tokens=tuple(tokenize(query)))

    def has(self, terms: Sequence[str]) -> bool:
        return has_any(self.tokens, terms)


@dataclass(frozen=True)
class RuleMatch:
    intent: Intent
    query_type: QueryType
    data_needs: Tuple[str, ...] = ()
    strip_name_search: bool = False


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    predicate: Callable[[QueryFeatures], bool]
    build: Callable[[QueryFeatures], RuleMatch]


@dataclass
class HeuristicDefaults:
    intent: Intent = Intent.knowledge
    query_type: QueryType = QueryType.analysis
    data_needs: List[str] = field(default_factory=list)
    urgency: Urgency = Urgency.normal


# ---------------------------------------------------------------------------
# Rule 1: statistical / operational
# ---------------------------------------------------------------------------

def is_statistical_query(f: QueryFeatures) -> bool:
    return (f.has(STATISTICAL_TERMS) and f.has(RECORD_NOUNS)) or f.has(TOTAL_PATTERNS)


def _build_statistical(f: QueryFeatures) -> RuleMatch:
    return RuleMatch(Intent.knowledge, QueryType.analysis, (NEED_TOTAL_COUNT,), strip_name_search=True)


# ---------------------------------------------------------------------------
# Rule 2: analysis keyword
# ---------------------------------------------------------------------------

def _keyword_followed_by_preposition(tokens: Sequence[str]) -> bool:
    for kw in ANALYSIS_KEYWORDS:
        span = len(kw.split())
        for start in range(len(tokens) - span):
            if has_term(tokens[start:start + span], kw) and tokens[start + span] in ANALYSIS_PREPOSITIONS:
                return True
    return False


def is_analysis_query(f: QueryFeatures) -> bool:
    if not f.has(ANALYSIS_KEYWORDS):
        return False
    return f.has(DISPLAY_VERBS) or _keyword_followed_by_preposition(f.tokens)


_ANALYSIS_TAGS = (
    (SATISFACTION_SUBKEYS, NEED_SATISFACTION_ANALYSIS),
    (GEOGRAPHIC_SUBKEYS, NEED_GEOGRAPHIC),
    (AGE_SUBKEYS, NEED_AGE_ANALYSIS),
    (ISSUE_SUBKEYS, NEED_ISSUES_ANALYSIS),
    (ENGAGEMENT_SUBKEYS, NEED_ENGAGEMENT_ANALYSIS),
    (PARTICIPATION_SUBKEYS, NEED_PARTICIPATION_ANALYSIS),
)


def _build_analysis(f: QueryFeatures) -> RuleMatch:
    needs = tuple(tag for terms, tag in _ANALYSIS_TAGS if f.has(terms))
    return RuleMatch(Intent.knowledge, QueryType.analysis, needs, strip_name_search=True)


# ---------------------------------------------------------------------------
# Rule 3: resident segment
# ---------------------------------------------------------------------------

def segment_tag(f: QueryFeatures) -> Optional[str]:
    negated = f.has(NEGATION_TERMS)
    participation = f.has(PARTICIPATION_TERMS)
    if f.has(NOT_INTERESTED_TERMS) or (participation and negated):
        return NEED_PARTICIPATION_NOT_INTERESTED
    if f.has(INTERESTED_TERMS) or participation:
        return NEED_PARTICIPATION_INTERESTED
    if f.has(DISSATISFIED_TERMS):
        return NEED_DISSATISFIED
    if f.has(SATISFIED_TERMS):
        return NEED_SATISFIED
    return None


def is_segment_query(f: QueryFeatures) -> bool:
    return segment_tag(f) is not None and (f.has(FILTER_VERBS) or f.has(RESIDENT_NOUNS))


def _build_segment(f: QueryFeatures) -> RuleMatch:
    tag = segment_tag(f)
    needs = (tag,) if tag else ()
    if f.has(DISPLAY_VERBS):
        return RuleMatch(Intent.notification, QueryType.listing, needs, strip_name_search=True)
    return RuleMatch(Intent.knowledge, QueryType.analysis, needs, strip_name_search=True)


# ---------------------------------------------------------------------------
# Rule 4: name search
# ---------------------------------------------------------------------------

def is_name_search(f: QueryFeatures) -> bool:
    return has_name_search_verb(f.raw) and extract_name_candidate(f.raw) is not None


def _build_name_search(f: QueryFeatures) -> RuleMatch:
    return RuleMatch(Intent.knowledge, QueryType.listing, (NEED_NAME_SEARCH,))


STATISTICAL_RULE = ClassificationRule("statistical", is_statistical_query, _build_statistical)
NAME_SEARCH_RULE = ClassificationRule("name_search", is_name_search, _build_name_search)

CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    STATISTICAL_RULE,
    ClassificationRule("analysis_keyword", is_analysis_query, _build_analysis),
    ClassificationRule("resident_segment", is_segment_query, _build_segment),
    NAME_SEARCH_RULE,
)

# Re-checked when the classifier says out of scope
OVERRIDE_RULES: Tuple[ClassificationRule, ...] = (STATISTICAL_RULE, NAME_SEARCH_RULE)


# ---------------------------------------------------------------------------
# Heuristic pass
# ---------------------------------------------------------------------------

def heuristic_pass(f: QueryFeatures) -> HeuristicDefaults:
    d = HeuristicDefaults()

    segment_words = DISSATISFIED_TERMS + SATISFIED_TERMS + INTERESTED_TERMS + PARTICIPATION_TERMS
    if f.has(LIST_VERBS) and (f.has(HEURISTIC_RESIDENT_NOUNS) or f.has(segment_words)):
        d.intent, d.query_type = Intent.notification, QueryType.listing
    elif f.has(ABANDONMENT_TERMS) and f.has(ABANDONMENT_QUALIFIERS):
        d.intent, d.query_type = Intent.notification, QueryType.abandonment
        d.data_needs.append(NEED_ABANDONMENT)
    else:
        if f.has(STATISTICAL_TERMS) or f.has(("cadastros", "registros")):
            d.data_needs.append(NEED_TOTAL_COUNT)
        if f.has(NOTIFICATION_TERMS):
            d.intent, d.query_type = Intent.notification, QueryType.action
        elif f.has(TICKET_TERMS):
            d.intent, d.query_type = Intent.ticket, QueryType.action
        elif f.has(COMPARISON_TERMS):
            d.query_type = QueryType.comparison

    if f.has(DISSATISFIED_TERMS):
        d.data_needs.append(NEED_DISSATISFIED)
    elif f.has(SATISFIED_TERMS):
        d.data_needs.append(NEED_SATISFIED)
    if f.has(PARTICIPATION_TERMS) or f.has(INTERESTED_TERMS):
        d.data_needs.append(NEED_PARTICIPATION)
    if f.has(GEOGRAPHIC_SUBKEYS):
        d.data_needs.append(NEED_GEOGRAPHIC)

    if f.has(URGENCY_TERMS):
        d.urgency = Urgency.high
    return d


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

def _blocked(scope: ScopeVerdict) -> QueryAnalysisResult:
    if scope.in_scope:
        scope = ScopeVerdict(in_scope=False, confidence=scope.confidence, reason=scope.reason)
    return QueryAnalysisResult(
        scope=scope,
        intent=Intent.out_of_scope,
        query_type=QueryType.blocked,
        blocked=True,
    )


class QueryAnalyzer:
    def __init__(
        self,
        scope_classifier: Optional[ScopeClassifier] = None,
        rules: Sequence[ClassificationRule] = CLASSIFICATION_RULES,
        override_rules: Sequence[ClassificationRule] = OVERRIDE_RULES,
    ):
        self.scope_classifier = scope_classifier or ScopeClassifier(provider=None)
        self.rules = tuple(rules)
        self.override_rules = tuple(override_rules)

    @staticmethod
    def first_match(
        rules: Sequence[ClassificationRule], features: QueryFeatures
    ) -> Optional[Tuple[ClassificationRule, RuleMatch]]:
        for rule in rules:
            if rule.predicate(features):
                return rule, rule.build(features)
        return None

    def analyze(self, query: str) -> QueryAnalysisResult:
        if not query or not query.strip():
            return _blocked(ScopeVerdict(in_scope=False, confidence=0.0, reason="empty query"))

        features = QueryFeatures.from_query(query.strip())
        defaults = heuristic_pass(features)

        matched = self.first_match(self.rules, features)
        if matched is not None:
            rule, match = matched
            logger.debug("Query matched rule %s", rule.name)
            scope = ScopeVerdict(
                in_scope=True, confidence=RULE_CONFIDENCE, categories=(rule.name,), reason=f"rule: {rule.name}"
            )
            return self._from_rule(scope, match, defaults)

        verdict = self.scope_classifier.classify(features.raw)

        if not verdict.in_scope:
            override = self.first_match(self.override_rules, features)
            if override is not None:
                rule, match = override
                logger.info("Classifier said out of scope; overridden by rule %s", rule.name)
                scope = ScopeVerdict(
                    in_scope=True,
                    confidence=max(verdict.confidence, RULE_CONFIDENCE),
                    categories=(rule.name,),
                    reason=f"override: {rule.name}",
                )
                return self._from_rule(scope, match, defaults)
            logger.info("Query blocked as out of scope: %s", verdict.reason)
            return _blocked(verdict)

        verdict = apply_confidence_safeguard(verdict, features.raw)
        if not verdict.in_scope:
            logger.info("Query blocked by low-confidence safeguard (confidence=%.2f)", verdict.confidence)
            return _blocked(verdict)

        intent = defaults.intent
        canonical = verdict.canonical_intent
        if canonical is not None and canonical != CanonicalIntent.out_of_scope:
            mapped = CANONICAL_INTENT_MAP.get(canonical.value)
            if mapped:
                intent = Intent(mapped)

        return QueryAnalysisResult(
            scope=verdict,
            intent=intent,
            query_type=defaults.query_type,
            data_needs=tuple(defaults.data_needs),
            urgency=defaults.urgency,
            blocked=False,
        )

    @staticmethod
    def _from_rule(scope: ScopeVerdict, match: RuleMatch, defaults: HeuristicDefaults) -> QueryAnalysisResult:
        needs = list(match.data_needs) + list(defaults.data_needs)
        if match.strip_name_search:
            needs = [n for n in needs if n != NEED_NAME_SEARCH]
        return QueryAnalysisResult(
            scope=scope,
            intent=match.intent,
            query_type=match.query_type,
            data_needs=tuple(needs),
            urgency=defaults.urgency,
            blocked=False,
        )
