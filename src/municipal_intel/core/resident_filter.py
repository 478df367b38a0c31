from __future__ import annotations

import logging
import re
from typing import Callable, Dict, Iterable, List, Optional

from municipal_intel.core.models import (
    CitizenRecord,
    FilterCriteria,
    FilteredResident,
    FilterType,
)
from municipal_intel.core.text import (
    has_any,
    is_name_like,
    normalize,
    token_in_terms,
    tokenize,
)
from municipal_intel.core.vocabulary import (
    ANALYSIS_KEYWORDS,
    DISPLAY_VERBS,
    DISSATISFIED_LABELS,
    DISSATISFIED_TERMS,
    EVENT_TERMS,
    FILTER_VERBS,
    INTERESTED_TERMS,
    LIST_VERBS,
    NAME_SEARCH_VERBS,
    NAME_STOPWORDS,
    NEGATION_TERMS,
    NOT_INTERESTED_TERMS,
    PARTICIPATION_TERMS,
    SATISFIED_LABELS,
    SATISFIED_TERMS,
)

logger = logging.getLogger(__name__)

# Words that can never be part of a resident name candidate
_NON_NAME_TERMS = (
    NAME_SEARCH_VERBS + FILTER_VERBS + DISPLAY_VERBS + LIST_VERBS
    + DISSATISFIED_TERMS + SATISFIED_TERMS + INTERESTED_TERMS
    + NOT_INTERESTED_TERMS + PARTICIPATION_TERMS + NEGATION_TERMS + EVENT_TERMS
)

_EDGE_PUNCT = re.compile(r"^[\W_]+|[\W_]+$", re.UNICODE)


# ---------------------------------------------------------------------------
# Name-search helpers (shared with the query analyzer)
# ---------------------------------------------------------------------------

def has_name_search_verb(query: str) -> bool:
    return has_any(tokenize(query), NAME_SEARCH_VERBS)


def extract_name_candidate(query: str) -> Optional[str]:
    """
    Strip search verbs, stopwords, resident nouns and segment words from the
    raw query; whatever name-like words remain (original casing) form the
    candidate. Analysis queries never yield a candidate.
    """
    if not query or not query.strip():
        return None
    if has_any(tokenize(query), ANALYSIS_KEYWORDS):
        return None

    words: List[str] = []
    for raw in query.split():
        word = _EDGE_PUNCT.sub("", raw)
        token = normalize(word)
        if not token or not is_name_like(token):
            continue
        if token in NAME_STOPWORDS or token_in_terms(token, _NON_NAME_TERMS):
            continue
        words.append(word)

    candidate = " ".join(words).strip()
    return candidate or None


def is_name_search_query(query: str) -> bool:
    return has_name_search_verb(query) and extract_name_candidate(query) is not None


def name_matches(record_name: str, candidate: str) -> bool:
    """
    Fuzzy multi-token containment: the normalized name contains the whole
    candidate, or every candidate token appears somewhere in it (any order).
    """
    name_n = normalize(record_name)
    cand_n = normalize(candidate)
    if not name_n or not cand_n:
        return False
    if cand_n in name_n:
        return True
    return all(word in name_n for word in cand_n.split())


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------

def _project(record: CitizenRecord, priority: Optional[str] = None, responded: bool = False) -> FilteredResident:
    s = record.survey
    return FilteredResident(
        id=record.id,
        name=record.name,
        neighborhood=record.neighborhood,
        age=record.age,
        whatsapp=record.whatsapp,
        satisfaction=s.satisfaction if s else None,
        issue=s.issue if s else None,
        participate=s.participate if s else None,
        answered_at=s.answered_at if s else None,
        whatsapp_sent_at=record.whatsapp_sent_at,
        clicked_at=record.clicked_at,
        priority=priority,
        responded=responded or record.answered,
    )


class ResidentFilterService:
    """
    Pure filtering over an in-memory record collection.

    determine_filter_type() resolves a query to one FilterType using a fixed
    priority order; filter() applies it. Nothing here touches the network or
    mutates the records.
    """

    def __init__(self) -> None:
        self._dispatch: Dict[FilterType, Callable[[List[CitizenRecord], FilterCriteria], List[FilteredResident]]] = {
            FilterType.name_search: lambda recs, c: self.filter_by_name(recs, c.raw_query),
            FilterType.dissatisfied: lambda recs, c: self.filter_dissatisfied(recs),
            FilterType.satisfied: lambda recs, c: self.filter_satisfied(recs),
            FilterType.participation_interested: lambda recs, c: self.filter_participation_interested(recs),
            FilterType.participation_not_interested: lambda recs, c: self.filter_participation_not_interested(recs),
            FilterType.all_with_survey: lambda recs, c: self.filter_all_with_survey(recs),
        }

    # -- type resolution ----------------------------------------------------

    def determine_filter_type(self, query: str) -> Optional[FilterType]:
        tokens = tokenize(query)
        if not tokens:
            return None

        negated = has_any(tokens, NEGATION_TERMS)
        mentions_participation = has_any(tokens, PARTICIPATION_TERMS)

        if has_any(tokens, NOT_INTERESTED_TERMS) or (mentions_participation and negated):
            return FilterType.participation_not_interested

        if (mentions_participation or has_any(tokens, INTERESTED_TERMS) or has_any(tokens, EVENT_TERMS)) and not negated:
            return FilterType.participation_interested

        if is_name_search_query(query):
            return FilterType.name_search

        if has_any(tokens, DISSATISFIED_TERMS):
            return FilterType.dissatisfied

        if has_any(tokens, SATISFIED_TERMS):
            return FilterType.satisfied

        if has_any(tokens, LIST_VERBS):
            return FilterType.all_with_survey

        return None

    def build_criteria(self, query: str) -> Optional[FilterCriteria]:
        filter_type = self.determine_filter_type(query)
        if filter_type is None:
            return None
        return FilterCriteria(type=filter_type, normalized_query=normalize(query), raw_query=query)

    # -- filtering ------------------------------------------------------------

    def filter(self, records: Iterable[CitizenRecord], criteria: FilterCriteria) -> List[FilteredResident]:
        recs = list(records or [])
        if not recs:
            return []
        handler = self._dispatch.get(criteria.type)
        if handler is None:
            logger.warning("No filter registered for type %s", criteria.type)
            return []
        result = handler(recs, criteria)
        logger.debug("Filter %s matched %d of %d records", criteria.type.value, len(result), len(recs))
        return result

    def filter_by_name(self, records: Iterable[CitizenRecord], query: str) -> List[FilteredResident]:
        candidate = extract_name_candidate(query)
        if not candidate:
            return []
        return [_project(r) for r in records if r.name and name_matches(r.name, candidate)]

    def filter_dissatisfied(self, records: Iterable[CitizenRecord]) -> List[FilteredResident]:
        out = []
        for r in records:
            if r.survey and r.survey.satisfaction in DISSATISFIED_LABELS:
                priority = "HIGH" if r.survey.satisfaction == "Muito insatisfeito" else "MEDIUM"
                out.append(_project(r, priority=priority))
        return out

    def filter_satisfied(self, records: Iterable[CitizenRecord]) -> List[FilteredResident]:
        out = []
        for r in records:
            if r.survey and r.survey.satisfaction in SATISFIED_LABELS:
                priority = "ADVOCATE" if r.survey.satisfaction == "Muito satisfeito" else "POSITIVE"
                out.append(_project(r, priority=priority))
        return out

    def filter_participation_interested(self, records: Iterable[CitizenRecord]) -> List[FilteredResident]:
        return [
            _project(r, priority="ENGAGED")
            for r in records
            if r.survey and r.survey.normalized_participation() == "yes"
        ]

    def filter_participation_not_interested(self, records: Iterable[CitizenRecord]) -> List[FilteredResident]:
        return [
            _project(r, priority="NOT_WILLING")
            for r in records
            if r.survey and r.survey.normalized_participation() == "no"
        ]

    def filter_all_with_survey(self, records: Iterable[CitizenRecord]) -> List[FilteredResident]:
        return [_project(r, responded=True) for r in records if r.survey]
