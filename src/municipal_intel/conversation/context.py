from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from municipal_intel.core.analysis_engine import AnalysisEngine
from municipal_intel.core.audit import StatisticsSnapshot, build_statistics_snapshot
from municipal_intel.core.models import (
    NEED_ABANDONMENT,
    NEED_AGE_ANALYSIS,
    NEED_DISSATISFIED,
    NEED_ENGAGEMENT_ANALYSIS,
    NEED_GEOGRAPHIC,
    NEED_ISSUES_ANALYSIS,
    NEED_NAME_SEARCH,
    NEED_PARTICIPATION_ANALYSIS,
    NEED_PARTICIPATION_INTERESTED,
    NEED_PARTICIPATION_NOT_INTERESTED,
    NEED_SATISFACTION_ANALYSIS,
    NEED_SATISFIED,
    NEED_TOTAL_COUNT,
    AnalysisReport,
    CitizenRecord,
    FilterCriteria,
    FilteredResident,
    FilterType,
    Intent,
    QueryAnalysisResult,
    QueryType,
)
from municipal_intel.core.resident_filter import ResidentFilterService
from municipal_intel.core.text import normalize

logger = logging.getLogger(__name__)

# Data-need tag -> resident filter
SEGMENT_FILTERS: Dict[str, FilterType] = {
    NEED_NAME_SEARCH: FilterType.name_search,
    NEED_PARTICIPATION_NOT_INTERESTED: FilterType.participation_not_interested,
    NEED_PARTICIPATION_INTERESTED: FilterType.participation_interested,
    NEED_DISSATISFIED: FilterType.dissatisfied,
    NEED_SATISFIED: FilterType.satisfied,
}

# Data-need tag -> AnalysisEngine method name, in report order
ANALYSIS_DOMAINS: Tuple[Tuple[str, str], ...] = (
    (NEED_SATISFACTION_ANALYSIS, "analyze_satisfaction"),
    (NEED_AGE_ANALYSIS, "analyze_satisfaction_by_age"),
    (NEED_GEOGRAPHIC, "analyze_neighborhoods"),
    (NEED_ISSUES_ANALYSIS, "analyze_issues"),
    (NEED_ENGAGEMENT_ANALYSIS, "analyze_engagement"),
    (NEED_PARTICIPATION_ANALYSIS, "analyze_participation"),
    (NEED_ABANDONMENT, "analyze_non_respondents"),
)


@dataclass
class AnalyticalContext:
    """
    Everything the downstream agents may use to answer one query.

    Built once per request from the read-only record collection.
    """
    records: Tuple[CitizenRecord, ...]
    snapshot: StatisticsSnapshot
    criteria: Optional[FilterCriteria] = None
    residents: List[FilteredResident] = field(default_factory=list)
    reports: Dict[str, AnalysisReport] = field(default_factory=dict)

    @property
    def primary_report(self) -> Optional[AnalysisReport]:
        return next(iter(self.reports.values()), None)


def resolve_filter(
    query: str, analysis: QueryAnalysisResult, filter_service: ResidentFilterService
) -> Optional[FilterCriteria]:
    """
    Tagged segments win over re-reading the query text; untagged listings fall
    back to the filter service's own resolution.
    """
    wants_list = analysis.query_type == QueryType.listing or analysis.intent == Intent.notification
    for tag in analysis.data_needs:
        filter_type = SEGMENT_FILTERS.get(tag)
        if filter_type is None:
            continue
        if filter_type != FilterType.name_search and not wants_list:
            continue
        return FilterCriteria(type=filter_type, normalized_query=normalize(query), raw_query=query)

    if analysis.query_type == QueryType.listing:
        return filter_service.build_criteria(query)
    return None


def select_domains(analysis: QueryAnalysisResult) -> List[Tuple[str, str]]:
    needs = set(analysis.data_needs)
    domains = [(tag, method) for tag, method in ANALYSIS_DOMAINS if tag in needs]

    if analysis.intent == Intent.ticket:
        domains.append(("data_quality", "analyze_data_quality"))
    elif NEED_DISSATISFIED in needs and analysis.query_type != QueryType.listing:
        domains.append((NEED_DISSATISFIED, "analyze_dissatisfied_segment"))
    elif (
        needs & {NEED_PARTICIPATION_INTERESTED, NEED_PARTICIPATION_NOT_INTERESTED}
        and analysis.query_type != QueryType.listing
        and NEED_PARTICIPATION_ANALYSIS not in needs
    ):
        domains.append((NEED_PARTICIPATION_ANALYSIS, "analyze_participation"))

    if domains or analysis.is_name_search or NEED_TOTAL_COUNT in needs:
        return domains
    if analysis.query_type in (QueryType.analysis, QueryType.comparison):
        # General question with no specific domain: satisfaction overview
        return [(NEED_SATISFACTION_ANALYSIS, "analyze_satisfaction")]
    return []


def build_context(
    query: str,
    analysis: QueryAnalysisResult,
    records: Sequence[CitizenRecord],
    engine: AnalysisEngine,
    filter_service: ResidentFilterService,
) -> AnalyticalContext:
    records = tuple(records)
    context = AnalyticalContext(records=records, snapshot=build_statistics_snapshot(records))

    criteria = resolve_filter(query, analysis, filter_service)
    if criteria is not None:
        context.criteria = criteria
        context.residents = filter_service.filter(records, criteria)

    for tag, method_name in select_domains(analysis):
        analyzer: Callable[[Sequence[CitizenRecord]], AnalysisReport] = getattr(engine, method_name)
        context.reports[tag] = analyzer(records)

    if context.residents and not context.reports and not analysis.is_name_search:
        context.reports["segment"] = engine.segment_report(context.residents)

    logger.info(
        "Context built: records=%d residents=%d reports=%s",
        len(records), len(context.residents), list(context.reports),
    )
    return context
