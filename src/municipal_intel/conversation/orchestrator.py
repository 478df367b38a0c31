"""
End-to-end query pipeline.

    RECEIVED -> CLASSIFIED -> BLOCKED
                           -> CONTEXT_BUILT -> ROUTED
                              -> ENHANCED | ENHANCEMENT_SKIPPED | ENHANCEMENT_FAILED
                              -> ARBITRATED -> RETURNED

A blocked query returns the redirection message and nothing downstream runs.
Context-build and routing failures end the request with success=False. An LLM
failure only means the deterministic answer is used.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from municipal_intel.config import LLM_MAX_TOKENS, LLM_TIMEOUT_SECONDS, MAX_QUERY_LENGTH, PIPELINE_VERSION
from municipal_intel.conversation.agents import DEFAULT_AGENTS, Agent, AgentResult
from municipal_intel.conversation.context import AnalyticalContext, build_context
from municipal_intel.conversation.query_analyzer import QueryAnalyzer
from municipal_intel.conversation.scope_classifier import ScopeClassifier
from municipal_intel.core.analysis_engine import AnalysisEngine
from municipal_intel.core.audit import StatisticsSnapshot, build_statistics_snapshot, is_grounded
from municipal_intel.core.data_loader import RecordSource
from municipal_intel.core.models import (
    CandidateSource,
    FilteredResident,
    Intent,
    QualityLevel,
    QueryAnalysisResult,
    ResponseCandidate,
)
from municipal_intel.core.resident_filter import ResidentFilterService
from municipal_intel.core.vocabulary import VOCABULARY_VERSION
from municipal_intel.llm.client import LLMAuthError, LLMError, LLMProvider, LLMTimeoutError
from municipal_intel.llm.prompts import ENHANCEMENT_SYSTEM_PROMPT, build_enhancement_user_prompt
from municipal_intel.llm.quality import assess_quality

logger = logging.getLogger(__name__)

BLOCKED_MESSAGE = (
    "Consulta fora do escopo da Inteligência Municipal. Reformule dentro de: satisfação cidadã, "
    "engajamento, equidade geográfica, desempenho operacional, benchmarking ou análise de pesquisa."
)

NAME_SEARCH_MAX_LLM_LENGTH = 500
GENERAL_LENGTH_FACTOR = 1.5

BASE_CONFIDENCE = 0.70
RESIDENT_BONUS = 0.15
QUALITY_BONUS: Mapping[QualityLevel, float] = {QualityLevel.excellent: 0.10, QualityLevel.good: 0.05}
MAX_CONFIDENCE = 0.95


class PipelineState(str, Enum):
    received = "RECEIVED"
    classified = "CLASSIFIED"
    blocked = "BLOCKED"
    context_built = "CONTEXT_BUILT"
    routed = "ROUTED"
    enhanced = "ENHANCED"
    enhancement_skipped = "ENHANCEMENT_SKIPPED"
    enhancement_failed = "ENHANCEMENT_FAILED"
    arbitrated = "ARBITRATED"
    returned = "RETURNED"


class RoutingError(Exception):
    """Context build or downstream agent failure; ends the request."""


@dataclass(frozen=True)
class EnhancementOutcome:
    state: PipelineState
    candidate: Optional[ResponseCandidate] = None
    failure_category: Optional[str] = None


@dataclass(frozen=True)
class ArbitrationDecision:
    text: str
    source: CandidateSource
    llm_used: bool
    reason: str


# ---------------------------------------------------------------------------
# Arbitration and confidence
# ---------------------------------------------------------------------------

def arbitrate(
    deterministic: AgentResult,
    llm: Optional[ResponseCandidate],
    is_name_search: bool,
) -> ArbitrationDecision:
    """
    Pick the final text between the deterministic answer D and the LLM answer L.

    A model answer is only preferred when it names a resident that D actually
    returned, or, outside name searches, when it is much longer than D.
    """
    d_text = deterministic.summary

    def use_d(reason: str) -> ArbitrationDecision:
        return ArbitrationDecision(text=d_text, source=CandidateSource.deterministic, llm_used=False, reason=reason)

    def use_l(reason: str) -> ArbitrationDecision:
        return ArbitrationDecision(text=llm.text, source=CandidateSource.llm, llm_used=True, reason=reason)

    if is_name_search and deterministic.is_focused_name_search:
        return use_d("focused name search result")

    if llm is not None and llm.quality_level in (QualityLevel.excellent, QualityLevel.good):
        grounded = is_grounded(llm.text, deterministic.residents)
        if is_name_search:
            if grounded and len(llm.text) < NAME_SEARCH_MAX_LLM_LENGTH:
                return use_l("grounded concise name search answer")
            return use_d("name search answer not grounded or too long")
        if grounded or len(llm.text) >= GENERAL_LENGTH_FACTOR * len(d_text):
            return use_l("grounded" if grounded else "substantially richer answer")
        return use_d("model answer not grounded and not richer")

    if llm is not None and is_name_search and 0 < len(llm.text) < NAME_SEARCH_MAX_LLM_LENGTH:
        return use_l("short name search answer")

    return use_d("no usable model answer")


def calculate_confidence(resident_count: int, quality: Optional[QualityLevel]) -> float:
    confidence = BASE_CONFIDENCE
    if resident_count > 0:
        confidence += RESIDENT_BONUS
    if quality is not None:
        confidence += QUALITY_BONUS.get(quality, 0.0)
    return round(min(confidence, MAX_CONFIDENCE), 2)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class PipelineResult:
    query: str
    success: bool
    response: str
    analysis: Optional[QueryAnalysisResult] = None
    residents: List[FilteredResident] = field(default_factory=list)
    report: Optional[Dict[str, Any]] = None
    insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    confidence: float = 0.0
    statistics: Optional[StatisticsSnapshot] = None
    agent: Optional[str] = None
    source: Optional[CandidateSource] = None
    llm_used: bool = False
    quality: Optional[QualityLevel] = None
    processing_time_ms: int = 0
    timestamp: str = ""
    state_trail: List[PipelineState] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.analysis is not None and self.analysis.blocked

    def to_dict(self) -> Dict[str, Any]:
        analysis = self.analysis
        return {
            "query": self.query,
            "success": self.success,
            "blocked": self.blocked,
            "intent": analysis.intent.value if analysis else None,
            "queryType": analysis.query_type.value if analysis else None,
            "dataNeeds": list(analysis.data_needs) if analysis else [],
            "response": self.response,
            "residents": [r.to_dict() for r in self.residents],
            "report": self.report,
            "insights": list(self.insights),
            "recommendations": list(self.recommendations),
            "confidence": self.confidence,
            "statistics": self.statistics.to_dict() if self.statistics else None,
            "provenance": {
                "agent": self.agent,
                "source": self.source.value if self.source else None,
                "llmUsed": self.llm_used,
                "quality": self.quality.value if self.quality else None,
                "pipelineVersion": PIPELINE_VERSION,
                "vocabularyVersion": VOCABULARY_VERSION,
            },
            "processingTimeMs": self.processing_time_ms,
            "timestamp": self.timestamp,
            "stateTrail": [s.value for s in self.state_trail],
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class ResponseOrchestrator:
    """
    Runs one query through classification, context build, routing,
    optional enhancement and arbitration.

    Holds no per-request state; one instance may serve many queries.
    """

    def __init__(
        self,
        record_source: RecordSource,
        provider: Optional[LLMProvider] = None,
        analyzer: Optional[QueryAnalyzer] = None,
        engine: Optional[AnalysisEngine] = None,
        filter_service: Optional[ResidentFilterService] = None,
        agents: Optional[Mapping[Intent, Agent]] = None,
    ):
        self.record_source = record_source
        self.provider = provider
        self.analyzer = analyzer or QueryAnalyzer(ScopeClassifier(provider))
        self.engine = engine or AnalysisEngine()
        self.filter_service = filter_service or ResidentFilterService()
        self.agents = dict(agents or DEFAULT_AGENTS)
        self.enhancement_enabled = provider is not None and provider.is_configured()
        if not self.enhancement_enabled:
            logger.info("LLM enhancement disabled (no credential); deterministic answers only.")

    def process(self, query: str) -> PipelineResult:
        started = time.perf_counter()
        trail = [PipelineState.received]
        query = (query or "").strip()
        if len(query) > MAX_QUERY_LENGTH:
            logger.warning("Query truncated from %d to %d characters", len(query), MAX_QUERY_LENGTH)
            query = query[:MAX_QUERY_LENGTH]

        analysis = self.analyzer.analyze(query)
        trail.append(PipelineState.classified)
        logger.info(
            "Query classified: intent=%s type=%s needs=%s blocked=%s",
            analysis.intent.value, analysis.query_type.value, list(analysis.data_needs), analysis.blocked,
        )

        if analysis.blocked:
            trail.extend([PipelineState.blocked, PipelineState.returned])
            return self._finish(
                PipelineResult(query=query, success=True, response=BLOCKED_MESSAGE, analysis=analysis),
                started, trail,
            )

        try:
            context = self._build_context(query, analysis)
            trail.append(PipelineState.context_built)
            deterministic = self._route(query, analysis, context)
            trail.append(PipelineState.routed)
        except RoutingError as exc:
            logger.exception("Pipeline failed for query %r", query)
            return self._finish(
                PipelineResult(
                    query=query,
                    success=False,
                    response=f"Error processing query: {exc}. Please try again.",
                    analysis=analysis,
                    error=str(exc),
                ),
                started, trail,
            )

        outcome = self._enhance(query, analysis, context, deterministic)
        trail.append(outcome.state)

        decision = arbitrate(deterministic, outcome.candidate, analysis.is_name_search)
        trail.append(PipelineState.arbitrated)
        logger.info("Arbitration: source=%s reason=%s", decision.source.value, decision.reason)

        quality = outcome.candidate.quality_level if outcome.candidate else None
        name_search = analysis.is_name_search
        result = PipelineResult(
            query=query,
            success=True,
            response=decision.text,
            analysis=analysis,
            residents=list(deterministic.residents),
            report=deterministic.report,
            insights=[] if name_search else list(deterministic.insights),
            recommendations=[] if name_search else list(deterministic.recommendations),
            confidence=calculate_confidence(len(deterministic.residents), quality),
            statistics=context.snapshot,
            agent=deterministic.agent,
            source=decision.source,
            llm_used=decision.llm_used,
            quality=quality,
        )
        trail.append(PipelineState.returned)
        return self._finish(result, started, trail)

    # -- stages -------------------------------------------------------------

    def _build_context(self, query: str, analysis: QueryAnalysisResult) -> AnalyticalContext:
        try:
            records = self.record_source.get_all_records()
            return build_context(query, analysis, records, self.engine, self.filter_service)
        except Exception as exc:
            raise RoutingError(f"context build failed: {exc}") from exc

    def _route(self, query: str, analysis: QueryAnalysisResult, context: AnalyticalContext) -> AgentResult:
        agent = self.agents.get(analysis.intent)
        if agent is None:
            raise RoutingError(f"no agent for intent {analysis.intent.value}")
        try:
            return agent.handle(query, analysis, context)
        except Exception as exc:
            raise RoutingError(f"{agent.name} failed: {exc}") from exc

    def _enhance(
        self,
        query: str,
        analysis: QueryAnalysisResult,
        context: AnalyticalContext,
        deterministic: AgentResult,
    ) -> EnhancementOutcome:
        if analysis.intent == Intent.ticket or not self.enhancement_enabled:
            return EnhancementOutcome(state=PipelineState.enhancement_skipped)

        prompt = build_enhancement_user_prompt(
            query, analysis, context.snapshot, deterministic.residents, context.primary_report
        )
        try:
            text = self.provider.complete(
                ENHANCEMENT_SYSTEM_PROMPT,
                prompt,
                max_tokens=LLM_MAX_TOKENS,
                timeout=LLM_TIMEOUT_SECONDS,
            )
        except LLMAuthError as exc:
            logger.error("LLM enhancement authentication failed (%s): %s", exc.category, exc)
            return EnhancementOutcome(state=PipelineState.enhancement_failed, failure_category=exc.category)
        except LLMTimeoutError as exc:
            logger.warning("LLM enhancement timed out after %ss", LLM_TIMEOUT_SECONDS)
            return EnhancementOutcome(state=PipelineState.enhancement_failed, failure_category=exc.category)
        except LLMError as exc:
            logger.warning("LLM enhancement failed (%s): %s", exc.category, exc)
            return EnhancementOutcome(state=PipelineState.enhancement_failed, failure_category=exc.category)
        except Exception:
            logger.exception("LLM enhancement failed (unknown)")
            return EnhancementOutcome(state=PipelineState.enhancement_failed, failure_category="unknown")

        quality = assess_quality(text, context.snapshot, deterministic.residents)
        candidate = ResponseCandidate(
            text=text.strip(),
            source=CandidateSource.llm,
            quality_level=quality,
            grounded_in_real_data=is_grounded(text, deterministic.residents),
        )
        logger.debug("LLM candidate: quality=%s length=%d", quality.value, len(candidate.text))
        return EnhancementOutcome(state=PipelineState.enhanced, candidate=candidate)

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _finish(result: PipelineResult, started: float, trail: Sequence[PipelineState]) -> PipelineResult:
        result.processing_time_ms = int((time.perf_counter() - started) * 1000)
        result.timestamp = datetime.now(timezone.utc).isoformat()
        result.state_trail = list(trail)
        return result

    def statistics(self) -> StatisticsSnapshot:
        return build_statistics_snapshot(self.record_source.get_all_records())
