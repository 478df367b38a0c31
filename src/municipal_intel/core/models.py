from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from municipal_intel.core.text import normalize


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Intent(str, Enum):
    knowledge = "knowledge"
    notification = "notification"
    ticket = "ticket"
    out_of_scope = "out_of_scope"


class QueryType(str, Enum):
    listing = "listing"
    analysis = "analysis"
    comparison = "comparison"
    action = "action"
    abandonment = "abandonment"
    blocked = "blocked"


class Urgency(str, Enum):
    normal = "normal"
    high = "high"


class CanonicalIntent(str, Enum):
    satisfaction = "satisfaction"
    engagement = "engagement"
    geographic = "geographic"
    operational = "operational"
    benchmarking = "benchmarking"
    survey = "survey"
    out_of_scope = "out_of_scope"


class FilterType(str, Enum):
    name_search = "name_search"
    dissatisfied = "dissatisfied"
    satisfied = "satisfied"
    participation_interested = "participation_interested"
    participation_not_interested = "participation_not_interested"
    all_with_survey = "all_with_survey"


class QualityTier(str, Enum):
    insufficient_data = "insufficient_data"
    limited = "limited"
    good = "good"
    excellent = "excellent"


class QualityLevel(str, Enum):
    excellent = "excellent"
    good = "good"
    fair = "fair"
    poor = "poor"


class CandidateSource(str, Enum):
    deterministic = "deterministic"
    llm = "llm"


# Data-need tags (not an Enum: tags are open-ended strings passed between layers)
NEED_NAME_SEARCH = "name_search"
NEED_TOTAL_COUNT = "total_count"
NEED_DISSATISFIED = "dissatisfied"
NEED_SATISFIED = "satisfied"
NEED_PARTICIPATION = "participation"
NEED_PARTICIPATION_INTERESTED = "participation_interested"
NEED_PARTICIPATION_NOT_INTERESTED = "participation_not_interested"
NEED_SATISFACTION_ANALYSIS = "satisfaction_analysis"
NEED_GEOGRAPHIC = "geographic"
NEED_AGE_ANALYSIS = "age_analysis"
NEED_ISSUES_ANALYSIS = "issues_analysis"
NEED_ENGAGEMENT_ANALYSIS = "engagement_analysis"
NEED_PARTICIPATION_ANALYSIS = "participation_analysis"
NEED_ABANDONMENT = "abandonment"


# ---------------------------------------------------------------------------
# Citizen records (read-only input)
# ---------------------------------------------------------------------------

def _parse_age(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        age = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return age if age >= 0 else None


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


@dataclass(frozen=True)
class SurveyResponse:
    issue: Optional[str] = None
    other_issue_detail: Optional[str] = None
    satisfaction: Optional[str] = None
    participate: Optional[str] = None
    answered_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SurveyResponse":
        return cls(
            issue=_clean_str(data.get("issue")),
            other_issue_detail=_clean_str(data.get("otherIssueDetail")),
            satisfaction=_clean_str(data.get("satisfaction")),
            participate=_clean_str(data.get("participate")),
            answered_at=_clean_str(data.get("answeredAt")),
        )

    def normalized_participation(self) -> Optional[str]:
        """Return 'yes', 'no' or None for the free-form participate answer."""
        if not self.participate:
            return None
        value = normalize(self.participate)
        if value in ("sim", "yes", "s", "y"):
            return "yes"
        if value in ("nao", "no", "n"):
            return "no"
        return None


@dataclass(frozen=True)
class CitizenRecord:
    id: str
    name: str
    neighborhood: str = ""
    age: Optional[int] = None
    whatsapp: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    whatsapp_sent_at: Optional[str] = None
    clicked_at: Optional[str] = None
    survey: Optional[SurveyResponse] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CitizenRecord":
        survey_raw = data.get("survey")
        survey = SurveyResponse.from_dict(survey_raw) if isinstance(survey_raw, dict) else None
        return cls(
            id=str(data.get("id", "")).strip(),
            name=str(data.get("name") or "").strip(),
            neighborhood=str(data.get("neighborhood") or "").strip(),
            age=_parse_age(data.get("age")),
            whatsapp=_clean_str(data.get("whatsapp")),
            created_at=_clean_str(data.get("createdAt")),
            updated_at=_clean_str(data.get("updatedAt")),
            whatsapp_sent_at=_clean_str(data.get("whatsappSentAt")),
            clicked_at=_clean_str(data.get("clickedAt")),
            survey=survey,
        )

    @property
    def answered(self) -> bool:
        return self.survey is not None

    @property
    def sent(self) -> bool:
        return self.whatsapp_sent_at is not None

    @property
    def clicked(self) -> bool:
        return self.clicked_at is not None


# ---------------------------------------------------------------------------
# Query understanding
# ---------------------------------------------------------------------------

@dataclass
class ScopeVerdict:
    in_scope: bool
    confidence: float
    categories: Tuple[str, ...] = ()
    canonical_intent: Optional[CanonicalIntent] = None
    reason: str = ""

    def __post_init__(self) -> None:
        self.confidence = max(0.0, min(1.0, float(self.confidence)))
        self.categories = tuple(self.categories)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inScope": self.in_scope,
            "confidence": self.confidence,
            "categories": list(self.categories),
            "canonicalIntent": self.canonical_intent.value if self.canonical_intent else None,
            "reason": self.reason,
        }


@dataclass
class QueryAnalysisResult:
    """
    Outcome of QueryAnalyzer.analyze().

    Invariant: blocked <=> intent == out_of_scope <=> scope.in_scope is False.
    """
    scope: ScopeVerdict
    intent: Intent
    query_type: QueryType
    data_needs: Tuple[str, ...] = ()
    urgency: Urgency = Urgency.normal
    blocked: bool = False

    def __post_init__(self) -> None:
        # Preserve insertion order, drop duplicates
        self.data_needs = tuple(dict.fromkeys(self.data_needs))
        out_of_scope = self.intent == Intent.out_of_scope
        if not (self.blocked == out_of_scope == (not self.scope.in_scope)):
            raise ValueError(
                "Inconsistent analysis: blocked=%s intent=%s in_scope=%s"
                % (self.blocked, self.intent.value, self.scope.in_scope)
            )

    @property
    def is_name_search(self) -> bool:
        return NEED_NAME_SEARCH in self.data_needs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope.to_dict(),
            "intent": self.intent.value,
            "queryType": self.query_type.value,
            "dataNeeds": list(self.data_needs),
            "urgency": self.urgency.value,
            "blocked": self.blocked,
        }


# ---------------------------------------------------------------------------
# Resident filtering
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FilterCriteria:
    type: FilterType
    normalized_query: str
    raw_query: str


@dataclass(frozen=True)
class FilteredResident:
    id: str
    name: str
    neighborhood: str
    age: Optional[int] = None
    whatsapp: Optional[str] = None
    satisfaction: Optional[str] = None
    issue: Optional[str] = None
    participate: Optional[str] = None
    answered_at: Optional[str] = None
    whatsapp_sent_at: Optional[str] = None
    clicked_at: Optional[str] = None
    priority: Optional[str] = None
    responded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "age": self.age,
            "neighborhood": self.neighborhood,
            "whatsapp": self.whatsapp,
            "satisfaction": self.satisfaction,
            "issue": self.issue,
            "participate": self.participate,
            "answeredAt": self.answered_at,
            "whatsappSentAt": self.whatsapp_sent_at,
            "clickedAt": self.clicked_at,
            "priority": self.priority,
            "responded": self.responded,
        }


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BreakdownItem:
    label: str
    count: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "count": self.count, "percentage": self.percentage}


@dataclass
class AnalysisReport:
    domain: str
    total: int
    metrics: Dict[str, Any] = field(default_factory=dict)
    breakdown: List[BreakdownItem] = field(default_factory=list)
    insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    quality_tier: QualityTier = QualityTier.good
    computation_version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "total": self.total,
            "metrics": dict(self.metrics),
            "breakdown": [b.to_dict() for b in self.breakdown],
            "insights": list(self.insights),
            "recommendations": list(self.recommendations),
            "qualityTier": self.quality_tier.value,
            "computationVersion": self.computation_version,
        }


# ---------------------------------------------------------------------------
# Response candidates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResponseCandidate:
    text: str
    source: CandidateSource
    quality_level: Optional[QualityLevel] = None
    grounded_in_real_data: bool = False
