from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from municipal_intel.core.analysis_engine import percent, round_half_up
from municipal_intel.core.models import CitizenRecord, FilteredResident
from municipal_intel.core.vocabulary import SATISFACTION_WEIGHTS


@dataclass
class StatisticsSnapshot:
    """
    Canonical numbers about the whole record collection.

    These are the facts a generated answer is allowed to quote. They are
    attached to every pipeline result and handed to the LLM as its data
    section, so any number in an enhanced answer can be traced back here.
    """
    total_contacts: int
    sent: int
    clicked: int
    answered: int
    response_rate: float
    satisfaction_score: float
    neighborhood_count: int
    response_rate_by_neighborhood: Dict[str, float] = field(default_factory=dict)
    equity_gap: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "totalContacts": self.total_contacts,
            "responseRate": self.response_rate,
            "satisfactionScore": self.satisfaction_score,
        }

    def fact_lines(self) -> List[str]:
        lines = [
            f"Total de contatos: {self.total_contacts}",
            f"Mensagens enviadas: {self.sent}",
            f"Cliques no link: {self.clicked}",
            f"Pesquisas respondidas: {self.answered}",
            f"Taxa de resposta: {self.response_rate}%",
            f"Satisfação média: {self.satisfaction_score}/5",
            f"Bairros: {self.neighborhood_count}",
        ]
        if self.equity_gap is not None:
            lines.append(f"Diferença de taxa de resposta entre bairros: {self.equity_gap} p.p.")
        return lines


def build_statistics_snapshot(records: Iterable[CitizenRecord]) -> StatisticsSnapshot:
    records = list(records)
    total = len(records)
    sent = sum(1 for r in records if r.sent)
    clicked = sum(1 for r in records if r.clicked)
    answered = sum(1 for r in records if r.answered)

    scores = [
        SATISFACTION_WEIGHTS[r.survey.satisfaction]
        for r in records
        if r.survey and r.survey.satisfaction in SATISFACTION_WEIGHTS
    ]
    score = round_half_up(sum(scores) / len(scores), 2) if scores else 0.0

    per_hood: Dict[str, List[int]] = {}
    for r in records:
        bucket = per_hood.setdefault(r.neighborhood or "Desconhecido", [0, 0])
        bucket[0] += 1
        bucket[1] += 1 if r.answered else 0
    rates = {name: percent(ans, tot) for name, (tot, ans) in per_hood.items()}
    gap = round_half_up(max(rates.values()) - min(rates.values()), 1) if len(rates) > 1 else None

    return StatisticsSnapshot(
        total_contacts=total,
        sent=sent,
        clicked=clicked,
        answered=answered,
        response_rate=percent(answered, total),
        satisfaction_score=score,
        neighborhood_count=len(per_hood),
        response_rate_by_neighborhood=rates,
        equity_gap=gap,
    )


def grounded_names(text: str, residents: Sequence[FilteredResident]) -> List[str]:
    """
    Names of listed residents that appear verbatim in `text`.
    """
    if not text:
        return []
    return [r.name for r in residents if r.name and r.name in text]


def is_grounded(text: str, residents: Sequence[FilteredResident]) -> bool:
    return bool(grounded_names(text, residents))
