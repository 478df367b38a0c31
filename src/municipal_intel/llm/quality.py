"""
Coarse quality level for a model-generated answer.

The score is a handful of cheap, observable features; it only decides whether
arbitration may consider the text at all, grounding is checked separately.
"""
from __future__ import annotations

import re
from typing import Optional, Sequence

from municipal_intel.core.audit import StatisticsSnapshot, grounded_names
from municipal_intel.core.models import FilteredResident, QualityLevel
from municipal_intel.core.text import has_any, tokenize

MIN_USEFUL_LENGTH = 80

_REFUSAL_TERMS = (
    "nao tenho acesso", "nao posso", "nao consigo", "como modelo de linguagem",
    "i cannot", "i can't", "i do not have access", "i don't have access", "as an ai",
)

_NUMBER = re.compile(r"\d+(?:[.,]\d+)?")
_STRUCTURE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+", re.MULTILINE)


def _quotes_snapshot_numbers(text: str, snapshot: Optional[StatisticsSnapshot]) -> bool:
    if snapshot is None:
        return False
    quoted = {n.replace(",", ".") for n in _NUMBER.findall(text)}
    known = {
        str(snapshot.total_contacts),
        str(snapshot.answered),
        str(snapshot.response_rate),
        str(snapshot.satisfaction_score),
    }
    return bool(quoted & known)


def assess_quality(
    text: str,
    snapshot: Optional[StatisticsSnapshot] = None,
    residents: Sequence[FilteredResident] = (),
) -> QualityLevel:
    text = (text or "").strip()
    if not text:
        return QualityLevel.poor

    if has_any(tokenize(text), _REFUSAL_TERMS):
        return QualityLevel.poor

    score = 0
    if len(text) >= MIN_USEFUL_LENGTH:
        score += 1
    if len(text) >= 300:
        score += 1
    if _quotes_snapshot_numbers(text, snapshot):
        score += 1
    if residents and grounded_names(text, residents):
        score += 1
    if _STRUCTURE.search(text):
        score += 1

    if score >= 4:
        return QualityLevel.excellent
    if score >= 2:
        return QualityLevel.good
    if score == 1:
        return QualityLevel.fair
    return QualityLevel.poor
