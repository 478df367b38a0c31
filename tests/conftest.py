from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Make src/ importable without installing the package
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from municipal_intel.core.data_loader import RecordSource  # noqa: E402
from municipal_intel.core.models import CitizenRecord  # noqa: E402
from municipal_intel.llm.client import LLMMalformedResponse, LLMProvider  # noqa: E402
from municipal_intel.llm.prompts import SCOPE_CLASSIFIER_SYSTEM_PROMPT  # noqa: E402

SENT = "2024-01-10T10:00:00Z"
CLICKED = "2024-01-10T12:00:00Z"

RAW_RECORDS = [
    {
        "id": "1", "name": "Maria Silva", "neighborhood": "Centro", "age": 34,
        "whatsapp": "+55 11 99999-0001", "whatsappSentAt": SENT, "clickedAt": CLICKED,
        "survey": {"satisfaction": "Muito insatisfeito", "issue": "Segurança", "participate": "Sim"},
    },
    {
        "id": "2", "name": "João Souza", "neighborhood": "Centro", "age": "45",
        "whatsapp": "5511999990002", "whatsappSentAt": SENT, "clickedAt": CLICKED,
        "survey": {"satisfaction": "Satisfeito", "issue": "Saúde", "participate": "Não"},
    },
    {
        "id": "3", "name": "Ana Costa", "neighborhood": "Jardim", "age": 22,
        "whatsapp": "5511999990003", "whatsappSentAt": SENT, "clickedAt": CLICKED,
        "survey": {"satisfaction": "Muito satisfeito", "issue": "Transporte", "participate": "sim"},
    },
    {
        "id": "4", "name": "Pedro Lima", "neighborhood": "Jardim", "age": 67,
        "whatsapp": "(55) 11 99999 0001", "whatsappSentAt": SENT, "clickedAt": CLICKED,
        "survey": {"satisfaction": "Insatisfeito", "issue": "Segurança", "participate": "nao"},
    },
    {
        "id": "5", "name": "Carla Mendes", "neighborhood": "Vila Nova", "age": 29,
        "whatsapp": "5511999990005", "whatsappSentAt": SENT, "clickedAt": CLICKED,
    },
    {
        "id": "6", "name": "Lucas Rocha", "neighborhood": "Vila Nova", "age": None,
        "whatsapp": "5511999990006", "whatsappSentAt": SENT,
    },
    {
        "id": "7", "name": "Beatriz Alves", "neighborhood": "Centro", "age": 51,
    },
]


@pytest.fixture
def raw_records() -> List[dict]:
    return [dict(r) for r in RAW_RECORDS]


@pytest.fixture
def records(raw_records) -> List[CitizenRecord]:
    return [CitizenRecord.from_dict(r) for r in raw_records]


@pytest.fixture
def record_source(records) -> RecordSource:
    return RecordSource(records)


class StubProvider(LLMProvider):
    """Canned replies: `scope` for the classifier prompt, `answer` for everything else."""

    name = "stub"

    def __init__(self, scope=None, answer=None, configured: bool = True):
        self.scope = scope
        self.answer = answer
        self.configured = configured
        self.calls: List[str] = []

    def is_configured(self) -> bool:
        return self.configured

    def complete(self, system_prompt, user_prompt, *, max_tokens=0, temperature=0.3, timeout=0, model: Optional[str] = None):
        is_scope = system_prompt == SCOPE_CLASSIFIER_SYSTEM_PROMPT
        self.calls.append("scope" if is_scope else "enhance")
        reply = self.scope if is_scope else self.answer
        if isinstance(reply, Exception):
            raise reply
        if reply is None:
            raise LLMMalformedResponse("no canned reply")
        return reply

    @staticmethod
    def scope_json(in_scope: bool = True, confidence: float = 0.9, canonical: Optional[str] = None) -> str:
        payload = {"inScope": in_scope, "confidence": confidence, "categories": [], "reason": "stub"}
        if canonical:
            payload["canonical_intent"] = canonical
        return json.dumps(payload)


@pytest.fixture
def stub_provider():
    return StubProvider
