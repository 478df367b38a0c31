from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from municipal_intel.config import (
    SCOPE_CLASSIFIER_MAX_TOKENS,
    SCOPE_CLASSIFIER_MODEL,
    SCOPE_CLASSIFIER_TIMEOUT_SECONDS,
)
from municipal_intel.core.models import CanonicalIntent, ScopeVerdict
from municipal_intel.core.text import has_any, tokenize
from municipal_intel.core.vocabulary import CONFIDENCE_SAFEGUARD_THRESHOLD, DOMAIN_ANCHOR_TERMS
from municipal_intel.llm.client import LLMAuthError, LLMError, LLMProvider
from municipal_intel.llm.prompts import SCOPE_CLASSIFIER_SYSTEM_PROMPT, build_scope_user_prompt

logger = logging.getLogger(__name__)


def has_domain_anchor(query: str) -> bool:
    return has_any(tokenize(query), DOMAIN_ANCHOR_TERMS)


def apply_confidence_safeguard(verdict: ScopeVerdict, query: str) -> ScopeVerdict:
    """
    An uncertain in-scope verdict for a query with no municipal anchor word
    becomes out of scope.
    """
    if verdict.in_scope and verdict.confidence < CONFIDENCE_SAFEGUARD_THRESHOLD and not has_domain_anchor(query):
        return ScopeVerdict(
            in_scope=False,
            confidence=verdict.confidence,
            categories=(),
            canonical_intent=CanonicalIntent.out_of_scope,
            reason="Low confidence and no municipal domain tokens detected",
        )
    return verdict


def safe_parse_json(text: str) -> Optional[Dict[str, Any]]:
    """Parse the whole text, else the span from the first '{' to the last '}'."""
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except ValueError:
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            return None
        try:
            parsed = json.loads(text[start:end + 1])
        except ValueError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _parse_canonical_intent(value: Any) -> Optional[CanonicalIntent]:
    if not isinstance(value, str):
        return None
    try:
        return CanonicalIntent(value.strip().lower())
    except ValueError:
        logger.debug("Ignoring unknown canonical intent %r", value)
        return None


def verdict_from_payload(parsed: Dict[str, Any]) -> ScopeVerdict:
    status = str(parsed.get("status") or "").lower().replace("-", "_")
    in_scope = parsed.get("inScope") is True or parsed.get("in_scope") is True or status in ("in_scope", "inscope")

    confidence = parsed.get("confidence", parsed.get("score"))
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0.5

    categories = parsed.get("categories")
    categories = tuple(str(c) for c in categories) if isinstance(categories, list) else ()

    reason = parsed.get("reason") or parsed.get("explanation") or "No reason provided"
    canonical = _parse_canonical_intent(parsed.get("canonical_intent", parsed.get("canonicalIntent")))

    return ScopeVerdict(
        in_scope=in_scope,
        confidence=float(confidence),
        categories=categories,
        canonical_intent=canonical,
        reason=str(reason),
    )


class ScopeClassifier:
    """
    In-/out-of-domain verdict from the external model.

    Every failure mode degrades to an optimistic in-scope verdict so the
    deterministic rules downstream still get a chance; the low-confidence
    safeguard is the only path that turns a model answer into a block.
    """

    def __init__(self, provider: Optional[LLMProvider] = None, model: str = SCOPE_CLASSIFIER_MODEL):
        self.provider = provider
        self.model = model
        self.enabled = provider is not None and provider.is_configured()
        if not self.enabled:
            logger.warning("Scope classifier has no LLM credential; using optimistic fallback verdicts.")

    def classify(self, query: str) -> ScopeVerdict:
        if not query or not query.strip():
            return ScopeVerdict(in_scope=False, confidence=0.0, reason="empty query")

        if not self.enabled:
            return ScopeVerdict(in_scope=True, confidence=0.5, categories=("unknown",), reason="classifier disabled")

        try:
            raw = self.provider.complete(
                SCOPE_CLASSIFIER_SYSTEM_PROMPT,
                build_scope_user_prompt(query),
                max_tokens=SCOPE_CLASSIFIER_MAX_TOKENS,
                temperature=0.0,
                timeout=SCOPE_CLASSIFIER_TIMEOUT_SECONDS,
                model=self.model,
            )
        except LLMAuthError as exc:
            logger.error("Scope classifier authentication failed (%s): %s", exc.category, exc)
            return self._error_fallback()
        except LLMError as exc:
            logger.warning("Scope classifier call failed (%s), using fallback: %s", exc.category, exc)
            return self._error_fallback()
        except Exception:
            logger.exception("Scope classifier call failed (unknown), using fallback")
            return self._error_fallback()

        parsed = safe_parse_json(raw)
        if parsed is None:
            logger.warning("Scope classifier returned unparsable output: %.120s", raw)
            return ScopeVerdict(in_scope=True, confidence=0.4, categories=("unparsed",), reason="Could not parse classifier JSON")

        verdict = verdict_from_payload(parsed)
        return apply_confidence_safeguard(verdict, query)

    @staticmethod
    def _error_fallback() -> ScopeVerdict:
        return ScopeVerdict(in_scope=True, confidence=0.5, categories=("error-fallback",), reason="Classifier call failed")
