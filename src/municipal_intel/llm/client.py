from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from municipal_intel.config import (
    LLM_API_VERSION,
    LLM_ENDPOINT,
    LLM_MAX_TOKENS,
    LLM_MODEL,
    LLM_TIMEOUT_SECONDS,
    load_llm_api_key,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LLMError(Exception):
    """Base class for failures talking to the external language model."""

    category = "unknown"


class LLMAuthError(LLMError):
    """Credential rejected (HTTP 401/403)."""

    category = "auth"


class LLMTimeoutError(LLMError):
    """The provider did not answer within the configured timeout."""

    category = "timeout"


class LLMTransientError(LLMError):
    """Network failure, rate limiting or a 5xx from the provider."""

    category = "transient"


class LLMMalformedResponse(LLMError):
    """The provider answered, but not with usable text."""

    category = "malformed"


class LLMNotConfiguredError(LLMError):
    """No credential was found when the provider was built."""

    category = "disabled"


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------

class LLMProvider(ABC):
    """
    Narrow interface over an external text generator.

    complete() returns free text or raises an LLMError subclass. Callers treat
    the text as untrusted and must ground it before preferring it.
    """

    name: str = "provider"

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int = LLM_MAX_TOKENS,
        temperature: float = 0.3,
        timeout: float = LLM_TIMEOUT_SECONDS,
        model: Optional[str] = None,
    ) -> str:
        ...


def _build_retry_session() -> requests.Session:
    """
    Session for the messages endpoint: one retry on rate limiting / 5xx only.
    Connection errors and timeouts are surfaced immediately so the caller's
    timeout stays the real bound.
    """
    session = requests.Session()
    retry = Retry(
        total=1,
        connect=0,
        read=0,
        status=1,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"POST"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class AnthropicProvider(LLMProvider):
    """
    Messages API over plain HTTP.

    The credential is resolved once, in __init__; is_configured() never
    re-reads the environment.
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = LLM_MODEL,
        endpoint: str = LLM_ENDPOINT,
        api_version: str = LLM_API_VERSION,
        session: Optional[requests.Session] = None,
    ):
        self._api_key = (api_key or "").strip() or load_llm_api_key()
        self.model = model
        self.endpoint = endpoint
        self.api_version = api_version
        self._session = session

        if self._api_key:
            logger.info("LLM provider %s configured (model=%s)", self.name, self.model)
        else:
            logger.info("LLM provider %s disabled: no credential found", self.name)

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = _build_retry_session()
        return self._session

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int = LLM_MAX_TOKENS,
        temperature: float = 0.3,
        timeout: float = LLM_TIMEOUT_SECONDS,
        model: Optional[str] = None,
    ) -> str:
        if not self._api_key:
            raise LLMNotConfiguredError("No LLM credential configured")

        payload: Dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": int(max_tokens),
            "temperature": float(temperature),
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

        try:
            resp = self._get_session().post(self.endpoint, json=payload, headers=headers, timeout=timeout)
        except requests.Timeout as exc:
            raise LLMTimeoutError(f"LLM request timed out after {timeout}s") from exc
        except requests.RequestException as exc:
            raise LLMTransientError(f"HTTP error while calling LLM: {exc}") from exc

        if resp.status_code in (401, 403):
            raise LLMAuthError(f"LLM credential rejected (status={resp.status_code})")
        if resp.status_code == 429 or resp.status_code >= 500:
            raise LLMTransientError(f"LLM provider unavailable (status={resp.status_code})")
        if resp.status_code != 200:
            preview = (resp.text or "")[:200]
            raise LLMMalformedResponse(f"LLM provider returned status={resp.status_code}. Preview: {preview}")

        try:
            data = resp.json()
        except ValueError as exc:
            preview = (resp.text or "")[:200]
            raise LLMMalformedResponse(f"Non-JSON response from LLM provider. Preview: {preview}") from exc

        text = extract_message_text(data)
        if not text:
            raise LLMMalformedResponse("LLM response contained no text content")
        return text


def extract_message_text(data: Any) -> str:
    """Concatenate the text blocks of a Messages API response body."""
    if not isinstance(data, dict):
        return ""
    blocks = data.get("content")
    if not isinstance(blocks, list):
        return ""
    parts = [
        str(b.get("text", ""))
        for b in blocks
        if isinstance(b, dict) and b.get("type", "text") == "text"
    ]
    return "".join(parts).strip()
