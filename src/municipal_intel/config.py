from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------

# Root of the project (repo root)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Data directories
DATA_DIR = Path(os.getenv("MUNICIPAL_DATA_DIR", str(PROJECT_ROOT / "data"))).expanduser()
RECORDS_FILE = Path(os.getenv("MUNICIPAL_RECORDS_FILE", str(DATA_DIR / "data.json"))).expanduser()

# ---------------------------------------------------------------------------
# App identity
# ---------------------------------------------------------------------------

APP_NAME = "Municipal Survey Intelligence"
APP_VERSION = "0.1.0"

# Tag attached to every pipeline result (provenance.pipelineVersion)
PIPELINE_VERSION = "3.1-arbitrated"

# ---------------------------------------------------------------------------
# Record source
#
# The record store is read-only from this package's point of view. Records are
# loaded either from a local JSON export (RECORDS_FILE) or, when set, from a
# remote JSON endpoint that returns the same list of citizen objects.
# ---------------------------------------------------------------------------

MUNICIPAL_RECORDS_URL = os.getenv("MUNICIPAL_RECORDS_URL", "").strip()
RECORDS_TIMEOUT_SECONDS = int(os.getenv("MUNICIPAL_RECORDS_TIMEOUT", "30"))

# ---------------------------------------------------------------------------
# External LLM provider (Anthropic Messages API)
#
# The credential is read once when a provider is built and gates every
# enhancement / classification attempt for the lifetime of that provider.
# ---------------------------------------------------------------------------

LLM_ENDPOINT = os.getenv("LLM_ENDPOINT", "https://api.anthropic.com/v1/messages").strip()
LLM_API_VERSION = os.getenv("LLM_API_VERSION", "2023-06-01").strip()
LLM_MODEL = os.getenv("LLM_MODEL", "claude-3-5-sonnet-20241022").strip()
SCOPE_CLASSIFIER_MODEL = os.getenv("SCOPE_CLASSIFIER_MODEL", LLM_MODEL).strip()

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "10"))
SCOPE_CLASSIFIER_TIMEOUT_SECONDS = float(os.getenv("SCOPE_CLASSIFIER_TIMEOUT_SECONDS", "8"))
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "4096"))
SCOPE_CLASSIFIER_MAX_TOKENS = 300

# ---------------------------------------------------------------------------
# Pipeline limits
# ---------------------------------------------------------------------------

# Queries are validated upstream; this is only a last-resort cap.
MAX_QUERY_LENGTH = 500

LOG_LEVEL = os.getenv("MUNICIPAL_LOG_LEVEL", "INFO").strip().upper()


def load_llm_api_key() -> Optional[str]:
    """
    Return the LLM credential, or None when it is missing or blank.

    CLAUDE_API_KEY is the historical name; ANTHROPIC_API_KEY is accepted too.
    """
    for env_key in ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY"):
        value = (os.getenv(env_key) or "").strip()
        if value:
            return value
    return None
