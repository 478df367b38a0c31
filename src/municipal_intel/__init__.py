"""
Municipal survey intelligence: answers free-text questions from city managers
about citizen survey data.

Subpackages:
- core: record loading, resident filtering, statistics and analysis reports
- llm: external text-generation provider, prompts and answer quality
- conversation: scope classification, query analysis, agents and the
  end-to-end orchestrator
"""
from __future__ import annotations

from municipal_intel.config import APP_VERSION as __version__

__all__ = ["__version__"]
