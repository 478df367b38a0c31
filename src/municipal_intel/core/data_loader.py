from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from municipal_intel.config import (
    MUNICIPAL_RECORDS_URL,
    RECORDS_FILE,
    RECORDS_TIMEOUT_SECONDS,
)
from municipal_intel.core.models import CitizenRecord

logger = logging.getLogger(__name__)


class DataLoaderError(Exception):
    """Raised when the record store cannot be read or returns unexpected shapes."""


def _build_retry_session() -> requests.Session:
    """
    Build a requests Session with conservative retries for GET calls.
    """
    session = requests.Session()

    retry = Retry(
        total=5,
        connect=5,
        read=5,
        status=5,
        backoff_factor=0.6,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    return session


_SESSION: Optional[requests.Session] = None


def _get_session() -> requests.Session:
    global _SESSION
    if _SESSION is None:
        _SESSION = _build_retry_session()
    return _SESSION


def _parse_records(payload: Any, origin: str) -> List[CitizenRecord]:
    # Accept either a bare list or {"contacts": [...]} / {"records": [...]}
    if isinstance(payload, dict):
        payload = payload.get("contacts", payload.get("records"))
    if not isinstance(payload, list):
        raise DataLoaderError(f"Record payload from {origin} is not a list (got {type(payload).__name__})")

    records: List[CitizenRecord] = []
    skipped = 0
    for item in payload:
        if not isinstance(item, dict):
            skipped += 1
            continue
        records.append(CitizenRecord.from_dict(item))

    if skipped:
        logger.warning("Skipped %d non-object entries while loading records from %s", skipped, origin)
    logger.info("Loaded %d citizen records from %s", len(records), origin)
    return records


def load_records_from_file(path: Path) -> List[CitizenRecord]:
    path = Path(path)
    if not path.exists():
        raise DataLoaderError(f"Record file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except json.JSONDecodeError as exc:
        raise DataLoaderError(f"Record file {path} is not valid JSON: {exc}") from exc
    return _parse_records(payload, str(path))


def load_records_from_url(url: str, timeout_seconds: int = RECORDS_TIMEOUT_SECONDS) -> List[CitizenRecord]:
    try:
        resp = _get_session().get(url, timeout=timeout_seconds)
    except requests.RequestException as exc:
        raise DataLoaderError(f"HTTP error while fetching records: {exc}") from exc

    if resp.status_code != 200:
        preview = (resp.text or "")[:200]
        raise DataLoaderError(f"Record endpoint returned status={resp.status_code}. Preview: {preview}")

    try:
        payload = resp.json()
    except ValueError as exc:
        preview = (resp.text or "")[:200]
        raise DataLoaderError(f"Non-JSON response from record endpoint. Preview: {preview}") from exc

    return _parse_records(payload, url)


class RecordSource:
    """
    Read-only accessor over the citizen record collection.

    The collection is loaded once and never mutated; slices return new lists.
    """

    def __init__(self, records: Iterable[CitizenRecord]):
        self._records: tuple = tuple(records)

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> "RecordSource":
        return cls(load_records_from_file(path or RECORDS_FILE))

    @classmethod
    def from_url(cls, url: str) -> "RecordSource":
        return cls(load_records_from_url(url))

    @classmethod
    def from_config(cls) -> "RecordSource":
        if MUNICIPAL_RECORDS_URL:
            return cls.from_url(MUNICIPAL_RECORDS_URL)
        return cls.from_file(RECORDS_FILE)

    def get_all_records(self) -> List[CitizenRecord]:
        return list(self._records)

    def answered(self) -> List[CitizenRecord]:
        return [r for r in self._records if r.answered]

    def sent(self) -> List[CitizenRecord]:
        return [r for r in self._records if r.sent]

    def clicked(self) -> List[CitizenRecord]:
        return [r for r in self._records if r.clicked]

    def by_neighborhood(self, neighborhood: str) -> List[CitizenRecord]:
        key = (neighborhood or "").strip().casefold()
        return [r for r in self._records if r.neighborhood.casefold() == key]

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# DataFrame view used by the analysis engine
# ---------------------------------------------------------------------------

FRAME_COLUMNS = [
    "id", "name", "age", "neighborhood", "whatsapp", "created_at",
    "sent", "clicked", "answered", "satisfaction", "issue",
    "other_issue_detail", "participate", "whatsapp_sent_at",
]


def records_to_frame(records: Iterable[CitizenRecord]) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for r in records:
        s = r.survey
        rows.append(
            {
                "id": r.id,
                "name": r.name,
                "age": r.age,
                "neighborhood": r.neighborhood or "Desconhecido",
                "whatsapp": r.whatsapp,
                "created_at": r.created_at,
                "sent": r.sent,
                "clicked": r.clicked,
                "answered": r.answered,
                "satisfaction": s.satisfaction if s else None,
                "issue": s.issue if s else None,
                "other_issue_detail": s.other_issue_detail if s else None,
                "participate": s.normalized_participation() if s else None,
                "whatsapp_sent_at": r.whatsapp_sent_at,
            }
        )

    if not rows:
        return pd.DataFrame(columns=FRAME_COLUMNS).astype({"sent": bool, "clicked": bool, "answered": bool})

    df = pd.DataFrame.from_records(rows, columns=FRAME_COLUMNS)
    df["age"] = pd.to_numeric(df["age"], errors="coerce")
    return df
