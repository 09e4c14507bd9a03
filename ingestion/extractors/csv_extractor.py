"""
Layoff (WARN Act) notice CSV extractor with manual-file fallback
"""

import asyncio
import io
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, Field

from core.config import settings
from core.exceptions import CSVExtractionError, ExtractionError
from ingestion.base import SourceAdapter
from ingestion.transformers.normalizer import parse_date, parse_number
from models.base import SourceKind
from schemas.normalized import WarnNoticeRecord

logger = logging.getLogger(__name__)

# Logical field -> header candidates, consulted in order. New header
# variants seen in agency snapshots are added here.
WARN_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "employer": ("Company Name", "Company", "Employer", "Employer Name"),
    "county": ("County",),
    "city": ("City",),
    "industry": ("Industry", "NAICS"),
    "impacted": ("Employees Affected", "Number Affected", "Impacted", "Number of Employees", "# Employees"),
    "notice_date": ("Notice Date", "Received Date", "Date Received"),
    "received_date": ("Received Date", "Date Received"),
    "effective_date": ("Effective Date", "Layoff Date"),
    "notes": ("Notes", "Comments"),
    "address": ("Address",),
    "zip": ("Zip", "ZIP"),
}

_KNOWN_HEADERS = {h.lower() for aliases in WARN_FIELD_ALIASES.values() for h in aliases}


class RawWarnRow(BaseModel):
    """One CSV row reduced to the fields this pipeline reads"""

    employer: Optional[str] = None
    county: Optional[str] = None
    city: Optional[str] = None
    industry: Optional[str] = None
    impacted: Optional[str] = None
    notice_date: Optional[str] = None
    received_date: Optional[str] = None
    effective_date: Optional[str] = None
    notes: Optional[str] = None
    address: Optional[str] = None
    zip: Optional[str] = None

    # Unmapped columns
    extra: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> "RawWarnRow":
        """Resolve every logical field through its alias chain (first non-empty wins)"""
        cleaned = {str(k).strip(): ("" if v is None else str(v).strip()) for k, v in row.items()}
        lowered = {k.lower(): v for k, v in cleaned.items()}

        fields = {}
        for field, aliases in WARN_FIELD_ALIASES.items():
            for alias in aliases:
                value = lowered.get(alias.lower())
                if value:
                    fields[field] = value
                    break

        extra = {k: v for k, v in cleaned.items() if v and k.lower() not in _KNOWN_HEADERS}
        return cls(extra=extra, **fields)


def read_frame(text: str) -> Optional[pd.DataFrame]:
    """Parse CSV text; None when it is not the expected tabular shape"""
    if not text or not text.strip():
        return None
    try:
        df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
        logger.debug(f"CSV parse failed: {e}")
        return None

    df.columns = [str(c).strip() for c in df.columns]
    employer_headers = {h.lower() for h in WARN_FIELD_ALIASES["employer"]}
    if not any(c.lower() in employer_headers for c in df.columns):
        return None
    return df


class WarnCSVExtractor(SourceAdapter):
    """
    Extract layoff notices from the state's WARN CSV export.

    Supports:
    - Several primary URL candidates, tried in order
    - Manual CSV fallback (NC_WARN_CSV_PATH) when no URL yields a table
    - WARN_SOURCE_MODE: "url" (no fallback), "file" (no network), "auto"
    - Header alias chains per logical field
    """

    source_kind = SourceKind.WARN

    def __init__(
        self,
        source_url: Optional[str] = None,
        file_path: Optional[str] = None,
        mode: Optional[str] = None,
        **kwargs
    ):
        super().__init__(source_name="nc_warn_csv", **kwargs)
        self.source_url = (source_url or settings.NC_WARN_SOURCE_URL).rstrip("/")
        self.file_path = Path(file_path or settings.NC_WARN_CSV_PATH)
        self.mode = (mode or settings.WARN_SOURCE_MODE).lower()

    def candidate_urls(self) -> List[str]:
        return [
            f"{self.source_url}/warn-notices.csv",
            f"{self.source_url}/export/csv",
            self.source_url,
        ]

    async def fetch(self) -> List[WarnNoticeRecord]:
        df, origin = None, None

        if self.mode in ("url", "auto"):
            df, origin = await self._fetch_remote()

        if df is None and self.mode in ("file", "auto"):
            df = await self._read_file()
            origin = self.source_url

        if df is None:
            raise CSVExtractionError(
                "No usable layoff CSV available",
                context={
                    "urls_tried": self.candidate_urls() if self.mode != "file" else [],
                    "file_path": str(self.file_path),
                    "mode": self.mode
                }
            )

        records = []
        dropped = 0
        for row in df.to_dict(orient="records"):
            record = self.parse_row(self._row_to_record, row, origin)
            if record is None:
                dropped += 1
                continue
            records.append(record)

        logger.info(
            f"Read {len(records)} layoff notices from {origin} "
            f"({dropped} rows dropped as incomplete or malformed)"
        )
        return records

    async def _fetch_remote(self):
        async with self._client() as client:
            for url in self.candidate_urls():
                try:
                    response = await self._get(client, url, headers={"Accept": "text/csv,*/*"})
                except ExtractionError as e:
                    logger.warning(f"Layoff CSV candidate {url} failed: {e}")
                    continue

                df = read_frame(response.text)
                if df is not None:
                    logger.info(f"Using layoff CSV from {url}")
                    return df, url
                logger.warning(f"Layoff CSV candidate {url} did not return a notice table")
        return None, None

    async def _read_file(self) -> Optional[pd.DataFrame]:
        if not self.file_path.exists():
            logger.warning(f"Manual layoff CSV not found: {self.file_path}")
            return None

        logger.info(f"Reading manual layoff CSV from {self.file_path}")
        text = await asyncio.to_thread(self.file_path.read_text, encoding="utf-8-sig")
        df = read_frame(text)
        if df is None:
            logger.warning(f"Manual layoff CSV {self.file_path} has no employer column")
        return df

    def _row_to_record(self, row: Dict[str, Any], source_url: str) -> Optional[WarnNoticeRecord]:
        return self.to_record(RawWarnRow.from_row(row), source_url)

    @staticmethod
    def to_record(raw: RawWarnRow, source_url: str) -> Optional[WarnNoticeRecord]:
        """
        Canonical notice for one row, or None when a required field is missing.

        A notice date that is present but unparseable is kept (notice_date
        None) so the runner can report it.
        """
        if not raw.employer or not raw.county or not raw.notice_date:
            return None

        return WarnNoticeRecord(
            employer=raw.employer,
            county=raw.county,
            notice_date_raw=raw.notice_date,
            notice_date=parse_date(raw.notice_date),
            city=raw.city,
            industry=raw.industry,
            impacted=parse_number(raw.impacted),
            effective_on=parse_date(raw.effective_date),
            received_date=parse_date(raw.received_date),
            address=raw.address,
            zip=raw.zip,
            notes=raw.notes,
            source_url=source_url,
            extra=raw.extra,
        )
