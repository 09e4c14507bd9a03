"""
Federal recalls from NHTSA (vehicles), CPSC (consumer products) and FDA
(food enforcement reports).
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.config import settings
from core.exceptions import ExtractionError
from ingestion.extractors.api_extractor import APIExtractor
from ingestion.transformers.normalizer import parse_datetime
from models.base import SourceKind
from schemas.normalized import RecallRecord

logger = logging.getLogger(__name__)

MAX_PER_AGENCY = 100
CPSC_LOOKBACK_DAYS = 90
FDA_RECALLS_URL = "https://www.fda.gov/safety/recalls-market-withdrawals-safety-alerts"


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class RecallExtractor(APIExtractor):
    """
    Recalls from three agencies, queried concurrently.

    At most MAX_PER_AGENCY records are taken per agency; rows without an
    agency-local recall ID are dropped. Missing or unparseable publication
    dates fall back to the current time.
    """

    source_kind = SourceKind.RECALLS

    def __init__(
        self,
        nhtsa_url: Optional[str] = None,
        cpsc_url: Optional[str] = None,
        fda_url: Optional[str] = None,
        state_code: Optional[str] = None,
        **kwargs
    ):
        super().__init__(source_name="federal_recalls", **kwargs)
        self.nhtsa_url = nhtsa_url or settings.NHTSA_API_URL
        self.cpsc_url = cpsc_url or settings.CPSC_API_URL
        self.fda_url = fda_url or settings.FDA_API_URL
        self.state_code = state_code or settings.STATE_CODE

    async def fetch(self) -> List[RecallRecord]:
        logger.info("Fetching recalls from federal agencies")

        async with self._client() as client:
            recalls = await self._fetch_endpoints({
                "NHTSA": self._fetch_nhtsa(client),
                "CPSC": self._fetch_cpsc(client),
                "FDA": self._fetch_fda(client),
            })

        recalls.sort(key=lambda r: r.published_at, reverse=True)
        logger.info(f"Fetched {len(recalls)} recalls")
        return recalls

    # ------------------------------------------------------------------
    # NHTSA
    # ------------------------------------------------------------------

    async def _fetch_nhtsa(self, client) -> List[RecallRecord]:
        data = await self._get_json(client, self.nhtsa_url, params={"year": self.clock().year})
        return self._collect(self.extract_list(data, "results", "Results"), self._parse_nhtsa)

    def _parse_nhtsa(self, row: Dict[str, Any]) -> Optional[RecallRecord]:
        campaign = _text(row.get("NHTSACampaignNumber") or row.get("id"))
        if not campaign:
            return None

        title = " ".join(
            str(row.get(k) or "").strip() for k in ("Make", "Model", "ModelYear")
        ).strip()
        units = row.get("PotentialNumberofUnitsAffected")

        return RecallRecord(
            agency="NHTSA",
            recall_id=campaign,
            title=" ".join(title.split()) or "Vehicle Recall",
            category="vehicle",
            affected=f"{units} units" if units else None,
            description=_text(row.get("Summary")),
            hazard=_text(row.get("Consequence")),
            remedy=_text(row.get("Remedy")),
            published_at=parse_datetime(row.get("ReportReceivedDate")) or self.clock(),
            source_url=f"https://www.nhtsa.gov/recalls?nhtsaId={campaign}",
        )

    # ------------------------------------------------------------------
    # CPSC
    # ------------------------------------------------------------------

    async def _fetch_cpsc(self, client) -> List[RecallRecord]:
        since = (self.clock() - timedelta(days=CPSC_LOOKBACK_DAYS)).date().isoformat()
        data = await self._get_json(
            client, self.cpsc_url, params={"format": "json", "RecallDateStart": since}
        )
        return self._collect(self.extract_list(data), self._parse_cpsc)

    def _parse_cpsc(self, row: Dict[str, Any]) -> Optional[RecallRecord]:
        recall_id = _text(row.get("RecallID") or row.get("RecallNumber"))
        if not recall_id:
            return None

        return RecallRecord(
            agency="CPSC",
            recall_id=recall_id,
            title=_text(row.get("Title") or row.get("Description")) or "Product Recall",
            category="product",
            affected=_text(row.get("NumberOfUnits")),
            description=_text(row.get("Description")),
            hazard=_text(row.get("Hazard")),
            remedy=_text(row.get("Remedy")),
            published_at=parse_datetime(row.get("RecallDate")) or self.clock(),
            source_url=_text(row.get("URL")) or f"https://www.cpsc.gov/Recalls/{recall_id}",
        )

    # ------------------------------------------------------------------
    # FDA
    # ------------------------------------------------------------------

    async def _fetch_fda(self, client) -> List[RecallRecord]:
        params = {"limit": MAX_PER_AGENCY, "sort": "report_date:desc"}
        try:
            data = await self._get_json(
                client, self.fda_url, params={"search": f'state:"{self.state_code}"', **params}
            )
        except ExtractionError as e:
            logger.warning(f"FDA state-filtered query failed ({e}); retrying without state filter")
            data = await self._get_json(client, self.fda_url, params=params)

        return self._collect(self.extract_list(data, "results"), self._parse_fda)

    def _parse_fda(self, row: Dict[str, Any]) -> Optional[RecallRecord]:
        recall_id = _text(row.get("recall_number") or row.get("event_id"))
        if not recall_id:
            return None

        reason = _text(row.get("reason_for_recall"))
        return RecallRecord(
            agency="FDA",
            recall_id=recall_id,
            title=(_text(row.get("product_description")) or "Food Recall")[:200],
            category="food",
            affected=_text(row.get("product_quantity")),
            description=reason,
            hazard=reason,
            remedy=_text(row.get("voluntary_mandated")) or "Check with retailer",
            status=_text(row.get("status")),
            published_at=parse_datetime(row.get("report_date")) or self.clock(),
            source_url=FDA_RECALLS_URL,
        )

    def _collect(self, rows: List[Dict[str, Any]], parse) -> List[RecallRecord]:
        records = []
        for row in rows[:MAX_PER_AGENCY]:
            record = self.parse_row(parse, row)
            if record is not None:
                records.append(record)
        return records
