"""
Power outage snapshots from utility outage-map APIs.
"""

import logging
from typing import Any, Dict, List, Optional

from core.config import settings
from ingestion.extractors.api_extractor import APIExtractor
from ingestion.transformers.normalizer import parse_datetime, parse_number
from models.base import SourceKind
from schemas.normalized import OutageRecord

logger = logging.getLogger(__name__)


class Utility:
    def __init__(self, key: str, name: str, api_url: str, website: str):
        self.key = key
        self.name = name
        self.api_url = api_url
        self.website = website


def default_utilities() -> List[Utility]:
    return [
        Utility("duke", "Duke Energy", settings.DUKE_OUTAGE_URL, "https://www.duke-energy.com/outages"),
        Utility("dominion", "Dominion Energy", settings.DOMINION_OUTAGE_URL, "https://www.dominionenergy.com/outages"),
    ]


class OutageExtractor(APIExtractor):
    """
    Outages from every configured utility, queried concurrently.

    Payload structure differs per utility and over time, so parsing is
    generic: a bare list, or a list under "outages" or "data". Rows without
    a county or with no customers out are dropped.
    """

    source_kind = SourceKind.OUTAGES

    def __init__(self, utilities: Optional[List[Utility]] = None, state_code: Optional[str] = None, **kwargs):
        super().__init__(source_name="utility_outages", **kwargs)
        self.utilities = utilities if utilities is not None else default_utilities()
        self.state_code = state_code or settings.STATE_CODE

    async def fetch(self) -> List[OutageRecord]:
        logger.info(f"Fetching power outages from {len(self.utilities)} utilities")

        async with self._client() as client:
            outages = await self._fetch_endpoints({
                utility.key: self._fetch_utility(client, utility)
                for utility in self.utilities
            })

        logger.info(f"Fetched {len(outages)} outage records")
        return outages

    async def _fetch_utility(self, client, utility: Utility) -> List[OutageRecord]:
        data = await self._get_json(client, utility.api_url, params={"state": self.state_code})
        return self.parse_outages(data, utility)

    def parse_outages(self, data: Any, utility: Utility) -> List[OutageRecord]:
        records = []
        for row in self.extract_list(data, "outages", "data"):
            record = self.parse_row(self._parse_row, row, utility)
            if record is not None:
                records.append(record)
        return records

    def _parse_row(self, row: Dict[str, Any], utility: Utility) -> Optional[OutageRecord]:
        county = str(row.get("county") or row.get("countyName") or "").strip()
        customers_out = parse_number(row.get("customersAffected") or row.get("affected")) or 0

        if not county or customers_out <= 0:
            return None

        return OutageRecord(
            utility=utility.name,
            county=county,
            customers_out=customers_out,
            customers_total=parse_number(row.get("totalCustomers")),
            cause=str(row["cause"]) if row.get("cause") else None,
            reported_at=parse_datetime(row.get("reportedAt")) or self.clock(),
            estimated_restoration=parse_datetime(row.get("etr")),
            source_url=utility.website,
        )
