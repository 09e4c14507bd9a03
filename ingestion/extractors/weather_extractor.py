"""
National Weather Service active alerts for the configured state.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from core.config import settings
from ingestion.extractors.api_extractor import APIExtractor
from ingestion.transformers.normalizer import parse_datetime
from models.base import SourceKind
from schemas.normalized import WeatherAlertRecord

logger = logging.getLogger(__name__)

STATE_NAMES = {"NC": "North Carolina"}

# Checked in order; first match wins
ALERT_CATEGORIES = [
    ("wind", ("tornado", "wind")),
    ("flood", ("flood", "rain")),
    ("fire", ("fire", "red flag")),
    ("heat", ("heat", "excessive")),
    ("winter", ("winter", "ice", "snow", "freeze")),
    ("tropical", ("hurricane", "tropical")),
    ("severe", ("thunder", "severe")),
]

SEVERITY_LEVELS = {"extreme": 4, "severe": 3, "moderate": 2, "minor": 1}


def categorize_alert(event: str) -> str:
    event_lower = (event or "").lower()
    for category, keywords in ALERT_CATEGORIES:
        if any(keyword in event_lower for keyword in keywords):
            return category
    return "other"


def severity_level(severity: Optional[str]) -> int:
    return SEVERITY_LEVELS.get((severity or "").lower(), 0)


def extract_counties(area_desc: str, state_code: str = "NC") -> List[str]:
    """
    County names from an NWS area description.

    "Wake; Durham, NC; Greenville, SC" -> ["Wake", "Durham"]. Entries for
    other states and the bare state name are dropped.
    """
    if not area_desc:
        return []

    state_name = STATE_NAMES.get(state_code.upper(), "").lower()
    counties = []
    for part in area_desc.split(";"):
        part = part.strip()
        if not part:
            continue
        if state_name and part.lower() == state_name:
            continue
        if "," in part:
            name, _, suffix = part.rpartition(",")
            if suffix.strip().upper() != state_code.upper():
                continue
            part = name.strip()
        name = part
        if name.lower().endswith(" county"):
            name = name[: -len(" county")].strip()
        if name and name not in counties:
            counties.append(name)
    return counties


class WeatherAlertExtractor(APIExtractor):
    """
    Active alerts from api.weather.gov (GeoJSON).

    Single endpoint: a failure fails the fetch.
    """

    source_kind = SourceKind.WEATHER
    accept = "application/geo+json"

    def __init__(self, api_base: Optional[str] = None, state_code: Optional[str] = None, **kwargs):
        super().__init__(source_name="nws_alerts", **kwargs)
        self.api_base = (api_base or settings.NWS_API_BASE).rstrip("/")
        self.state_code = state_code or settings.STATE_CODE

    async def fetch(self) -> List[WeatherAlertRecord]:
        url = f"{self.api_base}/alerts/active"
        logger.info(f"Fetching weather alerts from {url} (area={self.state_code})")

        async with self._client() as client:
            data = await self._get_json(client, url, params={"area": self.state_code})

        alerts = []
        for feature in self.extract_list(data, "features"):
            record = self.parse_row(self._parse_feature, feature)
            if record is not None:
                alerts.append(record)

        logger.info(f"Fetched {len(alerts)} weather alerts")
        return alerts

    def _parse_feature(self, feature: Dict[str, Any]) -> Optional[WeatherAlertRecord]:
        props = feature.get("properties") or {}
        alert_id = feature.get("id") or props.get("id")
        if not alert_id:
            logger.debug("Skipping alert without id")
            return None

        starts_at = parse_datetime(props.get("effective") or props.get("onset") or props.get("sent"))
        if starts_at is None:
            starts_at = self.clock()

        event = props.get("event") or "Unknown"
        return WeatherAlertRecord(
            alert_id=str(alert_id),
            event=event,
            status=props.get("status") or "Actual",
            severity=props.get("severity") or None,
            severity_level=severity_level(props.get("severity")),
            category=categorize_alert(event),
            certainty=props.get("certainty") or None,
            urgency=props.get("urgency") or None,
            headline=props.get("headline") or None,
            description=props.get("description") or None,
            instruction=props.get("instruction") or None,
            area_desc=props.get("areaDesc") or "",
            counties=extract_counties(props.get("areaDesc") or "", self.state_code),
            starts_at=starts_at,
            ends_at=parse_datetime(props.get("ends") or props.get("expires")),
            source_url=f"https://alerts.weather.gov/cap/wwacapget.php?x={quote(str(alert_id), safe='')}",
        )
