"""
RSS Feed Extractor

Consumer-protection bulletins from the state attorney general's feed.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, List, Optional

import feedparser

from core.config import settings
from core.exceptions import RSSExtractionError
from ingestion.base import SourceAdapter
from ingestion.transformers.normalizer import clean_html, parse_datetime
from models.base import SourceKind
from schemas.normalized import ScamAlertRecord

logger = logging.getLogger(__name__)

SCAM_KEYWORDS = (
    "scam",
    "fraud",
    "alert",
    "warning",
    "consumer",
    "phishing",
    "identity theft",
    "impersonat",
    "fake",
    "scheme",
    "deceptive",
    "robocall",
    "telemarket",
)

# Checked in order; first match wins
SCAM_CATEGORIES = [
    ("phone", ("phone", "call", "robocall")),
    ("email", ("email", "phishing")),
    ("identity", ("identity", "theft")),
    ("tax", ("tax", "irs")),
    ("healthcare", ("medicare", "health", "medical")),
    ("utility", ("utility", "power", "electric")),
    ("government", ("government", "official")),
    ("online", ("online", "internet", "website")),
    ("senior", ("senior", "elderly")),
]


def categorize_scam(title: str, summary: Optional[str]) -> str:
    text = f"{title} {summary or ''}".lower()
    for category, keywords in SCAM_CATEGORIES:
        if any(keyword in text for keyword in keywords):
            return category
    return "general"


def is_scam_content(title: str, description: str, categories: List[str]) -> bool:
    """Relevance filter: at least one scam keyword in title, description or categories"""
    text = " ".join([title or "", description or "", " ".join(categories)]).lower()
    return any(keyword in text for keyword in SCAM_KEYWORDS)


class ScamRSSExtractor(SourceAdapter):
    """Extract scam alerts from an RSS/Atom feed"""

    source_kind = SourceKind.SCAMS

    def __init__(self, feed_url: Optional[str] = None, **kwargs):
        super().__init__(source_name="ncdoj_scam_feed", **kwargs)
        self.feed_url = feed_url or settings.SCAM_FEED_URL

    async def fetch(self) -> List[ScamAlertRecord]:
        """
        Fetch entries from the feed and keep the scam-related ones.

        Raises:
            RSSExtractionError: Feed could not be parsed and yielded no entries
        """
        async with self._client() as client:
            response = await self._get(
                client, self.feed_url,
                headers={"Accept": "application/rss+xml, application/atom+xml, application/xml"}
            )
            rss_content = response.text

        # Parse RSS in thread pool
        feed = await asyncio.to_thread(feedparser.parse, rss_content)

        if feed.bozo and not feed.entries:
            raise RSSExtractionError(
                f"Failed to parse RSS feed: {feed.bozo_exception}",
                context={"feed_url": self.feed_url}
            )

        alerts = []
        for entry in feed.entries:
            record = self.parse_row(self._parse_entry, entry)
            if record is not None:
                alerts.append(record)

        logger.info(f"Kept {len(alerts)} of {len(feed.entries)} feed entries as scam alerts")
        return alerts

    def _parse_entry(self, entry: Any) -> Optional[ScamAlertRecord]:
        title = (entry.get("title") or "").strip()
        link = (entry.get("link") or entry.get("id") or "").strip()
        if not title or not link:
            return None

        description = entry.get("summary", entry.get("description", "")) or ""
        categories = [tag.get("term", "") for tag in entry.get("tags", []) if tag.get("term")]

        if not is_scam_content(title, description, categories):
            return None

        content = ""
        if entry.get("content"):
            content = entry["content"][0].get("value", "")

        published = None
        if entry.get("published_parsed"):
            published = datetime(*entry.published_parsed[:6])
        elif entry.get("updated_parsed"):
            published = datetime(*entry.updated_parsed[:6])
        else:
            published = parse_datetime(entry.get("published"))

        return ScamAlertRecord(
            title=title[:500],
            summary=clean_html(description),
            content=clean_html(content),
            category=categories[0] if categories else None,
            published_at=published or self.clock(),
            source_url=link,
        )
