"""
Remote job listings from the Remotive public API.

The provider asks for at most a few requests per day. Call frequency is
capped by the queue; this adapter never retries on HTTP 429.
"""

import logging
from typing import Any, Dict, List, Optional

from core.config import settings
from ingestion.extractors.api_extractor import APIExtractor
from ingestion.transformers.normalizer import parse_datetime, parse_number
from models.base import SourceKind
from schemas.normalized import RemoteJobRecord

logger = logging.getLogger(__name__)


def add_referral_tag(url: str, tag: Optional[str]) -> str:
    """Replace the query string of provider URLs with ?via=<tag>"""
    if not tag or "remotive.com" not in url:
        return url
    return f"{url.split('?')[0]}?via={tag}"


class RemoteJobsExtractor(APIExtractor):
    """Paged fetch of remote jobs (page size REMOTE_JOBS_LIMIT, up to REMOTE_JOBS_MAX_PAGES)"""

    source_kind = SourceKind.REMOTE_JOBS

    def __init__(
        self,
        api_url: Optional[str] = None,
        limit: Optional[int] = None,
        max_pages: Optional[int] = None,
        referral_tag: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("retry_on_rate_limit", False)
        super().__init__(source_name="remotive", **kwargs)
        self.api_url = api_url or settings.REMOTIVE_API_URL
        self.limit = limit or settings.REMOTE_JOBS_LIMIT
        self.max_pages = max_pages or settings.REMOTE_JOBS_MAX_PAGES
        self.referral_tag = referral_tag if referral_tag is not None else settings.REMOTE_JOBS_REFERRAL_TAG

    async def fetch(self) -> List[RemoteJobRecord]:
        jobs: List[RemoteJobRecord] = []
        seen = set()

        async with self._client() as client:
            for page in range(1, self.max_pages + 1):
                params = {"limit": self.limit}
                if page > 1:
                    params["page"] = page

                logger.info(f"Fetching remote jobs page {page} from {self.api_url}")
                data = await self._get_json(client, self.api_url, params=params)
                rows = self.extract_list(data, "jobs")

                for row in rows:
                    record = self.parse_row(self._parse_job, row)
                    if record is None or record.remote_id in seen:
                        continue
                    seen.add(record.remote_id)
                    jobs.append(record)

                if len(rows) < self.limit:
                    break

        logger.info(f"Fetched {len(jobs)} remote jobs")
        return jobs

    def _parse_job(self, row: Dict[str, Any]) -> Optional[RemoteJobRecord]:
        remote_id = parse_number(row.get("id"))
        url = row.get("url")
        title = (row.get("title") or "").strip()
        if remote_id is None or not url or not title:
            logger.debug(f"Skipping remote job without id/url/title: {row.get('id')}")
            return None

        return RemoteJobRecord(
            remote_id=remote_id,
            url=add_referral_tag(url, self.referral_tag),
            title=title,
            company=(row.get("company_name") or "Unknown").strip(),
            company_logo=row.get("company_logo") or None,
            category=row.get("category") or None,
            tags=row.get("tags") or [],
            job_type=row.get("job_type") or None,
            location=row.get("candidate_required_location") or "Worldwide",
            salary=row.get("salary") or None,
            description=row.get("description") or None,
            published_at=parse_datetime(row.get("publication_date")) or self.clock(),
        )
