"""
Per-source reconciliation of canonical records against the store.

Each upserter decides insert vs. update vs. skip for one record and writes
with single-record store calls. Fingerprinted sources (layoff notices)
never update; naturally keyed sources update the fields that commonly
drift and leave the key untouched.
"""

from datetime import timedelta
from typing import Any, Dict, Optional
import enum
import logging

from core.clock import Clock, utc_now
from core.config import Settings, settings as default_settings
from core.exceptions import DataFormatError, DuplicateEntityError
from ingestion.extractors.rss_extractor import categorize_scam
from ingestion.loaders.entity_resolver import EntityResolver
from ingestion.loaders.store import Entity, Store
from ingestion.transformers.dedupe import fingerprint
from models.base import EntityKind, SourceKind
from schemas.normalized import (
    CanonicalRecord,
    OutageRecord,
    RecallRecord,
    RemoteJobRecord,
    ScamAlertRecord,
    WarnNoticeRecord,
    WeatherAlertRecord,
)

logger = logging.getLogger(__name__)


class UpsertAction(str, enum.Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


def changed_fields(existing: Entity, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Subset of fields whose value differs from the stored entity"""
    return {k: v for k, v in fields.items() if existing.get(k) != v}


class Upserter:
    """Base reconciler for one source kind"""

    kind: EntityKind

    def __init__(
        self,
        store: Store,
        resolver: EntityResolver,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.resolver = resolver
        self.settings = settings
        self.clock = clock

    async def prepare(self) -> None:
        """Run-level housekeeping before records are reconciled"""

    async def upsert(self, record: CanonicalRecord) -> UpsertAction:
        raise NotImplementedError

    async def prune(self) -> int:
        """Age-based deletion after reconciliation; 0 for retained sources"""
        return 0

    def describe(self, record: CanonicalRecord) -> str:
        """Short record label for error messages"""
        return type(record).__name__

    async def _upsert_natural(
        self,
        key: Dict[str, Any],
        fields: Dict[str, Any],
        drift: tuple,
    ) -> UpsertAction:
        """Insert when the natural key is absent; update drifting fields otherwise"""
        existing = await self.store.find(self.kind, key)
        if existing is None:
            try:
                await self.store.create(self.kind, {**key, **fields})
                return UpsertAction.INSERTED
            except DuplicateEntityError:
                existing = await self.store.find(self.kind, key)
                if existing is None:
                    raise

        changes = changed_fields(existing, {k: fields[k] for k in drift if k in fields})
        if not changes:
            return UpsertAction.SKIPPED

        await self.store.update(self.kind, existing["id"], changes)
        return UpsertAction.UPDATED


class WarnNoticeUpserter(Upserter):
    """
    Layoff notices, deduplicated by fingerprint.

    The fingerprint is checked before any company resolution so a re-run
    over seen notices does not touch Company rows. A county that does not
    resolve to a stored county is a data-quality condition: logged and
    skipped, never fabricated.
    """

    kind = EntityKind.WARN_NOTICE

    def describe(self, record: WarnNoticeRecord) -> str:
        return f"{record.employer} / {record.county} / {record.notice_date_raw}"

    async def upsert(self, record: WarnNoticeRecord) -> UpsertAction:
        if record.notice_date is None:
            raise DataFormatError(
                f"Unparseable notice date {record.notice_date_raw!r}",
                context={"field_name": "notice_date", "field_value": record.notice_date_raw}
            )

        dedupe_hash = fingerprint(
            self.settings.STATE_CODE,
            record.employer,
            record.county,
            record.notice_date,
            record.impacted,
        )
        if await self.store.find(self.kind, {"dedupe_hash": dedupe_hash}) is not None:
            return UpsertAction.SKIPPED

        county = await self.resolver.find_county(record.county)
        if county is None:
            logger.warning(
                f"Unresolved county {record.county!r} for {record.employer!r}; notice skipped"
            )
            return UpsertAction.SKIPPED

        company = await self.resolver.resolve_company(record.employer)

        try:
            await self.store.create(self.kind, {
                "state_code": self.settings.STATE_CODE,
                "company_id": company["id"],
                "county_id": county["id"],
                "employer": record.employer,
                "company_name_raw": record.employer,
                "county_name_raw": record.county,
                "city": record.city,
                "zip": record.zip,
                "industry": record.industry,
                "impacted": record.impacted,
                "notice_date": record.notice_date,
                "effective_on": record.effective_on,
                "received_date": record.received_date,
                "notes": record.notes,
                "address_raw": record.address,
                "source_url": record.source_url,
                "dedupe_hash": dedupe_hash,
                "raw_extra": dict(record.extra) or None,
            })
        except DuplicateEntityError:
            # Same fingerprint written by an overlapping run
            return UpsertAction.SKIPPED

        return UpsertAction.INSERTED


class WeatherAlertUpserter(Upserter):
    """
    One stored row per (alert, county).

    A record counts as inserted if any county row was created, updated if
    any existing row changed, skipped otherwise.
    """

    kind = EntityKind.WEATHER_ALERT
    DRIFT = (
        "event", "category", "status", "severity", "severity_level", "certainty",
        "urgency", "headline", "description", "instruction", "ends_at",
    )

    def describe(self, record: WeatherAlertRecord) -> str:
        return f"{record.event} ({record.alert_id})"

    async def prepare(self) -> None:
        expired = await self.store.update_before(
            self.kind, "ends_at", self.clock(), {"status": "expired"}
        )
        if expired:
            logger.info(f"Marked {expired} weather alerts expired")

    async def upsert(self, record: WeatherAlertRecord) -> UpsertAction:
        now = self.clock()
        status = record.status
        if record.ends_at is not None and record.ends_at < now:
            status = "expired"

        fields = {
            "event": record.event,
            "category": record.category,
            "status": status,
            "severity": record.severity,
            "severity_level": record.severity_level,
            "certainty": record.certainty,
            "urgency": record.urgency,
            "headline": record.headline,
            "description": record.description,
            "instruction": record.instruction,
            "starts_at": record.starts_at,
            "ends_at": record.ends_at,
            "source_url": record.source_url,
        }

        actions = set()
        for name in record.counties:
            county = await self.resolver.resolve_county(name, create_missing=True)
            if county is None:
                logger.debug(f"Unknown county {name!r} in alert {record.alert_id}")
                continue

            key = {"alert_id": record.alert_id, "county_id": county["id"]}
            actions.add(await self._upsert_natural(key, fields, self.DRIFT))

        if UpsertAction.INSERTED in actions:
            return UpsertAction.INSERTED
        if UpsertAction.UPDATED in actions:
            return UpsertAction.UPDATED
        return UpsertAction.SKIPPED


class OutageUpserter(Upserter):
    """Point-in-time snapshots keyed by (utility, county, reported time)"""

    kind = EntityKind.OUTAGE

    def describe(self, record: OutageRecord) -> str:
        return f"{record.utility} / {record.county}"

    async def upsert(self, record: OutageRecord) -> UpsertAction:
        county = await self.resolver.resolve_county(record.county, create_missing=True)
        if county is None:
            logger.debug(f"Unknown county {record.county!r} in {record.utility} outage")
            return UpsertAction.SKIPPED

        key = {"utility": record.utility, "county_id": county["id"], "reported_at": record.reported_at}
        if await self.store.find(self.kind, key) is not None:
            return UpsertAction.SKIPPED

        try:
            await self.store.create(self.kind, {
                **key,
                "customers_out": record.customers_out,
                "customers_total": record.customers_total,
                "cause": record.cause,
                "estimated_restoration": record.estimated_restoration,
                "source_url": record.source_url,
            })
        except DuplicateEntityError:
            return UpsertAction.SKIPPED
        return UpsertAction.INSERTED

    async def prune(self) -> int:
        cutoff = self.clock() - timedelta(days=self.settings.OUTAGE_RETENTION_DAYS)
        return await self.store.delete_older_than(self.kind, cutoff)


def unique_recall_url(record: RecallRecord) -> str:
    """Agency-wide recall pages get a #AGENCY-ID fragment so URLs stay distinct"""
    url = record.source_url
    if "recall" in url.lower() and record.recall_id not in url:
        return f"{url}#{record.agency}-{record.recall_id}"
    return url


class RecallUpserter(Upserter):
    kind = EntityKind.RECALL
    DRIFT = ("title", "source_url", "status")

    def describe(self, record: RecallRecord) -> str:
        return f"{record.agency}-{record.recall_id}"

    async def upsert(self, record: RecallRecord) -> UpsertAction:
        return await self._upsert_natural(
            {"agency": record.agency, "recall_id": record.recall_id},
            {
                "title": record.title[:500],
                "category": record.category,
                "affected": record.affected,
                "description": record.description,
                "hazard": record.hazard,
                "remedy": record.remedy,
                "status": record.status,
                "published_at": record.published_at,
                "source_url": unique_recall_url(record),
            },
            self.DRIFT,
        )


class ScamAlertUpserter(Upserter):
    kind = EntityKind.SCAM_ALERT
    DRIFT = ("title", "summary")

    def describe(self, record: ScamAlertRecord) -> str:
        return record.source_url

    async def upsert(self, record: ScamAlertRecord) -> UpsertAction:
        return await self._upsert_natural(
            {"source_url": record.source_url},
            {
                "title": record.title,
                "category": record.category or categorize_scam(record.title, record.summary),
                "summary": record.summary,
                "content": record.content,
                "published_at": record.published_at,
            },
            self.DRIFT,
        )


class RemoteJobUpserter(Upserter):
    """Remote listings keyed by provider ID; not linked to Company rows"""

    kind = EntityKind.REMOTE_JOB
    DRIFT = ("title", "url")

    def describe(self, record: RemoteJobRecord) -> str:
        return f"remotive:{record.remote_id}"

    async def upsert(self, record: RemoteJobRecord) -> UpsertAction:
        return await self._upsert_natural(
            {"remote_id": record.remote_id},
            {
                "url": record.url,
                "title": record.title,
                "company": record.company,
                "company_logo": record.company_logo,
                "category": record.category,
                "tags": list(record.tags),
                "job_type": record.job_type,
                "location": record.location,
                "salary": record.salary,
                "description": record.description,
                "published_at": record.published_at,
            },
            self.DRIFT,
        )

    async def prune(self) -> int:
        cutoff = self.clock() - timedelta(days=self.settings.REMOTE_JOB_RETENTION_DAYS)
        return await self.store.delete_older_than(self.kind, cutoff)


UPSERTERS = {
    SourceKind.WARN: WarnNoticeUpserter,
    SourceKind.WEATHER: WeatherAlertUpserter,
    SourceKind.OUTAGES: OutageUpserter,
    SourceKind.RECALLS: RecallUpserter,
    SourceKind.SCAMS: ScamAlertUpserter,
    SourceKind.REMOTE_JOBS: RemoteJobUpserter,
}


def build_upserter(
    kind: SourceKind,
    store: Store,
    settings: Settings = default_settings,
    clock: Clock = utc_now,
    resolver: Optional[EntityResolver] = None,
) -> Upserter:
    resolver = resolver or EntityResolver(store, settings.STATE_CODE)
    return UPSERTERS[kind](store, resolver, settings=settings, clock=clock)
