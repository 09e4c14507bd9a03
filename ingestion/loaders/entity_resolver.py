"""
Resolve or create the shared Company and County entities.

Several source workers can meet the same previously unseen company or
county at once. A uniqueness violation on create is treated as "already
exists": the row is re-read and resolution continues.
"""

from typing import Optional
import logging

from core.config import settings
from core.exceptions import DuplicateEntityError, ValidationError
from ingestion.loaders.store import Entity, Store
from ingestion.transformers.counties import CountyInfo, counties_for_state, get_county_by_slug
from ingestion.transformers.normalizer import normalize_org_name, normalize_region_name, slugify
from models.base import EntityKind

logger = logging.getLogger(__name__)


class EntityResolver:
    def __init__(self, store: Store, state_code: Optional[str] = None):
        self.store = store
        self.state_code = (state_code or settings.STATE_CODE).upper()

    async def resolve_company(self, raw_name: str) -> Entity:
        """
        Company for a raw organization name, created on first sight.

        The raw spelling is appended to name_variations when new.

        Raises:
            ValidationError: Name normalizes to an empty slug
        """
        raw = (raw_name or "").strip()
        slug = slugify(normalize_org_name(raw))
        if not slug:
            raise ValidationError(
                f"Organization name {raw_name!r} normalizes to empty",
                context={"field_name": "employer", "field_value": raw_name}
            )

        company = await self.store.find(EntityKind.COMPANY, {"slug": slug})
        if company is None:
            try:
                company = await self.store.create(
                    EntityKind.COMPANY,
                    {"name": raw, "slug": slug, "name_variations": [raw]},
                )
                logger.debug(f"Created company {slug}")
                return company
            except DuplicateEntityError:
                logger.debug(f"Company {slug} created concurrently; re-reading")
                company = await self.store.find(EntityKind.COMPANY, {"slug": slug})
                if company is None:
                    raise

        variations = list(company.get("name_variations") or [])
        if raw not in variations:
            company = await self.store.update(
                EntityKind.COMPANY, company["id"], {"name_variations": variations + [raw]}
            )
        return company

    def _registry_match(self, normalized: str) -> Optional[CountyInfo]:
        """
        Registry county whose name contains the raw name, case-insensitively.

        An ambiguous fragment ("davi": Davidson and Davie) matches nothing.
        """
        candidates = [
            info for info in counties_for_state(self.state_code)
            if normalized in info.name.lower()
        ]
        if len(candidates) != 1:
            if candidates:
                logger.debug(f"County name {normalized!r} is ambiguous in {self.state_code}")
            return None
        return candidates[0]

    def _registry_county(self, raw_name: str) -> Optional[CountyInfo]:
        normalized = normalize_region_name(raw_name)
        if not normalized:
            return None
        info = get_county_by_slug(slugify(normalized), self.state_code)
        return info if info is not None else self._registry_match(normalized)

    async def find_county(self, raw_name: str) -> Optional[Entity]:
        """
        Stored county matching a raw name within the owning state.

        Exact slug match first, then a unique name-contains match.
        """
        slug = slugify(normalize_region_name(raw_name))
        if not slug:
            return None
        county = await self.store.find(EntityKind.COUNTY, {"state_code": self.state_code, "slug": slug})
        if county is not None:
            return county

        info = self._registry_match(normalize_region_name(raw_name))
        if info is None:
            return None
        return await self.store.find(EntityKind.COUNTY, {"state_code": self.state_code, "slug": info.slug})

    async def resolve_county(self, raw_name: str, create_missing: bool = False) -> Optional[Entity]:
        """
        Stored county for a raw name.

        With create_missing, a county known to the registry but not yet
        stored is created. Names outside the registry are never fabricated.
        """
        county = await self.find_county(raw_name)
        if county is not None or not create_missing:
            return county

        info = self._registry_county(raw_name)
        if info is None:
            logger.debug(f"Unknown county {raw_name!r} in {self.state_code}")
            return None

        try:
            county = await self.store.create(
                EntityKind.COUNTY,
                {"fips": info.fips, "name": info.name, "slug": info.slug, "state_code": info.state_code},
            )
            logger.info(f"Created county {info.name} ({info.fips})")
            return county
        except DuplicateEntityError:
            return await self.find_county(raw_name)

    async def seed_counties(self) -> int:
        """Create every registry county of the owning state that is not stored yet"""
        created = 0
        for info in counties_for_state(self.state_code):
            existing = await self.store.find(
                EntityKind.COUNTY, {"state_code": info.state_code, "slug": info.slug}
            )
            if existing is not None:
                continue
            try:
                await self.store.create(
                    EntityKind.COUNTY,
                    {"fips": info.fips, "name": info.name, "slug": info.slug, "state_code": info.state_code},
                )
                created += 1
            except DuplicateEntityError:
                continue

        logger.info(f"Seeded {created} counties for {self.state_code}")
        return created
