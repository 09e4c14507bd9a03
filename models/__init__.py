"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and shared enums (SourceKind, ImportStatus, EntityKind)
    company: Deduplicated organizations with observed name variations
    county: Counties seeded from the registry
    warn_notice: Layoff notices with fingerprint dedupe
    alerts: Per-county weather alerts and consumer scam bulletins
    outage: Power outage snapshots
    recall: Federal recalls
    remote_job: Remote job listings
    import_run: Per-run audit records

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON elsewhere.

Usage:
    from models import Base, WarnNotice, ImportRun
    from models.base import SourceKind, ImportStatus

Relationships:
    - Company → WarnNotice (one-to-many)
    - County → WarnNotice / WeatherAlert / Outage (one-to-many)
"""

from models.base import Base, SourceKind, ImportStatus, EntityKind
from models.company import Company
from models.county import County
from models.warn_notice import WarnNotice
from models.alerts import WeatherAlert, ScamAlert
from models.outage import Outage
from models.recall import Recall
from models.remote_job import RemoteJob
from models.import_run import ImportRun

__all__ = [
    "Base",
    "SourceKind",
    "ImportStatus",
    "EntityKind",
    "Company",
    "County",
    "WarnNotice",
    "WeatherAlert",
    "ScamAlert",
    "Outage",
    "Recall",
    "RemoteJob",
    "ImportRun",
]
