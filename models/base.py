from sqlalchemy import JSON, Enum
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class SourceKind(str, enum.Enum):
    """The closed set of external data categories"""
    WARN = "warn"
    WEATHER = "weather"
    OUTAGES = "outages"
    RECALLS = "recalls"
    SCAMS = "scams"
    REMOTE_JOBS = "remote_jobs"


class ImportStatus(str, enum.Enum):
    """Import run status"""
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class EntityKind(str, enum.Enum):
    """Entity kinds addressable through the store contract"""
    COMPANY = "company"
    COUNTY = "county"
    WARN_NOTICE = "warn_notice"
    WEATHER_ALERT = "weather_alert"
    OUTAGE = "outage"
    RECALL = "recall"
    SCAM_ALERT = "scam_alert"
    REMOTE_JOB = "remote_job"
    IMPORT_RUN = "import_run"


def enum_column_type(enum_cls):
    """Portable enum column persisting member values"""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )
