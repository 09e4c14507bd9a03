from sqlalchemy import Column, Integer, String, DateTime, Float, Text, Index
from core.clock import utc_now
from models.base import Base, JSONType, SourceKind, ImportStatus, enum_column_type


class ImportRun(Base):
    """
    Audit record for one ingestion attempt of one source.

    Purpose:
    - Make total failures visible (created before the fetch is attempted)
    - Run statistics: found / upserted / skipped / failed / pruned
    - Capped error summary for operational inspection

    Rows are written once more when the run reaches a terminal status and
    are never touched again.
    """
    __tablename__ = "import_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    source = Column(enum_column_type(SourceKind), nullable=False, index=True)
    source_name = Column(String(100), nullable=False)
    status = Column(enum_column_type(ImportStatus), nullable=False, default=ImportStatus.RUNNING, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    finished_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    items_found = Column(Integer, default=0)
    items_upserted = Column(Integer, default=0)
    items_skipped = Column(Integer, default=0)
    items_failed = Column(Integer, default=0)
    items_pruned = Column(Integer, default=0)

    # Error tracking
    error_summary = Column(Text, nullable=True)

    # inserted/updated split, trigger (manual or scheduled), job id
    run_metadata = Column("metadata", JSONType, nullable=True)

    __table_args__ = (
        Index("idx_import_run_source_started", "source", "started_at"),
    )
