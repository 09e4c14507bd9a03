"""
Pydantic schemas for import run results and queue statistics
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from models.base import SourceKind, ImportStatus


class ImportResult(BaseModel):
    """Outcome of one import run, mirrored from the ImportRun audit row"""

    run_id: int
    source: SourceKind
    status: ImportStatus
    items_found: int = 0
    items_upserted: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    items_pruned: int = 0
    inserted: int = 0
    updated: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_seconds: Optional[float] = None


class QueueStats(BaseModel):
    """Job bookkeeping counts for one source queue"""

    waiting: int = 0
    active: int = 0
    completed_count: int = 0
    failed_count: int = 0
