"""
Pydantic schemas for data validation and serialization.

Schemas:
    normalized: Canonical record variants produced by source adapters
    runs: Import run results and queue statistics

Usage:
    from schemas.normalized import WarnNoticeRecord
    from schemas.runs import ImportResult, QueueStats

Validation:
    Canonical records are frozen; identifying fields are stripped and
    rejected when empty.
"""

__all__ = [
    "WarnNoticeRecord",
    "WeatherAlertRecord",
    "OutageRecord",
    "RecallRecord",
    "ScamAlertRecord",
    "RemoteJobRecord",
    "ImportResult",
    "QueueStats",
]
