"""
Pydantic schemas for canonical records produced by source adapters.

Canonical records are immutable and carry no database identity; the import
runner reconciles them against the store and then discards them.
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict
from datetime import date, datetime


class CanonicalRecord(BaseModel):
    """Base for every canonical record variant"""

    class Config:
        frozen = True


class WarnNoticeRecord(CanonicalRecord):
    """
    Layoff (WARN Act) notice as read from one CSV row.

    notice_date is None when the raw value is present but unparseable; the
    runner reports those rows as data errors instead of the adapter dropping
    them silently.
    """

    employer: str = Field(..., min_length=1, max_length=300)
    county: str = Field(..., min_length=1, max_length=100)
    notice_date_raw: str
    notice_date: Optional[date] = None

    city: Optional[str] = None
    industry: Optional[str] = None
    impacted: Optional[int] = Field(None, ge=0)
    effective_on: Optional[date] = None
    received_date: Optional[date] = None
    address: Optional[str] = None
    zip: Optional[str] = None
    notes: Optional[str] = None
    source_url: str

    # Unmapped CSV columns, preserved for audit
    extra: Dict[str, str] = Field(default_factory=dict)

    @validator("employer", "county")
    def strip_identifying(cls, v):
        """Identifying fields cannot be blank"""
        v = v.strip()
        if not v:
            raise ValueError("Identifying field cannot be empty after stripping")
        return v


class WeatherAlertRecord(CanonicalRecord):
    """NWS alert with the list of affected counties (state suffix removed)"""

    alert_id: str = Field(..., min_length=1)
    event: str
    status: str
    severity: Optional[str] = None
    severity_level: int = Field(0, ge=0, le=4)
    category: str = "other"
    certainty: Optional[str] = None
    urgency: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    instruction: Optional[str] = None
    area_desc: str = ""
    counties: List[str] = Field(default_factory=list)
    starts_at: datetime
    ends_at: Optional[datetime] = None
    source_url: str


class OutageRecord(CanonicalRecord):
    """Utility outage snapshot for one county"""

    utility: str
    county: str = Field(..., min_length=1)
    customers_out: int = Field(..., gt=0)
    customers_total: Optional[int] = None
    cause: Optional[str] = None
    reported_at: datetime
    estimated_restoration: Optional[datetime] = None
    source_url: str


class RecallRecord(CanonicalRecord):
    """Federal recall from NHTSA, CPSC or FDA"""

    agency: str
    recall_id: str = Field(..., min_length=1)
    title: str
    category: Optional[str] = None
    affected: Optional[str] = None
    description: Optional[str] = None
    hazard: Optional[str] = None
    remedy: Optional[str] = None
    status: Optional[str] = None
    published_at: datetime
    source_url: str

    @validator("title")
    def cap_title(cls, v):
        """Titles are stored in a 500-char column"""
        v = (v or "").strip() or "Untitled recall"
        return v[:500]


class ScamAlertRecord(CanonicalRecord):
    """Consumer-protection bulletin from the scam feed"""

    title: str = Field(..., min_length=1)
    summary: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    published_at: datetime
    source_url: str = Field(..., min_length=1)


class RemoteJobRecord(CanonicalRecord):
    """Remote job listing"""

    remote_id: int
    url: str
    title: str
    company: str
    company_logo: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    job_type: Optional[str] = None
    location: Optional[str] = None
    salary: Optional[str] = None
    description: Optional[str] = None
    published_at: datetime

    @validator("tags", pre=True)
    def clean_tags(cls, v):
        """Ensure tags is a list"""
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        if isinstance(v, list):
            return [str(t).strip() for t in v if str(t).strip()]
        return []
