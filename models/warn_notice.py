from sqlalchemy import Column, Integer, String, Date, DateTime, Text, ForeignKey, Index
from core.clock import utc_now
from models.base import Base, JSONType


class WarnNotice(Base):
    """
    Stored layoff (WARN Act) notice.

    Raw employer/county spellings are kept next to the resolved Company and
    County so pages can show the filing as written and rows can be re-matched.

    dedupe_hash is assigned once at insert and never rewritten; re-ingesting
    the same filing is suppressed by looking it up.
    """
    __tablename__ = "warn_notices"

    id = Column(Integer, primary_key=True, autoincrement=True)

    state_code = Column(String(2), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    county_id = Column(Integer, ForeignKey("counties.id"), nullable=False, index=True)

    employer = Column(String(300), nullable=False)
    company_name_raw = Column(String(300), nullable=False)
    county_name_raw = Column(String(100), nullable=False)
    city = Column(String(100), nullable=True)
    zip = Column(String(10), nullable=True)
    industry = Column(String(200), nullable=True)
    impacted = Column(Integer, nullable=True)

    notice_date = Column(Date, nullable=False, index=True)
    effective_on = Column(Date, nullable=True)
    received_date = Column(Date, nullable=True)

    notes = Column(Text, nullable=True)
    address_raw = Column(String(300), nullable=True)
    source_url = Column(String(2048), nullable=False)

    dedupe_hash = Column(String(64), nullable=False, unique=True)
    raw_extra = Column(JSONType, nullable=True)  # Unmapped CSV columns

    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_warn_notice_county_date", "county_id", "notice_date"),
    )
