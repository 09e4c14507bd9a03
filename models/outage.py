from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from core.clock import utc_now
from models.base import Base


class Outage(Base):
    """
    Point-in-time power outage snapshot for one utility and county.

    Snapshots are pruned once reported_at falls outside the retention window.
    """
    __tablename__ = "outages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    county_id = Column(Integer, ForeignKey("counties.id"), nullable=False, index=True)

    utility = Column(String(100), nullable=False)
    customers_out = Column(Integer, nullable=False)
    customers_total = Column(Integer, nullable=True)
    cause = Column(String(200), nullable=True)

    reported_at = Column(DateTime, nullable=False, index=True)
    estimated_restoration = Column(DateTime, nullable=True)
    source_url = Column(String(2048), nullable=False)

    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("utility", "county_id", "reported_at", name="uq_outage_snapshot"),
    )
