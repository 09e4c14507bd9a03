from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint, Index
from core.clock import utc_now
from models.base import Base


class WeatherAlert(Base):
    """
    NWS alert projected onto one county.

    One row per (alert, county); drifting fields (status, severity, text,
    expiry) are updated in place on later runs.
    """
    __tablename__ = "weather_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(String(255), nullable=False)
    county_id = Column(Integer, ForeignKey("counties.id"), nullable=False, index=True)

    event = Column(String(200), nullable=False)
    category = Column(String(20), nullable=False, default="other")
    status = Column(String(50), nullable=False)
    severity = Column(String(50), nullable=True)
    severity_level = Column(Integer, nullable=False, default=0)
    certainty = Column(String(50), nullable=True)
    urgency = Column(String(50), nullable=True)
    headline = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    instruction = Column(Text, nullable=True)

    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=True, index=True)
    source_url = Column(String(2048), nullable=False)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("alert_id", "county_id", name="uq_weather_alert_county"),
    )


class ScamAlert(Base):
    """Consumer-protection bulletin; the item URL is its natural key."""
    __tablename__ = "scam_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)

    title = Column(String(500), nullable=False)
    category = Column(String(50), nullable=False, index=True)
    summary = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    published_at = Column(DateTime, nullable=False, index=True)
    source_url = Column(String(2048), nullable=False, unique=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_scam_alert_published", "published_at", "category"),
    )
