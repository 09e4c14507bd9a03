from sqlalchemy import Column, Integer, String, DateTime, Text, UniqueConstraint
from core.clock import utc_now
from models.base import Base


class Recall(Base):
    """Federal recall keyed by issuing agency plus agency-local recall ID."""
    __tablename__ = "recalls"

    id = Column(Integer, primary_key=True, autoincrement=True)

    agency = Column(String(10), nullable=False, index=True)
    recall_id = Column(String(100), nullable=False)
    title = Column(String(500), nullable=False)
    category = Column(String(20), nullable=True, index=True)
    affected = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    hazard = Column(Text, nullable=True)
    remedy = Column(Text, nullable=True)
    status = Column(String(50), nullable=True)

    published_at = Column(DateTime, nullable=False, index=True)
    source_url = Column(String(2048), nullable=False)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("agency", "recall_id", name="uq_recall_agency_id"),
    )
