from sqlalchemy import Column, Integer, String, DateTime
from core.clock import utc_now
from models.base import Base, JSONType


class Company(Base):
    """
    Deduplicated organization keyed by normalized-name slug.

    name_variations holds every distinct raw spelling observed for the
    company; it only ever grows.
    """
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(String(300), nullable=False)  # First raw spelling seen, for display
    slug = Column(String(300), nullable=False, unique=True, index=True)
    name_variations = Column(JSONType, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)
