from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from core.clock import utc_now
from models.base import Base


class County(Base):
    """
    Administrative region within a supported state.

    Seeded once from the county registry; never deleted by the pipeline.
    """
    __tablename__ = "counties"

    id = Column(Integer, primary_key=True, autoincrement=True)

    fips = Column(String(5), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(100), nullable=False, index=True)
    state_code = Column(String(2), nullable=False, index=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("state_code", "slug", name="uq_county_state_slug"),
    )
