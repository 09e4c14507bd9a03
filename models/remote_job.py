from sqlalchemy import Column, Integer, String, DateTime, Text
from core.clock import utc_now
from models.base import Base, JSONType


class RemoteJob(Base):
    """Remote job listing keyed by the provider's job ID."""
    __tablename__ = "remote_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    remote_id = Column(Integer, nullable=False, unique=True)

    url = Column(String(2048), nullable=False)
    title = Column(String(500), nullable=False)
    company = Column(String(300), nullable=False)
    company_logo = Column(String(2048), nullable=True)
    category = Column(String(100), nullable=True, index=True)
    tags = Column(JSONType, nullable=True)
    job_type = Column(String(50), nullable=True)
    location = Column(String(300), nullable=True)
    salary = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)

    published_at = Column(DateTime, nullable=False, index=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)
