"""
Generation cost model.
One row per completed generation with its estimated provider spend.
Feeds the internal daily cost report.
"""
from sqlalchemy import Column, String, Integer, Float, DateTime, Index
from datetime import datetime

from clipgen.entities import new_id
from clipgen.models.base import Base


class GenerationCostRow(Base):
    """Estimated USD cost of a finished generation."""

    __tablename__ = "generation_costs"

    id = Column(String(36), primary_key=True, default=new_id)
    job_id = Column(String(36), nullable=False)
    model = Column(String(64), nullable=False)
    provider = Column(String(32), nullable=False)
    duration_seconds = Column(Integer, nullable=False)
    cost_usd = Column(Float, nullable=False)
    resolution = Column(String(16), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_generation_costs_created", "created_at"),
    )

    def __repr__(self):
        return f"<GenerationCostRow(job_id={self.job_id}, model={self.model}, cost_usd={self.cost_usd})>"
