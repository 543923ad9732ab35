"""
Database models for persisted generation runs.

One row per analyze + write cycle: the stored config and analysis let the
write phase resume in a later process, and the document/metrics columns
keep the latest output.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, JSON, String, Text, Index
from sqlalchemy.orm import declarative_base


def utc_now():
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


Base = declarative_base()


class GenerationRun(Base):
    """
    A generation run snapshot.

    Status values mirror pipeline.schemas.GenerationStatus.
    """
    __tablename__ = "generation_runs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(500), nullable=False, default="")
    status = Column(String(32), nullable=False, default="idle")
    error = Column(Text, nullable=True)

    config = Column(JSON, nullable=True)
    analysis = Column(JSON, nullable=True)
    document = Column(Text, nullable=False, default="")
    covered_points = Column(JSON, nullable=False, default=list)
    image_plans = Column(JSON, nullable=False, default=list)

    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    total_cost = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_generation_runs_status", "status"),
        Index("idx_generation_runs_updated", "updated_at"),
    )

    def __repr__(self):
        return f"<GenerationRun(id={self.id}, status={self.status}, title={self.title[:40]})>"
