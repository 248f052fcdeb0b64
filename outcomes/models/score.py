from datetime import datetime

from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint, Index

from .base import Base


class OutcomeScore(Base):
    """One score per (level, node, student); written with upsert semantics."""
    __tablename__ = "outcome_scores"
    __table_args__ = (
        UniqueConstraint("level", "node_id", "student_id", name="uq_score_row"),
        Index("ix_score_student", "level", "student_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    level = Column(String(4), nullable=False)   # Level value
    node_id = Column(Integer, nullable=False)
    student_id = Column(String(64), nullable=False)
    value = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
