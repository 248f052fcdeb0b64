from datetime import datetime

from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint

from .base import Base


class ScopeColumns:
    """(subject, year, quarter, class) tuple shared by every hierarchy node."""
    subject = Column(String(120), nullable=False, index=True)
    year = Column(String(20), nullable=False, index=True)
    quarter = Column(String(20), nullable=False)
    classname = Column(String(60), nullable=False)
    created_at = Column(DateTime(timezone=False), default=datetime.utcnow, nullable=False)


class AssessmentCriterion(ScopeColumns, Base):
    __tablename__ = "assessment_criteria"
    __table_args__ = (
        UniqueConstraint("name", "subject", "year", "quarter", "classname", name="uq_ac_name_scope"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    max_marks = Column(Float, nullable=False)


class LearningOutcome(ScopeColumns, Base):
    __tablename__ = "learning_outcomes"
    __table_args__ = (
        UniqueConstraint("name", "subject", "year", "quarter", "classname", name="uq_lo_name_scope"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)


class ReportOutcome(ScopeColumns, Base):
    __tablename__ = "report_outcomes"
    __table_args__ = (
        UniqueConstraint("name", "subject", "year", "quarter", "classname", name="uq_ro_name_scope"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
