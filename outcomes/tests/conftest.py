"""
Shared fixtures for the outcome engine tests.
Every test gets its own in-memory SQLite database.
"""
import os
from types import SimpleNamespace

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base
import outcomes.models  # noqa: F401
from outcomes.logic import OutcomeEngine, Scope
from outcomes.logic.unit_of_work import UnitOfWork


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    engine.dispose()


@pytest.fixture
def uow(session_factory):
    """A bare unit of work for testing collaborators and aggregators directly."""
    db = session_factory()
    yield UnitOfWork(db)
    db.rollback()
    db.close()


@pytest.fixture
def outcome_engine(session_factory):
    return OutcomeEngine(session_factory, max_retries=0)


@pytest.fixture
def scope():
    return Scope(subject="Science", year="2024", quarter="Q1", classname="7")


@pytest.fixture
def other_scope():
    return Scope(subject="Science", year="2024", quarter="Q1", classname="8")


@pytest.fixture
def hierarchy(outcome_engine, scope):
    """
    ac1 (max 10) --high-->   lo1   --high--> ro1
    ac2 (max 20) --medium--> lo1
    ac3 (max 10) --low-->    lo2   --low---> ro1

    Weights: ac1 0.625, ac2 0.375 | ac3 1.0 | lo1 5/7, lo2 2/7
    """
    ro1 = outcome_engine.create_report_outcome(scope, "Scientific Enquiry")
    lo1 = outcome_engine.create_learning_outcome(scope, "Plan investigations", {ro1.id: "high"}).node
    lo2 = outcome_engine.create_learning_outcome(scope, "Analyse results", {ro1.id: "low"}).node
    ac1 = outcome_engine.create_assessment_criterion(scope, "Hypothesis", 10, {lo1.id: "high"}).node
    ac2 = outcome_engine.create_assessment_criterion(scope, "Method", 20, {lo1.id: "medium"}).node
    ac3 = outcome_engine.create_assessment_criterion(scope, "Graph", 10, {lo2.id: "low"}).node
    return SimpleNamespace(ac1=ac1.id, ac2=ac2.id, ac3=ac3.id, lo1=lo1.id, lo2=lo2.id, ro1=ro1.id)
