"""
Outcome API Routes

Thin HTTP layer over the OutcomeEngine. Request bodies are typed and
reject unknown fields; all business rules live in outcomes.logic.
"""

from typing import Callable, List, Optional, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator

from .logic.constants import Level, MappingLevel
from .logic.contracts import (
    CascadeReport,
    MappingChangeResult,
    MappingEdge,
    NodeAverage,
    NodeChangeResult,
    NodeRecord,
    RecomputeResult,
    ScoreEntry,
    ScoreRecord,
    ScoreSubmissionResult,
    ScoreWriteResult,
    Scope,
    StudentScoreSummary,
)
from .logic.engine import OutcomeEngine
from .logic.errors import OutcomeEngineError


router = APIRouter(prefix="/outcomes", tags=["outcomes"])

T = TypeVar("T")

_engine: Optional[OutcomeEngine] = None


def get_engine() -> OutcomeEngine:
    global _engine
    if _engine is None:
        _engine = OutcomeEngine()
    return _engine


def scope_params(
    subject: str = Query(..., min_length=1),
    year: str = Query(..., min_length=1),
    quarter: str = Query(..., min_length=1),
    classname: str = Query(..., min_length=1),
) -> Scope:
    return Scope(subject=subject, year=year, quarter=quarter, classname=classname)


def _call(operation: Callable[[], T]) -> T:
    """Run an engine call, translating engine errors into HTTP errors."""
    try:
        return operation()
    except OutcomeEngineError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class StrictModel(BaseModel):
    class Config:
        extra = "forbid"


def _reject_repeated_ids(items, attribute: str):
    if items is None:
        return items
    ids = [getattr(item, attribute) for item in items]
    repeated = sorted({i for i in ids if ids.count(i) > 1})
    if repeated:
        raise ValueError(f"{attribute} listed more than once: {repeated}")
    return items


class AcScoresRequest(StrictModel):
    ac_id: int
    scores: List[ScoreEntry] = Field(..., min_length=1)
    max_marks: Optional[float] = Field(default=None, gt=0, description="Defaults to the AC's max_marks")


class LoScoreRequest(StrictModel):
    student_id: str = Field(..., min_length=1)
    lo_id: int
    value: float = Field(..., ge=0.0, le=1.0)


class ChildPriority(StrictModel):
    child_id: int
    priority: str


class ParentPriority(StrictModel):
    parent_id: int
    priority: str


class MappingRequest(StrictModel):
    parent_id: int
    data: List[ChildPriority] = Field(..., min_length=1)

    @field_validator("data")
    @classmethod
    def _unique_children(cls, value: List[ChildPriority]) -> List[ChildPriority]:
        return _reject_repeated_ids(value, "child_id")


class CreateAcRequest(StrictModel):
    scope: Scope
    name: str = Field(..., min_length=1)
    max_marks: float = Field(..., gt=0)
    lo_mappings: List[ParentPriority] = Field(default_factory=list)

    @field_validator("lo_mappings")
    @classmethod
    def _unique_parents(cls, value: List[ParentPriority]) -> List[ParentPriority]:
        return _reject_repeated_ids(value, "parent_id")


class CreateLoRequest(StrictModel):
    scope: Scope
    name: str = Field(..., min_length=1)
    ro_mappings: List[ParentPriority] = Field(default_factory=list)

    @field_validator("ro_mappings")
    @classmethod
    def _unique_parents(cls, value: List[ParentPriority]) -> List[ParentPriority]:
        return _reject_repeated_ids(value, "parent_id")


class CreateRoRequest(StrictModel):
    scope: Scope
    name: str = Field(..., min_length=1)


class UpdateAcRequest(StrictModel):
    name: Optional[str] = None
    max_marks: Optional[float] = Field(default=None, gt=0)


class UpdateLoRequest(StrictModel):
    name: Optional[str] = None
    ro_mappings: Optional[List[ParentPriority]] = Field(
        default=None, description="Replaces every RO mapping of the LO; omit to keep them"
    )

    @field_validator("ro_mappings")
    @classmethod
    def _unique_parents(cls, value: Optional[List[ParentPriority]]) -> Optional[List[ParentPriority]]:
        return _reject_repeated_ids(value, "parent_id")


class UpdateRoRequest(StrictModel):
    name: str = Field(..., min_length=1)


# =============================================================================
# SCORES
# =============================================================================

@router.post("/ac-scores", response_model=ScoreSubmissionResult, status_code=201, summary="Submit AC marks")
def submit_ac_scores(request: AcScoresRequest, engine: OutcomeEngine = Depends(get_engine)):
    """
    Save obtained marks for one AC (stored as obtained / max ratios) and
    recompute every LO and RO above it.
    """
    return _call(lambda: engine.set_ac_scores(request.ac_id, request.scores, request.max_marks))


@router.put("/lo-scores", response_model=ScoreWriteResult, summary="Overwrite an LO score")
def overwrite_lo_score(request: LoScoreRequest, engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.set_lo_score(request.student_id, request.lo_id, request.value))


@router.get("/scores/{level}/{student_id}", response_model=StudentScoreSummary, summary="Student scores at a level")
def get_student_scores(
    level: Level,
    student_id: str,
    node_id: Optional[int] = None,
    engine: OutcomeEngine = Depends(get_engine),
):
    return _call(lambda: engine.student_scores(student_id, level, node_id))


@router.get("/scores/{level}/{student_id}/{node_id}", response_model=ScoreRecord, summary="Single score")
def get_score(level: Level, student_id: str, node_id: int, engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.get_score(student_id, node_id, level))


@router.get("/class-averages/{level}", response_model=List[NodeAverage], summary="Class average per node")
def get_class_averages(
    level: Level,
    scope: Scope = Depends(scope_params),
    student_ids: Optional[List[str]] = Query(default=None),
    engine: OutcomeEngine = Depends(get_engine),
):
    return _call(lambda: engine.class_averages(scope, level, student_ids))


# =============================================================================
# MAPPINGS
# =============================================================================

@router.put("/mappings/{mapping_level}", response_model=MappingChangeResult, summary="Set child priorities")
def update_mapping(
    mapping_level: MappingLevel,
    request: MappingRequest,
    engine: OutcomeEngine = Depends(get_engine),
):
    """
    Create or re-prioritize edges into one parent. Weights of the whole
    sibling set are recomputed, then the parent's scores and everything
    above it.
    """
    priorities = {item.child_id: item.priority for item in request.data}
    return _call(lambda: engine.set_mapping_priorities(request.parent_id, mapping_level, priorities))


@router.get("/mappings/{mapping_level}/{parent_id}", response_model=List[MappingEdge], summary="Children of a parent")
def get_mapping(mapping_level: MappingLevel, parent_id: int, engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.get_mapping(parent_id, mapping_level))


@router.delete(
    "/mappings/{mapping_level}/{parent_id}/{child_id}",
    response_model=MappingChangeResult,
    summary="Remove one edge",
)
def delete_mapping(
    mapping_level: MappingLevel,
    parent_id: int,
    child_id: int,
    engine: OutcomeEngine = Depends(get_engine),
):
    return _call(lambda: engine.delete_mapping(child_id, parent_id, mapping_level))


@router.post("/recompute/{level}/{node_id}", response_model=RecomputeResult, summary="Recompute one LO or RO")
def recompute_node(level: Level, node_id: int, engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.recompute(node_id, level))


# =============================================================================
# NODES
# =============================================================================

@router.post("/nodes/ac", response_model=NodeChangeResult, status_code=201, summary="Create an AC")
def create_assessment_criterion(request: CreateAcRequest, engine: OutcomeEngine = Depends(get_engine)):
    lo_priorities = {m.parent_id: m.priority for m in request.lo_mappings}
    return _call(
        lambda: engine.create_assessment_criterion(request.scope, request.name, request.max_marks, lo_priorities)
    )


@router.post("/nodes/lo", response_model=NodeChangeResult, status_code=201, summary="Create an LO")
def create_learning_outcome(request: CreateLoRequest, engine: OutcomeEngine = Depends(get_engine)):
    ro_priorities = {m.parent_id: m.priority for m in request.ro_mappings}
    return _call(lambda: engine.create_learning_outcome(request.scope, request.name, ro_priorities))


@router.post("/nodes/ro", response_model=NodeRecord, status_code=201, summary="Create an RO")
def create_report_outcome(request: CreateRoRequest, engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.create_report_outcome(request.scope, request.name))


@router.patch("/nodes/ac/{ac_id}", response_model=NodeRecord, summary="Rename an AC or change max marks")
def update_assessment_criterion(ac_id: int, request: UpdateAcRequest, engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.update_assessment_criterion(ac_id, request.name, request.max_marks))


@router.patch("/nodes/lo/{lo_id}", response_model=NodeChangeResult, summary="Rename an LO or replace its RO mappings")
def update_learning_outcome(lo_id: int, request: UpdateLoRequest, engine: OutcomeEngine = Depends(get_engine)):
    ro_priorities = None
    if request.ro_mappings is not None:
        ro_priorities = {m.parent_id: m.priority for m in request.ro_mappings}
    return _call(lambda: engine.update_learning_outcome(lo_id, request.name, ro_priorities))


@router.patch("/nodes/ro/{ro_id}", response_model=NodeRecord, summary="Rename an RO")
def update_report_outcome(ro_id: int, request: UpdateRoRequest, engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.update_report_outcome(ro_id, request.name))


@router.get("/nodes/{level}", response_model=List[NodeRecord], summary="Nodes in a scope")
def list_nodes(level: Level, scope: Scope = Depends(scope_params), engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.list_nodes(level, scope))


@router.get("/nodes/{level}/{node_id}", response_model=NodeRecord, summary="Single node")
def get_node(level: Level, node_id: int, engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.get_node(level, node_id))


@router.delete("/nodes/{level}/{node_id}", response_model=CascadeReport, summary="Delete a node")
def delete_node(level: Level, node_id: int, engine: OutcomeEngine = Depends(get_engine)):
    return _call(lambda: engine.delete_node(level, node_id))


# =============================================================================
# HEALTH CHECK
# =============================================================================

@router.get("/health", summary="Outcome engine health check")
def health_check(engine: OutcomeEngine = Depends(get_engine)):
    return {"status": "ok", "engine": "outcomes", "version": engine.version}
