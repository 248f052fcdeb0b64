"""
Data Contracts for the Outcome Engine

Pydantic models for everything that crosses the engine boundary: scope,
mapping edges, score records, mutation events and recompute results.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from .constants import Level, MappingLevel, PriorityTag


# =============================================================================
# CANONICAL SCHEMA
# =============================================================================

class Scope(BaseModel):
    """The (subject, year, quarter, class) tuple partitioning the hierarchy."""
    subject: str = Field(min_length=1)
    year: str = Field(min_length=1)
    quarter: str = Field(min_length=1)
    classname: str = Field(min_length=1)

    class Config:
        frozen = True
        extra = "forbid"

    def as_tuple(self) -> Tuple[str, str, str, str]:
        return (self.subject, self.year, self.quarter, self.classname)


class NodeRecord(BaseModel):
    """A hierarchy node (AC, LO or RO) with its scope."""
    id: int
    level: Level
    name: str
    subject: str
    year: str
    quarter: str
    classname: str
    max_marks: Optional[float] = None   # ACs only

    @property
    def scope(self) -> Scope:
        return Scope(subject=self.subject, year=self.year, quarter=self.quarter, classname=self.classname)


class MappingEdge(BaseModel):
    """
    AC->LO or LO->RO edge.

    weight is derived by the normalizer and is never supplied by a user.
    """
    child_id: int
    parent_id: int
    level: MappingLevel
    priority: PriorityTag
    weight: Optional[float] = None

    class Config:
        from_attributes = True


class ScoreRecord(BaseModel):
    """Per student, per node score. AC values are obtained/max ratios."""
    student_id: str
    node_id: int
    level: Level
    value: float
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# MUTATIONS
# =============================================================================

class MutationKind(str, Enum):
    AC_SCORE_WRITTEN = "ac_score_written"
    AC_LO_MAPPING_CHANGED = "ac_lo_mapping_changed"
    LO_RO_MAPPING_CHANGED = "lo_ro_mapping_changed"
    LO_SCORE_OVERWRITTEN = "lo_score_overwritten"


class MutationEvent(BaseModel):
    """
    A write that may require recomputation.

    AC_SCORE_WRITTEN and LO_SCORE_OVERWRITTEN carry the written node as
    node_id; the mapping events carry the parent whose sibling set changed.
    """
    kind: MutationKind
    node_id: int

    class Config:
        frozen = True

    @classmethod
    def ac_score_written(cls, ac_id: int) -> "MutationEvent":
        return cls(kind=MutationKind.AC_SCORE_WRITTEN, node_id=ac_id)

    @classmethod
    def lo_score_overwritten(cls, lo_id: int) -> "MutationEvent":
        return cls(kind=MutationKind.LO_SCORE_OVERWRITTEN, node_id=lo_id)

    @classmethod
    def mapping_changed(cls, level: MappingLevel, parent_id: int) -> "MutationEvent":
        kind = (
            MutationKind.AC_LO_MAPPING_CHANGED
            if level == MappingLevel.AC_LO
            else MutationKind.LO_RO_MAPPING_CHANGED
        )
        return cls(kind=kind, node_id=parent_id)


# =============================================================================
# RESULTS
# =============================================================================

class RecomputeStatus(str, Enum):
    UPDATED = "updated"
    NO_SIBLINGS = "no_siblings"


class RecomputeResult(BaseModel):
    """Outcome of recomputing one LO or RO."""
    node_id: int
    level: Level
    status: RecomputeStatus
    edges: List[MappingEdge] = Field(default_factory=list)
    students_updated: List[str] = Field(default_factory=list)


class CascadeReport(BaseModel):
    """Every recomputation performed by one cascade, in execution order."""
    learning_outcomes: List[RecomputeResult] = Field(default_factory=list)
    report_outcomes: List[RecomputeResult] = Field(default_factory=list)

    @property
    def recomputed_lo_ids(self) -> List[int]:
        return [r.node_id for r in self.learning_outcomes]

    @property
    def recomputed_ro_ids(self) -> List[int]:
        return [r.node_id for r in self.report_outcomes]


class SkippedScore(BaseModel):
    student_id: str
    obtained_marks: Optional[float] = None
    reason: str


class ScoreSubmissionResult(BaseModel):
    """Result of writing one or more AC scores."""
    ac_id: int
    saved: List[ScoreRecord] = Field(default_factory=list)
    skipped: List[SkippedScore] = Field(default_factory=list)
    cascade: CascadeReport = Field(default_factory=CascadeReport)


class MappingChangeResult(BaseModel):
    edges: List[MappingEdge] = Field(default_factory=list)
    cascade: CascadeReport = Field(default_factory=CascadeReport)


class StudentScoreSummary(BaseModel):
    student_id: str
    level: Level
    scores: List[ScoreRecord] = Field(default_factory=list)
    average_score: Optional[float] = None


class NodeAverage(BaseModel):
    node_id: int
    name: str
    average_score: float
    students_counted: int


class ScoreEntry(BaseModel):
    """One student's obtained marks on an AC."""
    student_id: str = Field(min_length=1)
    obtained_marks: Optional[float] = None

    class Config:
        extra = "forbid"


class ScoreWriteResult(BaseModel):
    record: ScoreRecord
    cascade: CascadeReport = Field(default_factory=CascadeReport)


class NodeChangeResult(BaseModel):
    node: NodeRecord
    cascade: CascadeReport = Field(default_factory=CascadeReport)
