"""
Persistence Collaborators

SQLAlchemy-backed read/write access used by the engine:
- NodeRepository: AC / LO / RO nodes and their scopes
- MappingGraph: AC->LO and LO->RO edges
- ScoreStore: per student, per node score records

All three operate on the session owned by the current unit of work and
never commit on their own. Writes are flushed immediately so that later
reads in the same cascade see them.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.orm import Session

from ..models import AssessmentCriterion, LearningOutcome, ReportOutcome, OutcomeMapping, OutcomeScore
from .constants import Level, MappingLevel
from .contracts import MappingEdge, NodeRecord, ScoreRecord, Scope
from .errors import NodeNotFound


NODE_MODELS = {
    Level.AC: AssessmentCriterion,
    Level.LO: LearningOutcome,
    Level.RO: ReportOutcome,
}


def _to_node_record(level: Level, row) -> NodeRecord:
    return NodeRecord(
        id=row.id,
        level=level,
        name=row.name,
        subject=row.subject,
        year=row.year,
        quarter=row.quarter,
        classname=row.classname,
        max_marks=getattr(row, "max_marks", None),
    )


# =============================================================================
# NODES
# =============================================================================

class NodeRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, level: Level, node_id: int) -> Optional[NodeRecord]:
        row = self.db.get(NODE_MODELS[level], node_id)
        return _to_node_record(level, row) if row else None

    def require(self, level: Level, node_id: int) -> NodeRecord:
        node = self.get(level, node_id)
        if node is None:
            raise NodeNotFound(level, node_id)
        return node

    def find_by_name(self, level: Level, scope: Scope, name: str) -> Optional[NodeRecord]:
        model = NODE_MODELS[level]
        row = self.db.execute(
            select(model).where(
                model.name == name,
                model.subject == scope.subject,
                model.year == scope.year,
                model.quarter == scope.quarter,
                model.classname == scope.classname,
            )
        ).scalar_one_or_none()
        return _to_node_record(level, row) if row else None

    def list_in_scope(self, level: Level, scope: Scope) -> List[NodeRecord]:
        model = NODE_MODELS[level]
        rows = self.db.execute(
            select(model)
            .where(
                model.subject == scope.subject,
                model.year == scope.year,
                model.quarter == scope.quarter,
                model.classname == scope.classname,
            )
            .order_by(model.id)
        ).scalars()
        return [_to_node_record(level, row) for row in rows]

    def create(self, level: Level, scope: Scope, name: str, max_marks: Optional[float] = None) -> NodeRecord:
        model = NODE_MODELS[level]
        fields = dict(name=name, **scope.model_dump())
        if level == Level.AC:
            fields["max_marks"] = max_marks
        row = model(**fields)
        self.db.add(row)
        self.db.flush()
        return _to_node_record(level, row)

    def rename(self, level: Level, node_id: int, name: str) -> NodeRecord:
        row = self.db.get(NODE_MODELS[level], node_id)
        if row is None:
            raise NodeNotFound(level, node_id)
        row.name = name
        self.db.flush()
        return _to_node_record(level, row)

    def set_max_marks(self, ac_id: int, max_marks: float) -> NodeRecord:
        row = self.db.get(AssessmentCriterion, ac_id)
        if row is None:
            raise NodeNotFound(Level.AC, ac_id)
        row.max_marks = max_marks
        self.db.flush()
        return _to_node_record(Level.AC, row)

    def delete(self, level: Level, node_id: int) -> bool:
        row = self.db.get(NODE_MODELS[level], node_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.flush()
        return True


# =============================================================================
# MAPPINGS
# =============================================================================

class MappingGraph:
    def __init__(self, db: Session):
        self.db = db

    def _edge_row(self, child_id: int, parent_id: int, level: MappingLevel) -> Optional[OutcomeMapping]:
        return self.db.execute(
            select(OutcomeMapping).where(
                OutcomeMapping.level == level.value,
                OutcomeMapping.child_id == child_id,
                OutcomeMapping.parent_id == parent_id,
            )
        ).scalar_one_or_none()

    def read_edges(self, parent_id: int, level: MappingLevel) -> List[MappingEdge]:
        """Incoming edges of a parent, ordered by child id."""
        rows = self.db.execute(
            select(OutcomeMapping)
            .where(OutcomeMapping.level == level.value, OutcomeMapping.parent_id == parent_id)
            .order_by(OutcomeMapping.child_id)
        ).scalars()
        return [MappingEdge.model_validate(row) for row in rows]

    def read_edges_by_child(self, child_id: int, level: MappingLevel) -> List[MappingEdge]:
        """Outgoing edges of a child, ordered by parent id."""
        rows = self.db.execute(
            select(OutcomeMapping)
            .where(OutcomeMapping.level == level.value, OutcomeMapping.child_id == child_id)
            .order_by(OutcomeMapping.parent_id)
        ).scalars()
        return [MappingEdge.model_validate(row) for row in rows]

    def parents_of(self, child_id: int, level: MappingLevel) -> List[int]:
        return [e.parent_id for e in self.read_edges_by_child(child_id, level)]

    def upsert_edge(self, edge: MappingEdge) -> MappingEdge:
        """Insert or update an edge's priority. The weight is left for the normalizer."""
        row = self._edge_row(edge.child_id, edge.parent_id, edge.level)
        if row is None:
            row = OutcomeMapping(
                level=edge.level.value,
                child_id=edge.child_id,
                parent_id=edge.parent_id,
                priority=edge.priority.value,
                weight=None,
            )
            self.db.add(row)
        else:
            row.priority = edge.priority.value
        self.db.flush()
        return MappingEdge.model_validate(row)

    def save_weights(self, edges: Iterable[MappingEdge]) -> None:
        for edge in edges:
            row = self._edge_row(edge.child_id, edge.parent_id, edge.level)
            if row is not None:
                row.weight = edge.weight
        self.db.flush()

    def delete_edge(self, child_id: int, parent_id: int, level: MappingLevel) -> bool:
        row = self._edge_row(child_id, parent_id, level)
        if row is None:
            return False
        self.db.delete(row)
        self.db.flush()
        return True

    def delete_edges_of_node(self, node_id: int, level: Level) -> int:
        """Remove every edge touching a node, in both directions."""
        removed = 0
        if level in (Level.LO, Level.RO):
            removed += self.db.execute(
                delete(OutcomeMapping).where(
                    OutcomeMapping.level == MappingLevel.for_parent(level).value,
                    OutcomeMapping.parent_id == node_id,
                )
            ).rowcount
        if level in (Level.AC, Level.LO):
            removed += self.db.execute(
                delete(OutcomeMapping).where(
                    OutcomeMapping.level == MappingLevel.for_child(level).value,
                    OutcomeMapping.child_id == node_id,
                )
            ).rowcount
        self.db.flush()
        return removed


# =============================================================================
# SCORES
# =============================================================================

class ScoreStore:
    def __init__(self, db: Session):
        self.db = db

    def _score_row(self, student_id: str, node_id: int, level: Level) -> Optional[OutcomeScore]:
        return self.db.execute(
            select(OutcomeScore).where(
                OutcomeScore.level == level.value,
                OutcomeScore.node_id == node_id,
                OutcomeScore.student_id == student_id,
            )
        ).scalar_one_or_none()

    def read_score(self, student_id: str, node_id: int, level: Level) -> Optional[ScoreRecord]:
        row = self._score_row(student_id, node_id, level)
        return ScoreRecord.model_validate(row) if row else None

    def read_scores_for_node(self, node_id: int, level: Level) -> List[ScoreRecord]:
        rows = self.db.execute(
            select(OutcomeScore)
            .where(OutcomeScore.level == level.value, OutcomeScore.node_id == node_id)
            .order_by(OutcomeScore.student_id)
        ).scalars()
        return [ScoreRecord.model_validate(row) for row in rows]

    def read_scores_for_student(self, student_id: str, level: Level) -> List[ScoreRecord]:
        rows = self.db.execute(
            select(OutcomeScore)
            .where(OutcomeScore.level == level.value, OutcomeScore.student_id == student_id)
            .order_by(OutcomeScore.node_id)
        ).scalars()
        return [ScoreRecord.model_validate(row) for row in rows]

    def upsert_score(self, student_id: str, node_id: int, level: Level, value: float) -> ScoreRecord:
        row = self._score_row(student_id, node_id, level)
        if row is None:
            row = OutcomeScore(level=level.value, node_id=node_id, student_id=student_id, value=value)
            self.db.add(row)
        else:
            row.value = value
        self.db.flush()
        return ScoreRecord.model_validate(row)

    def average_by_node(
        self,
        node_ids: List[int],
        level: Level,
        student_ids: Optional[List[str]] = None,
    ) -> Dict[int, tuple]:
        """Mean score and row count per node, for nodes with at least one score."""
        if not node_ids:
            return {}
        query = (
            select(OutcomeScore.node_id, func.avg(OutcomeScore.value), func.count(OutcomeScore.id))
            .where(OutcomeScore.level == level.value, OutcomeScore.node_id.in_(node_ids))
            .group_by(OutcomeScore.node_id)
        )
        if student_ids is not None:
            query = query.where(OutcomeScore.student_id.in_(student_ids))
        return {node_id: (float(avg), int(count)) for node_id, avg, count in self.db.execute(query)}

    def delete_scores_for_node(self, node_id: int, level: Level) -> int:
        removed = self.db.execute(
            delete(OutcomeScore).where(OutcomeScore.level == level.value, OutcomeScore.node_id == node_id)
        ).rowcount
        self.db.flush()
        return removed
