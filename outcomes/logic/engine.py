"""
Outcome Engine

Entry point used by the request-handling layer. Every mutating operation:
1. Validates its input (priorities, mark ranges) before touching the store
2. Opens one unit of work
3. Writes the mutation and runs the cascade inside that unit of work
4. Commits everything or nothing

A TransactionConflict re-runs the whole operation from the start, up to
max_retries times.
"""

import logging
import math
from typing import Callable, Dict, Iterable, List, Optional, TypeVar, Union

from sqlalchemy.orm import Session

from . import aggregator, reports
from .cascade import CascadeCoordinator
from .constants import CASCADE_MAX_RETRIES, Level, MappingLevel, PriorityTag, MIN_SCORE, MAX_SCORE
from .contracts import (
    CascadeReport,
    MappingChangeResult,
    MappingEdge,
    MutationEvent,
    NodeAverage,
    NodeChangeResult,
    NodeRecord,
    RecomputeResult,
    ScoreEntry,
    ScoreRecord,
    ScoreSubmissionResult,
    ScoreWriteResult,
    SkippedScore,
    Scope,
    StudentScoreSummary,
)
from .errors import (
    DuplicateNode,
    InvalidScore,
    MappingNotFound,
    ScopeMismatch,
    ScoreNotFound,
    TransactionConflict,
)
from .priority import parse_priority
from .unit_of_work import UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)

T = TypeVar("T")
Priority = Union[str, PriorityTag]


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _check_max_marks(max_marks) -> float:
    if not _is_number(max_marks) or max_marks <= 0:
        raise InvalidScore(f"max_marks must be a positive number, got {max_marks!r}")
    return float(max_marks)


def _mark_problem(obtained_marks, max_marks: Optional[float]) -> Optional[str]:
    """Reason the marks are unusable, or None when they are fine."""
    if obtained_marks is None:
        return "obtained_marks is missing"
    if not _is_number(obtained_marks):
        return f"obtained_marks must be a number, got {obtained_marks!r}"
    if obtained_marks < 0:
        return "obtained_marks is negative"
    if max_marks is not None and obtained_marks > max_marks:
        return f"obtained_marks {obtained_marks} exceeds max_marks {max_marks}"
    return None


def _coerce_level(level: Union[str, Level]) -> Level:
    try:
        return Level(level)
    except ValueError:
        raise ValueError(f"Unknown level '{level}'. Must be one of: ac, lo, ro.") from None


def _coerce_mapping_level(level: Union[str, MappingLevel]) -> MappingLevel:
    try:
        return MappingLevel(level)
    except ValueError:
        raise ValueError(f"Unknown mapping level '{level}'. Must be ac_lo or lo_ro.") from None


def _check_same_scope(child: NodeRecord, parent: NodeRecord) -> None:
    if child.scope.as_tuple() != parent.scope.as_tuple():
        raise ScopeMismatch(
            f"{child.level.value.upper()} {child.id}",
            f"{parent.level.value.upper()} {parent.id}",
        )


def _check_new_name(name: Optional[str]) -> None:
    if name is not None and not name.strip():
        raise ValueError("Node name cannot be blank")


# =============================================================================
# ENGINE
# =============================================================================

class OutcomeEngine:
    """
    Weighted AC -> LO -> RO score aggregation.

    The engine keeps no state between calls; each operation works on a
    fresh snapshot read inside its own transaction.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        max_retries: Optional[int] = None,
    ):
        """
        Args:
            session_factory: Callable returning a new SQLAlchemy Session.
                Defaults to db.SessionLocal.
            max_retries: Full re-runs allowed after a TransactionConflict.
                Defaults to OUTCOMES_CASCADE_RETRIES.
        """
        if session_factory is None:
            from db import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.max_retries = CASCADE_MAX_RETRIES if max_retries is None else max_retries
        self.version = "1.0.0"

    def _execute(self, description: str, operation: Callable[[UnitOfWork], T]) -> T:
        attempt = 0
        while True:
            try:
                with unit_of_work(self.session_factory) as uow:
                    return operation(uow)
            except TransactionConflict:
                if attempt >= self.max_retries:
                    logger.error(f"{description} failed after {attempt + 1} attempt(s)")
                    raise
                attempt += 1
                logger.warning(f"Retrying {description} from the start ({attempt}/{self.max_retries})")

    # -------------------------------------------------------------------------
    # Scores
    # -------------------------------------------------------------------------

    def set_ac_score(
        self,
        student_id: str,
        ac_id: int,
        obtained_marks: float,
        max_marks: Optional[float] = None,
    ) -> ScoreSubmissionResult:
        """
        Store obtained_marks / max_marks for one student and cascade.

        When max_marks is omitted the AC's own max_marks is used.

        Raises:
            InvalidScore: marks out of range
            NodeNotFound: unknown AC
        """
        if max_marks is not None:
            max_marks = _check_max_marks(max_marks)
        problem = _mark_problem(obtained_marks, max_marks)
        if problem:
            raise InvalidScore(problem)

        return self.set_ac_scores(
            ac_id,
            [ScoreEntry(student_id=student_id, obtained_marks=obtained_marks)],
            max_marks=max_marks,
        )

    def set_ac_scores(
        self,
        ac_id: int,
        entries: Iterable[Union[ScoreEntry, dict]],
        max_marks: Optional[float] = None,
    ) -> ScoreSubmissionResult:
        """
        Store many students' marks on one AC in a single cascade.

        Entries with missing, negative or too-high marks are skipped and
        reported; if nothing is left to save, InvalidScore is raised and
        nothing is written.
        """
        entries = [e if isinstance(e, ScoreEntry) else ScoreEntry(**e) for e in entries]
        if not entries:
            raise InvalidScore("No scores supplied")
        if max_marks is not None:
            max_marks = _check_max_marks(max_marks)

        def operation(uow: UnitOfWork) -> ScoreSubmissionResult:
            ac = uow.nodes.require(Level.AC, ac_id)
            limit = max_marks if max_marks is not None else _check_max_marks(ac.max_marks)

            result = ScoreSubmissionResult(ac_id=ac_id)
            for entry in entries:
                problem = _mark_problem(entry.obtained_marks, limit)
                if problem:
                    result.skipped.append(
                        SkippedScore(student_id=entry.student_id, obtained_marks=entry.obtained_marks, reason=problem)
                    )
                    continue
                ratio = entry.obtained_marks / limit
                result.saved.append(uow.scores.upsert_score(entry.student_id, ac_id, Level.AC, ratio))

            if not result.saved:
                reasons = "; ".join(f"{s.student_id}: {s.reason}" for s in result.skipped)
                raise InvalidScore(f"No valid scores to save ({reasons})")

            result.cascade = CascadeCoordinator(uow).run([MutationEvent.ac_score_written(ac_id)])
            logger.info(f"Saved {len(result.saved)} score(s) on AC {ac_id}, skipped {len(result.skipped)}")
            return result

        return self._execute(f"score submission for AC {ac_id}", operation)

    def set_lo_score(self, student_id: str, lo_id: int, value: float) -> ScoreWriteResult:
        """Overwrite an LO score directly, bypassing AC aggregation, and update its ROs."""
        if not _is_number(value) or not MIN_SCORE <= value <= MAX_SCORE:
            raise InvalidScore(f"LO score must be between {MIN_SCORE} and {MAX_SCORE}, got {value!r}")

        def operation(uow: UnitOfWork) -> ScoreWriteResult:
            uow.nodes.require(Level.LO, lo_id)
            record = uow.scores.upsert_score(student_id, lo_id, Level.LO, float(value))
            cascade = CascadeCoordinator(uow).run([MutationEvent.lo_score_overwritten(lo_id)])
            return ScoreWriteResult(record=record, cascade=cascade)

        return self._execute(f"LO {lo_id} score overwrite", operation)

    def get_score(self, student_id: str, node_id: int, level: Union[str, Level]) -> ScoreRecord:
        """
        Raises:
            ScoreNotFound: no record for (student, node, level)
        """
        level = _coerce_level(level)

        def operation(uow: UnitOfWork) -> ScoreRecord:
            record = uow.scores.read_score(student_id, node_id, level)
            if record is None:
                raise ScoreNotFound(student_id, node_id, level)
            return record

        return self._execute("score lookup", operation)

    def student_scores(
        self,
        student_id: str,
        level: Union[str, Level],
        node_id: Optional[int] = None,
    ) -> StudentScoreSummary:
        level = _coerce_level(level)
        return self._execute(
            "student score summary",
            lambda uow: reports.student_scores(uow, student_id, level, node_id),
        )

    def class_averages(
        self,
        scope: Scope,
        level: Union[str, Level],
        student_ids: Optional[List[str]] = None,
    ) -> List[NodeAverage]:
        level = _coerce_level(level)
        return self._execute(
            "class averages",
            lambda uow: reports.class_averages(uow, scope, level, student_ids),
        )

    # -------------------------------------------------------------------------
    # Mappings
    # -------------------------------------------------------------------------

    def set_mapping_priorities(
        self,
        parent_id: int,
        level: Union[str, MappingLevel],
        priorities: Dict[int, Priority],
    ) -> MappingChangeResult:
        """
        Create or re-prioritize several sibling edges of one parent.

        All tags are validated first; the parent is then recomputed once
        (and, for LOs, every RO above it).

        Raises:
            InvalidPriority: any tag is unknown (nothing is written)
            ScopeMismatch: a child lives in another scope (nothing is written)
            NodeNotFound: parent or child does not exist
        """
        level = _coerce_mapping_level(level)
        if not priorities:
            raise ValueError("At least one child priority is required")
        parsed = {child_id: parse_priority(tag) for child_id, tag in priorities.items()}

        def operation(uow: UnitOfWork) -> MappingChangeResult:
            parent = uow.nodes.require(level.parent_level, parent_id)
            for child_id in parsed:
                _check_same_scope(uow.nodes.require(level.child_level, child_id), parent)

            for child_id, tag in parsed.items():
                uow.graph.upsert_edge(
                    MappingEdge(child_id=child_id, parent_id=parent_id, level=level, priority=tag)
                )

            cascade = CascadeCoordinator(uow).run([MutationEvent.mapping_changed(level, parent_id)])
            return MappingChangeResult(edges=uow.graph.read_edges(parent_id, level), cascade=cascade)

        return self._execute(f"{level.value} mapping update for {parent_id}", operation)

    def set_ac_priority(self, ac_id: int, lo_id: int, priority: Priority) -> MappingChangeResult:
        """Upsert the AC->LO edge with the given priority and cascade."""
        return self.set_mapping_priorities(lo_id, MappingLevel.AC_LO, {ac_id: priority})

    def set_lo_priority(self, lo_id: int, ro_id: int, priority: Priority) -> MappingChangeResult:
        """Upsert the LO->RO edge with the given priority and cascade."""
        return self.set_mapping_priorities(ro_id, MappingLevel.LO_RO, {lo_id: priority})

    def delete_mapping(
        self,
        child_id: int,
        parent_id: int,
        level: Union[str, MappingLevel],
    ) -> MappingChangeResult:
        """
        Remove one edge and recompute its parent.

        Raises:
            MappingNotFound: the edge does not exist
        """
        level = _coerce_mapping_level(level)

        def operation(uow: UnitOfWork) -> MappingChangeResult:
            if not uow.graph.delete_edge(child_id, parent_id, level):
                raise MappingNotFound(child_id, parent_id, level)
            cascade = CascadeCoordinator(uow).run([MutationEvent.mapping_changed(level, parent_id)])
            return MappingChangeResult(edges=uow.graph.read_edges(parent_id, level), cascade=cascade)

        return self._execute(f"{level.value} mapping delete {child_id}->{parent_id}", operation)

    def get_mapping(self, parent_id: int, level: Union[str, MappingLevel]) -> List[MappingEdge]:
        level = _coerce_mapping_level(level)

        def operation(uow: UnitOfWork) -> List[MappingEdge]:
            uow.nodes.require(level.parent_level, parent_id)
            return uow.graph.read_edges(parent_id, level)

        return self._execute("mapping lookup", operation)

    def recompute(self, node_id: int, level: Union[str, Level]) -> RecomputeResult:
        """
        Recompute one LO or RO on demand.

        Returns status NO_SIBLINGS, with scores untouched, for a node with
        no mapped children. Recomputing an LO does not touch its ROs.
        """
        level = _coerce_level(level)
        if level not in aggregator.RECOMPUTERS:
            raise ValueError("Only LO and RO nodes can be recomputed")

        def operation(uow: UnitOfWork) -> RecomputeResult:
            uow.nodes.require(level, node_id)
            return aggregator.RECOMPUTERS[level](uow, node_id)

        return self._execute(f"recompute {level.value} {node_id}", operation)

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def _create_node(
        self,
        level: Level,
        scope: Scope,
        name: str,
        max_marks: Optional[float] = None,
        parent_priorities: Optional[Dict[int, Priority]] = None,
    ) -> NodeChangeResult:
        name = (name or "").strip()
        if not name:
            raise ValueError("Node name is required")
        parsed = {pid: parse_priority(tag) for pid, tag in (parent_priorities or {}).items()}

        def operation(uow: UnitOfWork) -> NodeChangeResult:
            if uow.nodes.find_by_name(level, scope, name):
                raise DuplicateNode(f"{level.value.upper()} '{name}' already exists in this scope")

            mapping_level = MappingLevel.for_child(level) if parsed else None
            for parent_id in parsed:
                parent = uow.nodes.require(mapping_level.parent_level, parent_id)
                if parent.scope.as_tuple() != scope.as_tuple():
                    raise ScopeMismatch(f"new {level.value.upper()} '{name}'", f"{parent.level.value.upper()} {parent_id}")
            node = uow.nodes.create(level, scope, name, max_marks)

            events = []
            for parent_id, tag in parsed.items():
                uow.graph.upsert_edge(
                    MappingEdge(child_id=node.id, parent_id=parent_id, level=mapping_level, priority=tag)
                )
                events.append(MutationEvent.mapping_changed(mapping_level, parent_id))

            cascade = CascadeCoordinator(uow).run(events)
            logger.info(f"Created {level.value.upper()} {node.id} '{name}' with {len(parsed)} mapping(s)")
            return NodeChangeResult(node=node, cascade=cascade)

        return self._execute(f"create {level.value} '{name}'", operation)

    def create_assessment_criterion(
        self,
        scope: Scope,
        name: str,
        max_marks: float,
        lo_priorities: Optional[Dict[int, Priority]] = None,
    ) -> NodeChangeResult:
        """Create an AC, optionally mapped to LOs of the same scope."""
        return self._create_node(Level.AC, scope, name, _check_max_marks(max_marks), lo_priorities)

    def create_learning_outcome(
        self,
        scope: Scope,
        name: str,
        ro_priorities: Optional[Dict[int, Priority]] = None,
    ) -> NodeChangeResult:
        """Create an LO, optionally mapped to ROs of the same scope."""
        return self._create_node(Level.LO, scope, name, parent_priorities=ro_priorities)

    def create_report_outcome(self, scope: Scope, name: str) -> NodeRecord:
        return self._create_node(Level.RO, scope, name).node

    def _rename(self, uow: UnitOfWork, node: NodeRecord, name: str) -> NodeRecord:
        name = name.strip()
        if name == node.name:
            return node
        if uow.nodes.find_by_name(node.level, node.scope, name):
            raise DuplicateNode(f"{node.level.value.upper()} '{name}' already exists in this scope")
        return uow.nodes.rename(node.level, node.id, name)

    def update_assessment_criterion(
        self,
        ac_id: int,
        name: Optional[str] = None,
        max_marks: Optional[float] = None,
    ) -> NodeRecord:
        """
        Rename an AC or change its max_marks.

        Stored scores are ratios, so a new max_marks only affects marks
        submitted afterwards and triggers no recomputation.
        """
        if max_marks is not None:
            max_marks = _check_max_marks(max_marks)
        _check_new_name(name)

        def operation(uow: UnitOfWork) -> NodeRecord:
            node = uow.nodes.require(Level.AC, ac_id)
            if name is not None:
                node = self._rename(uow, node, name)
            if max_marks is not None:
                node = uow.nodes.set_max_marks(ac_id, max_marks)
            return node

        return self._execute(f"update ac {ac_id}", operation)

    def update_learning_outcome(
        self,
        lo_id: int,
        name: Optional[str] = None,
        ro_priorities: Optional[Dict[int, Priority]] = None,
    ) -> NodeChangeResult:
        """
        Rename an LO and/or replace its whole set of RO mappings.

        ro_priorities=None leaves the mappings alone; an empty dict unmaps
        the LO from every RO. Each RO that loses, gains or keeps the LO is
        recomputed in one cascade.

        Raises:
            InvalidPriority: any tag is unknown (nothing is written)
            ScopeMismatch: an RO lives in another scope (nothing is written)
            DuplicateNode: the new name is taken in this scope
        """
        _check_new_name(name)
        parsed = None
        if ro_priorities is not None:
            parsed = {ro_id: parse_priority(tag) for ro_id, tag in ro_priorities.items()}

        def operation(uow: UnitOfWork) -> NodeChangeResult:
            node = uow.nodes.require(Level.LO, lo_id)
            if name is not None:
                node = self._rename(uow, node, name)
            if parsed is None:
                return NodeChangeResult(node=node)

            for ro_id in parsed:
                _check_same_scope(node, uow.nodes.require(Level.RO, ro_id))

            previous = uow.graph.parents_of(lo_id, MappingLevel.LO_RO)
            for ro_id in previous:
                if ro_id not in parsed:
                    uow.graph.delete_edge(lo_id, ro_id, MappingLevel.LO_RO)
            for ro_id, tag in parsed.items():
                uow.graph.upsert_edge(
                    MappingEdge(child_id=lo_id, parent_id=ro_id, level=MappingLevel.LO_RO, priority=tag)
                )

            events = [
                MutationEvent.mapping_changed(MappingLevel.LO_RO, ro_id)
                for ro_id in dict.fromkeys(previous + list(parsed))
            ]
            cascade = CascadeCoordinator(uow).run(events)
            logger.info(f"Replaced RO mappings of LO {lo_id}: {previous} -> {list(parsed)}")
            return NodeChangeResult(node=node, cascade=cascade)

        return self._execute(f"update lo {lo_id}", operation)

    def update_report_outcome(self, ro_id: int, name: str) -> NodeRecord:
        """Rename an RO. Names stay unique within the scope."""
        if name is None:
            raise ValueError("Node name is required")
        _check_new_name(name)

        def operation(uow: UnitOfWork) -> NodeRecord:
            return self._rename(uow, uow.nodes.require(Level.RO, ro_id), name)

        return self._execute(f"update ro {ro_id}", operation)

    def get_node(self, level: Union[str, Level], node_id: int) -> NodeRecord:
        level = _coerce_level(level)
        return self._execute("node lookup", lambda uow: uow.nodes.require(level, node_id))

    def list_nodes(self, level: Union[str, Level], scope: Scope) -> List[NodeRecord]:
        level = _coerce_level(level)
        return self._execute("node listing", lambda uow: uow.nodes.list_in_scope(level, scope))

    def delete_node(self, level: Union[str, Level], node_id: int) -> CascadeReport:
        """
        Delete a node with its edges and scores, then recompute the parents
        that lost it (an AC's LOs and their ROs, an LO's ROs).
        """
        level = _coerce_level(level)

        def operation(uow: UnitOfWork) -> CascadeReport:
            uow.nodes.require(level, node_id)
            events = []
            if level != Level.RO:
                mapping_level = MappingLevel.for_child(level)
                events = [
                    MutationEvent.mapping_changed(mapping_level, parent_id)
                    for parent_id in uow.graph.parents_of(node_id, mapping_level)
                ]

            edges = uow.graph.delete_edges_of_node(node_id, level)
            scores = uow.scores.delete_scores_for_node(node_id, level)
            uow.nodes.delete(level, node_id)
            logger.info(
                f"Deleted {level.value.upper()} {node_id} with {edges} edge(s) and {scores} score(s)"
            )
            return CascadeCoordinator(uow).run(events)

        return self._execute(f"delete {level.value} {node_id}", operation)
