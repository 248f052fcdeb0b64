"""
Score Aggregator

Recomputes a parent node (LO or RO) from its mapped children:
1. Read the parent's incoming edges
2. Normalize their weights and persist them on the edges
3. For every student with at least one scored child:
   score = sum(weight(child) * score(student, child))
4. Upsert the parent score for those students

Children without a score for a student are left out of the sum and the
remaining weights are NOT renormalized, so a missing child lowers the
aggregate instead of being imputed.
"""

import logging
from typing import Dict

from .constants import Level, MappingLevel
from .contracts import RecomputeResult, RecomputeStatus
from .errors import NoSiblings
from .normalizer import normalize_weights
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def recompute_parent(uow: UnitOfWork, parent_id: int, level: MappingLevel) -> RecomputeResult:
    """
    Recompute weights and scores of one parent node.

    A parent with no incoming edges is skipped with status NO_SIBLINGS and
    its existing score records are left as they are.

    Args:
        uow: Active unit of work
        parent_id: LO id (for AC_LO) or RO id (for LO_RO)
        level: Which edge set feeds the parent

    Returns:
        RecomputeResult with the normalized edges and the students updated
    """
    parent_level = level.parent_level
    edges = uow.graph.read_edges(parent_id, level)

    try:
        weighted = normalize_weights(edges)
    except NoSiblings:
        logger.warning(
            f"{parent_level.value.upper()} {parent_id} has no mapped children; keeping existing scores"
        )
        return RecomputeResult(node_id=parent_id, level=parent_level, status=RecomputeStatus.NO_SIBLINGS)

    uow.graph.save_weights(weighted)

    totals: Dict[str, float] = {}
    for edge in weighted:
        for record in uow.scores.read_scores_for_node(edge.child_id, level.child_level):
            totals[record.student_id] = totals.get(record.student_id, 0.0) + edge.weight * record.value

    for student_id in sorted(totals):
        uow.scores.upsert_score(student_id, parent_id, parent_level, totals[student_id])

    logger.info(
        f"Recomputed {parent_level.value.upper()} {parent_id}: "
        f"{len(weighted)} children, {len(totals)} students"
    )
    return RecomputeResult(
        node_id=parent_id,
        level=parent_level,
        status=RecomputeStatus.UPDATED,
        edges=weighted,
        students_updated=sorted(totals),
    )


def recompute_lo(uow: UnitOfWork, lo_id: int) -> RecomputeResult:
    """Recompute a Learning Outcome from its mapped Assessment Criteria."""
    return recompute_parent(uow, lo_id, MappingLevel.AC_LO)


def recompute_ro(uow: UnitOfWork, ro_id: int) -> RecomputeResult:
    """Recompute a Report Outcome from its mapped Learning Outcomes."""
    return recompute_parent(uow, ro_id, MappingLevel.LO_RO)


RECOMPUTERS = {
    Level.LO: recompute_lo,
    Level.RO: recompute_ro,
}
