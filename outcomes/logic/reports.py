"""
Score Reports

Read-only summaries over stored scores: a student's scores at one level
with their mean, and class averages per node within a scope.
"""

from typing import List, Optional

from .constants import Level, SCORE_DECIMALS
from .contracts import NodeAverage, Scope, StudentScoreSummary
from .unit_of_work import UnitOfWork


def student_scores(
    uow: UnitOfWork,
    student_id: str,
    level: Level,
    node_id: Optional[int] = None,
) -> StudentScoreSummary:
    """
    All scores of one student at a level, plus their mean.

    Args:
        uow: Active unit of work
        student_id: Student to report on
        level: AC, LO or RO
        node_id: Restrict to a single node

    Returns:
        StudentScoreSummary (average_score is None when there are no scores)
    """
    records = uow.scores.read_scores_for_student(student_id, level)
    if node_id is not None:
        records = [r for r in records if r.node_id == node_id]

    average = None
    if records:
        average = round(sum(r.value for r in records) / len(records), SCORE_DECIMALS)

    return StudentScoreSummary(student_id=student_id, level=level, scores=records, average_score=average)


def class_averages(
    uow: UnitOfWork,
    scope: Scope,
    level: Level,
    student_ids: Optional[List[str]] = None,
) -> List[NodeAverage]:
    """
    Mean score per node in a scope.

    student_ids narrows the average to one class section (the roster is
    owned elsewhere); None averages over every stored score. Nodes nobody
    has a score for are omitted.
    """
    nodes = uow.nodes.list_in_scope(level, scope)
    averages = uow.scores.average_by_node([n.id for n in nodes], level, student_ids)

    result: List[NodeAverage] = []
    for node in nodes:
        if node.id not in averages:
            continue
        mean, count = averages[node.id]
        result.append(
            NodeAverage(
                node_id=node.id,
                name=node.name,
                average_score=round(mean, SCORE_DECIMALS),
                students_counted=count,
            )
        )
    return result
