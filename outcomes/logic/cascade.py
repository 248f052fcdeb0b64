"""
Cascade Coordinator

Given the mutations written in one unit of work, determines which LOs and
ROs need recomputation and drives the aggregators in dependency order:

    AC score written          -> LOs mapped from the AC, then their ROs
    AC->LO mapping changed    -> that LO, then its ROs
    LO->RO mapping changed    -> that RO only
    LO score overwritten      -> ROs mapped from the LO

All LOs are recomputed before the RO closure is collected, so no RO reads
an LO score that the same cascade is about to change. Node sets are
deduplicated; only nodes reachable from a mutation are scheduled.
"""

import logging
from typing import List, Sequence

from . import aggregator
from .constants import MappingLevel
from .contracts import CascadeReport, MutationEvent, MutationKind
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def _ordered_unique(ids) -> List[int]:
    return list(dict.fromkeys(ids))


class CascadeCoordinator:
    """Runs one cascade against the unit of work it is given."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def affected_learning_outcomes(self, events: Sequence[MutationEvent]) -> List[int]:
        """LOs whose inputs changed, in first-seen order."""
        lo_ids: List[int] = []
        for event in events:
            if event.kind == MutationKind.AC_SCORE_WRITTEN:
                lo_ids.extend(self.uow.graph.parents_of(event.node_id, MappingLevel.AC_LO))
            elif event.kind == MutationKind.AC_LO_MAPPING_CHANGED:
                lo_ids.append(event.node_id)
        return _ordered_unique(lo_ids)

    def affected_report_outcomes(self, events: Sequence[MutationEvent], lo_ids: Sequence[int]) -> List[int]:
        """
        ROs to recompute once the given LOs are up to date.

        Includes ROs whose own sibling set changed, ROs fed by a recomputed
        LO, and ROs fed by an LO whose score was overwritten directly.
        """
        ro_ids: List[int] = []
        for event in events:
            if event.kind == MutationKind.LO_RO_MAPPING_CHANGED:
                ro_ids.append(event.node_id)

        changed_los = list(lo_ids) + [
            e.node_id for e in events if e.kind == MutationKind.LO_SCORE_OVERWRITTEN
        ]
        for lo_id in _ordered_unique(changed_los):
            ro_ids.extend(self.uow.graph.parents_of(lo_id, MappingLevel.LO_RO))
        return _ordered_unique(ro_ids)

    def run(self, events: Sequence[MutationEvent]) -> CascadeReport:
        """
        Recompute every node affected by the events.

        The caller owns the transaction; an exception here propagates and
        the unit of work rolls back everything written so far.
        """
        report = CascadeReport()
        if not events:
            return report

        lo_ids = self.affected_learning_outcomes(events)
        logger.info(f"Cascade for {len(events)} mutation(s): {len(lo_ids)} LO(s) to recompute")
        for lo_id in lo_ids:
            report.learning_outcomes.append(aggregator.recompute_lo(self.uow, lo_id))

        # collected only after every LO above has been rewritten
        ro_ids = self.affected_report_outcomes(events, lo_ids)
        for ro_id in ro_ids:
            report.report_outcomes.append(aggregator.recompute_ro(self.uow, ro_id))

        logger.info(f"Cascade finished: LOs {lo_ids}, ROs {ro_ids}")
        return report
