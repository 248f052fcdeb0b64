"""
Weight Normalizer

Turns the base weights of a sibling edge set into normalized weights that
sum to 1.0. Weights belong to the whole sibling set, so they are always
recomputed together.
"""

import math
from typing import List

from .contracts import MappingEdge
from .errors import NoSiblings
from .priority import resolve_priority


def normalize_weights(edges: List[MappingEdge]) -> List[MappingEdge]:
    """
    Compute normalized weights for edges sharing one parent.

    weight(e) = base(e.priority) / sum(base(s.priority) for s in siblings)

    Args:
        edges: All incoming edges of a single parent

    Returns:
        New MappingEdge objects with weight set, in input order

    Raises:
        NoSiblings: if edges is empty
        ValueError: if the edges do not share one parent and level
    """
    if not edges:
        raise NoSiblings()

    parents = {(e.parent_id, e.level) for e in edges}
    if len(parents) > 1:
        raise ValueError(f"Edges span {len(parents)} parents; normalize one sibling set at a time")

    base_weights = [resolve_priority(e.priority) for e in edges]
    # fsum is exactly rounded, so the result does not depend on edge order
    denominator = math.fsum(base_weights)
    if denominator == 0:
        raise NoSiblings(edges[0].parent_id, edges[0].level.parent_level.value.upper())

    return [
        edge.model_copy(update={"weight": base / denominator})
        for edge, base in zip(edges, base_weights)
    ]
