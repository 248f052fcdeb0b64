"""
Outcome Logic Module

Provides the weighted AC -> LO -> RO score-aggregation engine.
"""

from .constants import PriorityTag, Level, MappingLevel, PRIORITY_WEIGHT_MAP
from .contracts import (
    Scope,
    NodeRecord,
    MappingEdge,
    ScoreRecord,
    ScoreEntry,
    MutationEvent,
    MutationKind,
    RecomputeResult,
    RecomputeStatus,
    CascadeReport,
)
from .errors import (
    OutcomeEngineError,
    InvalidPriority,
    InvalidScore,
    NoSiblings,
    ScopeMismatch,
    NodeNotFound,
    MappingNotFound,
    ScoreNotFound,
    DuplicateNode,
    TransactionConflict,
)
from .priority import parse_priority, resolve_priority
from .normalizer import normalize_weights
from .engine import OutcomeEngine

__all__ = [
    # Main engine
    "OutcomeEngine",

    # Pure helpers
    "parse_priority",
    "resolve_priority",
    "normalize_weights",

    # Contracts
    "Scope",
    "NodeRecord",
    "MappingEdge",
    "ScoreRecord",
    "ScoreEntry",
    "MutationEvent",
    "MutationKind",
    "RecomputeResult",
    "RecomputeStatus",
    "CascadeReport",

    # Enums
    "PriorityTag",
    "Level",
    "MappingLevel",
    "PRIORITY_WEIGHT_MAP",

    # Errors
    "OutcomeEngineError",
    "InvalidPriority",
    "InvalidScore",
    "NoSiblings",
    "ScopeMismatch",
    "NodeNotFound",
    "MappingNotFound",
    "ScoreNotFound",
    "DuplicateNode",
    "TransactionConflict",
]
