"""
Outcome Engine Constants

Priority tags, base weights, hierarchy levels and tunables used by the
score-aggregation engine. All values are deterministic.
"""

import os
from enum import Enum
from typing import Dict

from dotenv import load_dotenv

load_dotenv()


# =============================================================================
# PRIORITY TAGS
# =============================================================================

class PriorityTag(str, Enum):
    """Qualitative weight hint attached to a mapping edge."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Base weight of each priority before normalization across siblings
PRIORITY_WEIGHT_MAP: Dict[PriorityTag, float] = {
    PriorityTag.HIGH: 0.5,
    PriorityTag.MEDIUM: 0.3,
    PriorityTag.LOW: 0.2,
}

# Single-letter codes stored by older clients ("h"/"m"/"l")
PRIORITY_ALIASES: Dict[str, PriorityTag] = {
    "h": PriorityTag.HIGH,
    "m": PriorityTag.MEDIUM,
    "l": PriorityTag.LOW,
}


# =============================================================================
# HIERARCHY LEVELS
# =============================================================================

class Level(str, Enum):
    """Level of a node in the outcome hierarchy."""
    AC = "ac"   # Assessment Criterion (leaf)
    LO = "lo"   # Learning Outcome
    RO = "ro"   # Report Outcome (top)


class MappingLevel(str, Enum):
    """Kind of mapping edge, named child_parent."""
    AC_LO = "ac_lo"
    LO_RO = "lo_ro"

    @property
    def child_level(self) -> Level:
        return Level.AC if self is MappingLevel.AC_LO else Level.LO

    @property
    def parent_level(self) -> Level:
        return Level.LO if self is MappingLevel.AC_LO else Level.RO

    @classmethod
    def for_parent(cls, level: Level) -> "MappingLevel":
        if level == Level.LO:
            return cls.AC_LO
        if level == Level.RO:
            return cls.LO_RO
        raise ValueError(f"Level '{level}' has no incoming mappings")

    @classmethod
    def for_child(cls, level: Level) -> "MappingLevel":
        if level == Level.AC:
            return cls.AC_LO
        if level == Level.LO:
            return cls.LO_RO
        raise ValueError(f"Level '{level}' has no outgoing mappings")


# =============================================================================
# TOLERANCES & TUNABLES
# =============================================================================

# Sibling weights must sum to 1.0 within this tolerance
WEIGHT_SUM_TOLERANCE = 1e-9

# Score values (ratios and aggregates) live in [0, 1]
MIN_SCORE = 0.0
MAX_SCORE = 1.0

# Number of full re-runs of a mutation after a transaction conflict
CASCADE_MAX_RETRIES = int(os.getenv("OUTCOMES_CASCADE_RETRIES", "2"))

# Rounding applied to reported averages
SCORE_DECIMALS = int(os.getenv("OUTCOMES_SCORE_DECIMALS", "3"))
