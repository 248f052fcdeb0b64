# Export all outcome models for easy imports
from .base import Base
from .nodes import AssessmentCriterion, LearningOutcome, ReportOutcome
from .mapping import OutcomeMapping
from .score import OutcomeScore

__all__ = [
    "Base",
    "AssessmentCriterion",
    "LearningOutcome",
    "ReportOutcome",
    "OutcomeMapping",
    "OutcomeScore",
]
