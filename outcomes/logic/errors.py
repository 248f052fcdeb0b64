"""
Engine Errors

Every failure the outcome engine reports derives from OutcomeEngineError.
The status_code attribute is what the HTTP layer answers with.
"""


class OutcomeEngineError(Exception):
    """Base class for all outcome engine errors."""
    status_code = 500


class InvalidPriority(OutcomeEngineError, ValueError):
    """An unrecognized priority tag was supplied."""
    status_code = 400

    def __init__(self, tag):
        self.tag = tag
        super().__init__(f"Invalid priority '{tag}'. Must be one of: high, medium, low.")


class InvalidScore(OutcomeEngineError, ValueError):
    """Marks or score values outside their allowed range."""
    status_code = 400


class ScopeMismatch(OutcomeEngineError):
    """A mapping edge was requested between nodes of different scopes."""
    status_code = 400

    def __init__(self, child, parent):
        self.child = child
        self.parent = parent
        super().__init__(
            f"Cannot map {child} to {parent}: nodes belong to different "
            f"subject/year/quarter/class scopes."
        )


class NoSiblings(OutcomeEngineError):
    """Normalization or aggregation attempted on a parent with no mapped children."""
    status_code = 404

    def __init__(self, parent_id=None, level=None):
        self.parent_id = parent_id
        self.level = level
        if parent_id is None:
            message = "No mapped children to normalize."
        else:
            message = f"{level} {parent_id} has no mapped children."
        super().__init__(message)


class NodeNotFound(OutcomeEngineError, LookupError):
    status_code = 404

    def __init__(self, level, node_id):
        self.level = level
        self.node_id = node_id
        super().__init__(f"{str(getattr(level, 'value', level)).upper()} {node_id} not found.")


class MappingNotFound(OutcomeEngineError, LookupError):
    status_code = 404

    def __init__(self, child_id, parent_id, level):
        super().__init__(
            f"No {getattr(level, 'value', level)} mapping from {child_id} to {parent_id}."
        )


class ScoreNotFound(OutcomeEngineError, LookupError):
    status_code = 404

    def __init__(self, student_id, node_id, level):
        super().__init__(
            f"No {getattr(level, 'value', level)} score for student {student_id} on node {node_id}."
        )


class DuplicateNode(OutcomeEngineError):
    status_code = 409


class TransactionConflict(OutcomeEngineError):
    """
    The persistence layer reported a write conflict during a cascade.

    The whole unit of work has been rolled back; the triggering mutation
    must be retried in full.
    """
    status_code = 409
