"""
Priority Resolver

Maps a qualitative priority tag (High/Medium/Low) to its base weight.
"""

from typing import Union

from .constants import PriorityTag, PRIORITY_WEIGHT_MAP, PRIORITY_ALIASES
from .errors import InvalidPriority


def parse_priority(tag: Union[str, PriorityTag, None]) -> PriorityTag:
    """
    Convert user input into a PriorityTag.

    Matching is case-insensitive on the full tag name; the legacy
    single-letter codes h/m/l are accepted as well.

    Raises:
        InvalidPriority: for anything else
    """
    if isinstance(tag, PriorityTag):
        return tag
    if not isinstance(tag, str):
        raise InvalidPriority(tag)

    key = tag.strip().lower()
    if key in PRIORITY_ALIASES:
        return PRIORITY_ALIASES[key]
    try:
        return PriorityTag(key)
    except ValueError:
        raise InvalidPriority(tag) from None


def resolve_priority(tag: Union[str, PriorityTag]) -> float:
    """Return the base weight for a priority tag."""
    return PRIORITY_WEIGHT_MAP[parse_priority(tag)]
