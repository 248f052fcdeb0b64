from sqlalchemy import Column, Integer, String, Float, UniqueConstraint, Index

from .base import Base


class OutcomeMapping(Base):
    """AC->LO or LO->RO edge. `weight` is derived from the sibling priorities."""
    __tablename__ = "outcome_mappings"
    __table_args__ = (
        UniqueConstraint("level", "child_id", "parent_id", name="uq_mapping_edge"),
        Index("ix_mapping_parent", "level", "parent_id"),
        Index("ix_mapping_child", "level", "child_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    level = Column(String(8), nullable=False)   # MappingLevel value
    child_id = Column(Integer, nullable=False)
    parent_id = Column(Integer, nullable=False)
    priority = Column(String(10), nullable=False)   # PriorityTag value
    weight = Column(Float, nullable=True)
