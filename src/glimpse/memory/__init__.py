"""Session memory: duplicate filtering, importance scoring and consolidation."""

from glimpse.memory.consolidator import CONSOLIDATED_IMPORTANCE, Consolidator
from glimpse.memory.importance import DEFAULT_IMPORTANCE, ImportanceAssessor, parse_importance
from glimpse.memory.similarity import similarity
from glimpse.memory.store import MemoryStore

__all__ = [
    "CONSOLIDATED_IMPORTANCE",
    "DEFAULT_IMPORTANCE",
    "Consolidator",
    "ImportanceAssessor",
    "MemoryStore",
    "parse_importance",
    "similarity",
]
