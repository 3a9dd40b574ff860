"""
line-strata: line-level attribution of a repository's final content.

Walks the full commit history, tracks the provenance of every line through
merges and renames, classifies lines by language and as code, comment or
blank, and aggregates the result per contributor and per commit.
"""

__version__ = "1.0.0"

from .config import AnalysisConfig
from .engine import AttributionEngine, EngineState
from .errors import (
    Cancelled,
    CorruptHistory,
    Diagnostic,
    FailureKind,
    LineStrataError,
    NotFound,
    NotReady,
    ObjectError,
    ObjectStoreTimeout,
    UnreadableFile,
)
from .models import LineRecord, LineType
from .object_store import GitObjectStore, MemoryObjectStore, ObjectStore

__all__ = [
    "AnalysisConfig",
    "AttributionEngine",
    "Cancelled",
    "CorruptHistory",
    "Diagnostic",
    "EngineState",
    "FailureKind",
    "GitObjectStore",
    "LineRecord",
    "LineStrataError",
    "LineType",
    "MemoryObjectStore",
    "NotFound",
    "NotReady",
    "ObjectError",
    "ObjectStore",
    "ObjectStoreTimeout",
    "UnreadableFile",
]
