"""Storage layer for the process gatherer."""

from .database import Database, SCHEMA_VERSION
from .process_store import ProcessStore
from .step_store import StepStore
from .artifact_store import ArtifactStore
from .local_store import LocalStore

__all__ = [
    "Database",
    "SCHEMA_VERSION",
    "ProcessStore",
    "StepStore",
    "ArtifactStore",
    "LocalStore",
]
