"""Core data models for the process gatherer."""

from .enums import Frequency, NextType, ArtifactKind, SyncStatus, DEFAULT_FREQUENCIES
from .process import Process
from .step import Step
from .artifact import Artifact

__all__ = [
    "Frequency",
    "NextType",
    "ArtifactKind",
    "SyncStatus",
    "DEFAULT_FREQUENCIES",
    "Process",
    "Step",
    "Artifact",
]
