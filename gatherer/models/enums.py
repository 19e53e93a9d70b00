"""Enumerations for the process gatherer."""

from enum import Enum


class Frequency(str, Enum):
    """How often a step is performed."""
    
    PER_TRANSACTION = "Per transaction"
    HOURLY = "Hourly"
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    YEARLY = "Yearly"
    AD_HOC = "Ad hoc / On event"


class NextType(str, Enum):
    """What happens after a step."""
    
    END = "end"
    """The process finishes here."""
    
    STEP = "step"
    """Control passes to another step of the same process."""
    
    HANDOFF = "handoff"
    """Control passes to another team or system (free text)."""


class ArtifactKind(str, Enum):
    """Role of an attached example file."""
    
    INPUT = "input"
    OUTPUT = "output"
    SYSTEM = "system"


class SyncStatus(str, Enum):
    """State of remote mirroring for a process."""
    
    IDLE = "idle"
    """Nothing in flight. The last attempt (if any) succeeded."""
    
    SYNCING = "syncing"
    """A request sequence is in flight."""
    
    ERROR = "error"
    """The last attempt failed. Local data is still authoritative."""


DEFAULT_FREQUENCIES = [f.value for f in Frequency]
