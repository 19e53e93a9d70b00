"""Step model - one row of the process form."""

from typing import Optional, Union
from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from uuid import uuid4

from .enums import NextType, DEFAULT_FREQUENCIES


class Step(BaseModel):
    """
    A single step of a process: who does what, with which tools, how often,
    and what comes next.
    
    Steps are edited in memory and only persisted on an explicit save, so
    `id` stays None until the first save. `key` is assigned on creation and
    never changes; it is what other steps point at when routing to this one.
    """
    
    id: Optional[int] = None
    """Local identifier, assigned by the store on first save."""
    
    key: str = Field(default_factory=lambda: str(uuid4()))
    """Stable identity within the process, independent of position."""
    
    process_id: int
    """The process this step belongs to."""
    
    index: int = 0
    """Zero-based position in the process (contiguous within a process)."""
    
    # Form fields
    who: str = ""
    action: str = ""
    tools: list[str] = Field(default_factory=list)
    details: str = ""
    frequency: str = ""
    """One of the Frequency values, or empty when not set."""
    outcome: str = ""
    duration: str = ""
    
    # Routing
    is_end: bool = False
    """Whether this is the (single) end step of the process."""
    
    next_type: NextType = NextType.END
    
    next_ref: Optional[Union[str, int]] = None
    """
    Routing target:
    - next_type "step": the `key` of the target step
    - next_type "handoff": free-text description of the receiving party
    - next_type "end": None
    """
    
    class Config:
        """Pydantic configuration."""
        alias_generator = to_camel
        populate_by_name = True
        use_enum_values = True
        validate_assignment = True
        validate_default = True
    
    @field_validator("tools")
    @classmethod
    def _unique_tools(cls, tools: list[str]) -> list[str]:
        seen = []
        for tool in tools:
            tool = tool.strip()
            if tool and tool not in seen:
                seen.append(tool)
        return seen
    
    @field_validator("frequency")
    @classmethod
    def _known_frequency(cls, value: str) -> str:
        if value and value not in DEFAULT_FREQUENCIES:
            raise ValueError(f"Unknown frequency: {value!r}")
        return value
    
    def mark_end(self) -> None:
        """Make this the end step (clears routing)."""
        self.is_end = True
        self.next_type = NextType.END
        self.next_ref = None
    
    def route_to(self, target: "Step") -> None:
        """Route this step to another step of the same process."""
        self.is_end = False
        self.next_type = NextType.STEP
        self.next_ref = target.key
    
    def hand_off(self, description: str) -> None:
        """Route this step to another team or system."""
        self.is_end = False
        self.next_type = NextType.HANDOFF
        self.next_ref = description
    
    def snapshot(self) -> "Step":
        """Deep copy for history."""
        return self.model_copy(deep=True)
    
    @property
    def is_persisted(self) -> bool:
        """Check if this step has been saved at least once."""
        return self.id is not None
