"""Artifact model - example files attached to a step."""

from typing import Optional
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from .enums import ArtifactKind


class Artifact(BaseModel):
    """
    An example file (input, output or system screenshot) dropped on a step.
    
    Artifacts are persisted immediately when attached and are not part of the
    undo history. The binary payload is optional: listings and exports carry
    metadata only.
    """
    
    id: Optional[int] = None
    process_id: int
    step_id: int
    kind: ArtifactKind = Field(alias="type")
    name: str
    mime_type: str = "application/octet-stream"
    size: int = 0
    content: Optional[bytes] = Field(default=None, exclude=True)
    """Binary payload. Never serialized."""
    
    class Config:
        """Pydantic configuration."""
        alias_generator = to_camel
        populate_by_name = True
        use_enum_values = True
    
    @property
    def has_content(self) -> bool:
        """Check if the binary payload is loaded."""
        return self.content is not None
    
    def metadata(self) -> dict:
        """Serializable metadata (no payload), using wire field names."""
        return self.model_dump(by_alias=True)
