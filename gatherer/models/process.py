"""Process model - the document a user is gathering steps for."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class Process(BaseModel):
    """
    A documented business process.
    
    The process row is a shell: its steps and artifacts live in their own
    tables and are owned by it (deleting a process deletes them too).
    """
    
    id: Optional[int] = None
    """Local identifier, assigned by the store on insert."""
    
    cloud_id: Optional[str] = None
    """Identifier of the remote counterpart, provisioned lazily on first sync."""
    
    name: str
    """Display name."""
    
    description: str = ""
    """Free-text description."""
    
    created_at: datetime = Field(default_factory=datetime.utcnow)
    """When this process was created."""
    
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    """When this process or its step list was last saved."""
    
    class Config:
        """Pydantic configuration."""
        alias_generator = to_camel
        populate_by_name = True
    
    def touch(self) -> None:
        """Bump the update timestamp."""
        self.updated_at = datetime.utcnow()
    
    @property
    def is_synced(self) -> bool:
        """Check if a remote counterpart exists."""
        return self.cloud_id is not None
