"""Artifact storage layer."""

from typing import Optional
from datetime import datetime

from .database import Database
from ..models import Artifact

METADATA_COLUMNS = "id, process_id, step_id, kind, name, mime_type, size"


class ArtifactStore:
    """
    Persistent storage for artifacts.
    
    Artifacts are example files attached to steps. Listings return metadata
    only; the binary payload is loaded on request.
    """
    
    def __init__(self, database: Database):
        self.db = database
    
    async def add(self, artifact: Artifact) -> Artifact:
        """Insert an artifact and return it with its assigned id."""
        cursor = await self.db.execute(
            """
            INSERT INTO artifacts (
                process_id, step_id, kind, name, mime_type, size, content, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                artifact.process_id,
                artifact.step_id,
                artifact.kind,
                artifact.name,
                artifact.mime_type,
                artifact.size,
                artifact.content,
                datetime.utcnow().isoformat(),
            ),
        )
        return artifact.model_copy(update={"id": cursor.lastrowid})
    
    async def get(self, artifact_id: int, with_content: bool = False) -> Optional[Artifact]:
        """Get an artifact by ID."""
        columns = "*" if with_content else METADATA_COLUMNS
        row = await self.db.fetch_one(
            f"SELECT {columns} FROM artifacts WHERE id = ?",
            (artifact_id,)
        )
        if row:
            return self._row_to_artifact(row)
        return None
    
    async def list_by_process(self, process_id: int) -> list[Artifact]:
        """Get metadata of all artifacts of a process."""
        rows = await self.db.fetch_all(
            f"SELECT {METADATA_COLUMNS} FROM artifacts WHERE process_id = ? ORDER BY id ASC",
            (process_id,)
        )
        return [self._row_to_artifact(row) for row in rows]
    
    async def delete(self, artifact_id: int) -> bool:
        """Delete an artifact by ID. Returns True if deleted."""
        cursor = await self.db.execute(
            "DELETE FROM artifacts WHERE id = ?",
            (artifact_id,)
        )
        return cursor.rowcount > 0
    
    async def delete_by_steps(self, step_ids: list[int]) -> None:
        """Delete all artifacts of the given steps."""
        if step_ids:
            await self.db.execute_many(
                "DELETE FROM artifacts WHERE step_id = ?",
                [(step_id,) for step_id in step_ids]
            )
    
    async def delete_by_process(self, process_id: int) -> int:
        """Delete all artifacts of a process. Returns count deleted."""
        cursor = await self.db.execute(
            "DELETE FROM artifacts WHERE process_id = ?",
            (process_id,)
        )
        return cursor.rowcount
    
    async def delete_all(self) -> int:
        """Delete every artifact row. Returns count deleted."""
        cursor = await self.db.execute("DELETE FROM artifacts")
        return cursor.rowcount
    
    async def count(self, process_id: Optional[int] = None) -> int:
        """Count artifacts, optionally for a single process."""
        if process_id is None:
            row = await self.db.fetch_one("SELECT COUNT(*) AS count FROM artifacts")
        else:
            row = await self.db.fetch_one(
                "SELECT COUNT(*) AS count FROM artifacts WHERE process_id = ?",
                (process_id,)
            )
        return row["count"] if row else 0
    
    def _row_to_artifact(self, row: dict) -> Artifact:
        """Convert a database row to an Artifact object."""
        return Artifact(
            id=row["id"],
            process_id=row["process_id"],
            step_id=row["step_id"],
            kind=row["kind"],
            name=row["name"],
            mime_type=row.get("mime_type") or "application/octet-stream",
            size=row.get("size") or 0,
            content=row.get("content"),
        )
