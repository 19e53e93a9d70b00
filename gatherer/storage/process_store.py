"""Process storage layer."""

from typing import Optional
from datetime import datetime

from .database import Database, parse_datetime
from ..models import Process


class ProcessStore:
    """
    Persistent storage for process rows.
    
    Only the process table; cascading work across tables is done by
    LocalStore inside a transaction.
    """
    
    def __init__(self, database: Database):
        self.db = database
    
    async def insert(self, process: Process) -> Process:
        """Insert a new process and return it with its assigned id."""
        cursor = await self.db.execute(
            """
            INSERT INTO processes (cloud_id, name, description, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                process.cloud_id,
                process.name,
                process.description,
                process.created_at.isoformat(),
                process.updated_at.isoformat(),
            ),
        )
        return process.model_copy(update={"id": cursor.lastrowid})
    
    async def update(self, process: Process) -> None:
        """Overwrite the mutable fields of a process."""
        await self.db.execute(
            """
            UPDATE processes
            SET cloud_id = ?, name = ?, description = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                process.cloud_id,
                process.name,
                process.description,
                process.updated_at.isoformat(),
                process.id,
            ),
        )
    
    async def get(self, process_id: int) -> Optional[Process]:
        """Get a process by ID."""
        row = await self.db.fetch_one(
            "SELECT * FROM processes WHERE id = ?",
            (process_id,)
        )
        if row:
            return self._row_to_process(row)
        return None
    
    async def list_all(self) -> list[Process]:
        """List processes, most recently updated first."""
        rows = await self.db.fetch_all(
            "SELECT * FROM processes ORDER BY updated_at DESC, id DESC"
        )
        return [self._row_to_process(row) for row in rows]
    
    async def count(self) -> int:
        """Count all processes."""
        row = await self.db.fetch_one("SELECT COUNT(*) AS count FROM processes")
        return row["count"] if row else 0
    
    async def touch(self, process_id: int, when: Optional[datetime] = None) -> None:
        """Bump the update timestamp."""
        when = when or datetime.utcnow()
        await self.db.execute(
            "UPDATE processes SET updated_at = ? WHERE id = ?",
            (when.isoformat(), process_id)
        )
    
    async def set_cloud_id(self, process_id: int, cloud_id: str) -> None:
        """Record the identifier of the remote counterpart."""
        await self.db.execute(
            "UPDATE processes SET cloud_id = ? WHERE id = ?",
            (cloud_id, process_id)
        )
    
    async def delete(self, process_id: int) -> bool:
        """Delete a process row by ID. Returns True if deleted."""
        cursor = await self.db.execute(
            "DELETE FROM processes WHERE id = ?",
            (process_id,)
        )
        return cursor.rowcount > 0
    
    async def delete_all(self) -> int:
        """Delete every process row. Returns count deleted."""
        cursor = await self.db.execute("DELETE FROM processes")
        return cursor.rowcount
    
    def _row_to_process(self, row: dict) -> Process:
        """Convert a database row to a Process object."""
        return Process(
            id=row["id"],
            cloud_id=row.get("cloud_id"),
            name=row["name"],
            description=row.get("description") or "",
            created_at=parse_datetime(row.get("created_at")) or datetime.utcnow(),
            updated_at=parse_datetime(row.get("updated_at")) or datetime.utcnow(),
        )
