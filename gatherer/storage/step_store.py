"""Step storage layer."""

from typing import Optional

from .database import Database, serialize_json, deserialize_json
from ..models import Step


class StepStore:
    """
    Persistent storage for steps.
    
    Steps are written in bulk by LocalStore.save_steps; this class only
    knows how to read and write individual rows.
    """
    
    def __init__(self, database: Database):
        self.db = database
    
    async def save(self, step: Step) -> int:
        """
        Save a step (insert or overwrite in place). Returns the row id.
        
        A step with an id is written under that id even if its row was
        deleted in the meantime (e.g. restored by undo after a save).
        """
        sql = """
        INSERT INTO steps (
            id, process_id, key, position, who, action, tools, details,
            frequency, outcome, duration, is_end, next_type, next_ref
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            process_id = excluded.process_id,
            key = excluded.key,
            position = excluded.position,
            who = excluded.who,
            action = excluded.action,
            tools = excluded.tools,
            details = excluded.details,
            frequency = excluded.frequency,
            outcome = excluded.outcome,
            duration = excluded.duration,
            is_end = excluded.is_end,
            next_type = excluded.next_type,
            next_ref = excluded.next_ref
        """
        
        cursor = await self.db.execute(sql, (
            step.id,
            step.process_id,
            step.key,
            step.index,
            step.who,
            step.action,
            serialize_json(step.tools),
            step.details,
            step.frequency,
            step.outcome,
            step.duration,
            1 if step.is_end else 0,
            step.next_type,
            None if step.next_ref is None else str(step.next_ref),
        ))
        return step.id if step.id is not None else cursor.lastrowid
    
    async def get(self, step_id: int) -> Optional[Step]:
        """Get a step by ID."""
        row = await self.db.fetch_one(
            "SELECT * FROM steps WHERE id = ?",
            (step_id,)
        )
        if row:
            return self._row_to_step(row)
        return None
    
    async def list_by_process(self, process_id: int) -> list[Step]:
        """Get all steps of a process in display order."""
        rows = await self.db.fetch_all(
            "SELECT * FROM steps WHERE process_id = ? ORDER BY position ASC, id ASC",
            (process_id,)
        )
        return [self._row_to_step(row) for row in rows]
    
    async def ids_by_key(self, process_id: int) -> dict[str, int]:
        """Map step keys to row ids for a process."""
        rows = await self.db.fetch_all(
            "SELECT id, key FROM steps WHERE process_id = ?",
            (process_id,)
        )
        return {row["key"]: row["id"] for row in rows}
    
    async def delete_missing(self, process_id: int, keep_ids: list[int]) -> list[int]:
        """Delete steps of a process whose id is not in keep_ids. Returns deleted ids."""
        rows = await self.db.fetch_all(
            "SELECT id FROM steps WHERE process_id = ?",
            (process_id,)
        )
        keep = set(keep_ids)
        doomed = [row["id"] for row in rows if row["id"] not in keep]
        if doomed:
            await self.db.execute_many(
                "DELETE FROM steps WHERE id = ?",
                [(step_id,) for step_id in doomed]
            )
        return doomed
    
    async def delete_by_process(self, process_id: int) -> int:
        """Delete all steps of a process. Returns count deleted."""
        cursor = await self.db.execute(
            "DELETE FROM steps WHERE process_id = ?",
            (process_id,)
        )
        return cursor.rowcount
    
    async def delete_all(self) -> int:
        """Delete every step row. Returns count deleted."""
        cursor = await self.db.execute("DELETE FROM steps")
        return cursor.rowcount
    
    async def count(self, process_id: Optional[int] = None) -> int:
        """Count steps, optionally for a single process."""
        if process_id is None:
            row = await self.db.fetch_one("SELECT COUNT(*) AS count FROM steps")
        else:
            row = await self.db.fetch_one(
                "SELECT COUNT(*) AS count FROM steps WHERE process_id = ?",
                (process_id,)
            )
        return row["count"] if row else 0
    
    def _row_to_step(self, row: dict) -> Step:
        """Convert a database row to a Step object."""
        return Step(
            id=row["id"],
            key=row["key"],
            process_id=row["process_id"],
            index=row["position"],
            who=row.get("who") or "",
            action=row.get("action") or "",
            tools=deserialize_json(row.get("tools"), []),
            details=row.get("details") or "",
            frequency=row.get("frequency") or "",
            outcome=row.get("outcome") or "",
            duration=row.get("duration") or "",
            is_end=bool(row.get("is_end")),
            next_type=row.get("next_type") or "end",
            next_ref=row.get("next_ref"),
        )
