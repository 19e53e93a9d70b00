"""Local store - transactional operations across the three tables."""

from collections import defaultdict
from datetime import datetime
from typing import Optional
import logging

from .database import Database
from .process_store import ProcessStore
from .step_store import StepStore
from .artifact_store import ArtifactStore
from ..errors import NotFoundError
from ..models import Process, Step, Artifact, ArtifactKind

logger = logging.getLogger(__name__)


class LocalStore:
    """
    Durable storage for processes, steps and artifacts.

    Every write goes through a database transaction, so multi-table
    operations (cascade delete, save of a step list, full reset) are either
    fully visible or not visible at all.

    Usage:
        store = LocalStore(database)
        process = await store.create_process("Invoice approval")
        saved = await store.save_steps(process.id, steps)
        steps, artifacts = await store.load_steps_and_artifacts(process.id)
    """

    def __init__(self, database: Database):
        self.db = database
        self.processes = ProcessStore(database)
        self.steps = StepStore(database)
        self.artifacts = ArtifactStore(database)

    # -------------------------------------------------------------------------
    # Processes
    # -------------------------------------------------------------------------

    async def create_process(self, name: str, description: str = "") -> Process:
        """Create an empty process."""
        async with self.db.transaction():
            process = await self.processes.insert(Process(name=name, description=description))
        logger.info(f"Created process {process.id}: {name}")
        return process

    async def get_process(self, process_id: int) -> Process:
        """Get a process by ID (raises NotFoundError)."""
        process = await self.processes.get(process_id)
        if process is None:
            raise NotFoundError(f"Process {process_id} not found")
        return process

    async def list_processes(self) -> list[Process]:
        """List processes, most recently updated first."""
        return await self.processes.list_all()

    async def update_process(
        self,
        process_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Process:
        """Change the name and/or description of a process."""
        async with self.db.transaction():
            process = await self.get_process(process_id)
            if name is not None:
                process.name = name
            if description is not None:
                process.description = description
            process.touch()
            await self.processes.update(process)
        return process

    async def rename_process(self, process_id: int, name: str) -> Process:
        """Rename a process."""
        process = await self.update_process(process_id, name=name)
        logger.info(f"Renamed process {process_id} to {name!r}")
        return process

    async def set_cloud_id(self, process_id: int, cloud_id: str) -> None:
        """Record the remote identity of a process."""
        async with self.db.transaction():
            await self.processes.set_cloud_id(process_id, cloud_id)

    async def delete_process(self, process_id: int) -> None:
        """Delete a process with all of its steps and artifacts, atomically."""
        async with self.db.transaction():
            await self.get_process(process_id)
            artifacts = await self.artifacts.delete_by_process(process_id)
            steps = await self.steps.delete_by_process(process_id)
            await self.processes.delete(process_id)
        logger.info(
            f"Deleted process {process_id} ({steps} steps, {artifacts} artifacts)"
        )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def load_steps_and_artifacts(
        self,
        process_id: int,
    ) -> tuple[list[Step], dict[int, list[Artifact]]]:
        """Load the step list (by index) and artifact metadata grouped by step id."""
        steps = await self.steps.list_by_process(process_id)
        grouped: dict[int, list[Artifact]] = defaultdict(list)
        for artifact in await self.artifacts.list_by_process(process_id):
            grouped[artifact.step_id].append(artifact)
        return steps, dict(grouped)

    async def save_steps(self, process_id: int, steps: list[Step]) -> list[Step]:
        """
        Persist a step list as the complete set of steps of a process.

        - A step with an id overwrites its row.
        - A step without an id reuses the row with the same key, if any;
          otherwise it is inserted and gets a new id.
        - Persisted steps missing from the list are deleted with their
          artifacts.

        The input list is not modified. Returns copies carrying the ids,
        which only exist once the transaction has committed.
        """
        saved: list[Step] = []
        async with self.db.transaction():
            await self.get_process(process_id)
            await self.processes.touch(process_id, datetime.utcnow())

            known = await self.steps.ids_by_key(process_id)
            for step in steps:
                row = step.model_copy(deep=True)
                row.process_id = process_id
                if row.id is None:
                    row.id = known.get(row.key)
                row.id = await self.steps.save(row)
                saved.append(row)

            pruned = await self.steps.delete_missing(process_id, [s.id for s in saved])
            await self.artifacts.delete_by_steps(pruned)

        logger.info(
            f"Saved {len(saved)} steps for process {process_id}"
            + (f", pruned {len(pruned)}" if pruned else "")
        )
        return saved

    # -------------------------------------------------------------------------
    # Artifacts
    # -------------------------------------------------------------------------

    async def add_artifact(
        self,
        process_id: int,
        step_id: int,
        kind: ArtifactKind | str,
        name: str,
        mime_type: Optional[str],
        content: bytes,
    ) -> Artifact:
        """Store an example file for a persisted step."""
        async with self.db.transaction():
            step = await self.steps.get(step_id)
            if step is None or step.process_id != process_id:
                raise NotFoundError(f"Step {step_id} not found in process {process_id}")
            artifact = await self.artifacts.add(Artifact(
                process_id=process_id,
                step_id=step_id,
                kind=kind,
                name=name,
                mime_type=mime_type or "application/octet-stream",
                size=len(content),
                content=content,
            ))
        logger.debug(f"Added artifact {artifact.id} ({name}) to step {step_id}")
        return artifact

    async def get_artifact(self, artifact_id: int, with_content: bool = True) -> Artifact:
        """Get an artifact by ID (raises NotFoundError)."""
        artifact = await self.artifacts.get(artifact_id, with_content=with_content)
        if artifact is None:
            raise NotFoundError(f"Artifact {artifact_id} not found")
        return artifact

    async def delete_artifact(self, artifact_id: int) -> None:
        """Delete a single artifact."""
        async with self.db.transaction():
            if not await self.artifacts.delete(artifact_id):
                raise NotFoundError(f"Artifact {artifact_id} not found")
        logger.debug(f"Deleted artifact {artifact_id}")

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    async def import_bundle(
        self,
        process: Process,
        steps: list[tuple[Optional[int], Step]],
        artifacts: list[Artifact],
    ) -> Process:
        """
        Insert a new process with its steps and artifact metadata, atomically.

        Each step comes with the id it had in the source document, and each
        artifact's step_id is such a source id; it is remapped to the row
        inserted for that step.
        """
        async with self.db.transaction():
            process = await self.processes.insert(process)

            id_map: dict[int, int] = {}
            for old_id, step in steps:
                row = step.model_copy(update={"id": None, "process_id": process.id})
                new_id = await self.steps.save(row)
                if old_id is not None:
                    id_map[old_id] = new_id

            for artifact in artifacts:
                if artifact.step_id not in id_map:
                    raise NotFoundError(f"Artifact {artifact.name!r} references unknown step {artifact.step_id}")
                await self.artifacts.add(artifact.model_copy(update={
                    "process_id": process.id,
                    "step_id": id_map[artifact.step_id],
                    "content": None,
                }))

        logger.info(
            f"Imported process {process.id} ({process.name}) with "
            f"{len(steps)} steps, {len(artifacts)} artifacts"
        )
        return process

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def reset(self) -> None:
        """Delete everything, atomically."""
        async with self.db.transaction():
            artifacts = await self.artifacts.delete_all()
            steps = await self.steps.delete_all()
            processes = await self.processes.delete_all()
        logger.info(
            f"Reset local data ({processes} processes, {steps} steps, {artifacts} artifacts)"
        )

    async def counts(self) -> dict[str, int]:
        """Row counts of every table."""
        return {
            "processes": await self.processes.count(),
            "steps": await self.steps.count(),
            "artifacts": await self.artifacts.count(),
        }
