"""Process editor - in-memory editing session over one process."""

from pathlib import Path
from typing import Optional, Callable, Awaitable, Any
import logging
import mimetypes

import aiofiles

from ..errors import NotFoundError, ConfirmationRequired
from ..models import Process, Step, Artifact, ArtifactKind, NextType
from ..storage import LocalStore
from .history import HistoryManager, MAX_HISTORY

logger = logging.getLogger(__name__)

# Fields a collaborator may change through update_step
EDITABLE_FIELDS = {
    "who",
    "action",
    "tools",
    "details",
    "frequency",
    "outcome",
    "duration",
    "is_end",
    "next_type",
    "next_ref",
}


class ProcessEditor:
    """
    Editing session for the step list of one process.

    The step list is loaded once, mutated in memory and written back on
    save(). Every structural mutation records a history snapshot first, so
    undo() restores the state from before the mutation. Artifacts are the
    exception: they are written to the store as soon as they are attached
    and are not part of the history.

    Invariants kept after every operation:
    - step indexes are exactly 0..n-1 in list order
    - at most one step has is_end set, and that step routes nowhere

    Usage:
        editor = await ProcessEditor.open(store, process_id)
        editor.add_step(action="Collect invoices", who="AP clerk")
        editor.mark_end(0)
        await editor.save()
    """

    def __init__(
        self,
        store: LocalStore,
        process: Process,
        steps: list[Step],
        artifacts: dict[int, list[Artifact]],
        history_limit: int = MAX_HISTORY,
        on_saved: Optional[Callable[[Process, list[Step]], Awaitable[None]]] = None,
    ):
        self.store = store
        self.process = process
        self._steps = steps
        self._artifacts = artifacts
        self.history = HistoryManager(history_limit)
        self.dirty = False
        self._on_saved = on_saved

    @classmethod
    async def open(
        cls,
        store: LocalStore,
        process_id: int,
        history_limit: int = MAX_HISTORY,
        on_saved: Optional[Callable[[Process, list[Step]], Awaitable[None]]] = None,
    ) -> "ProcessEditor":
        """Load a process and start a fresh session (empty history)."""
        process = await store.get_process(process_id)
        steps, artifacts = await store.load_steps_and_artifacts(process_id)
        logger.debug(f"Opened process {process_id} with {len(steps)} steps")
        return cls(store, process, steps, artifacts, history_limit, on_saved)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def process_id(self) -> int:
        return self.process.id

    @property
    def steps(self) -> list[Step]:
        """The current step list (do not mutate directly)."""
        return self._steps

    @property
    def artifacts(self) -> dict[int, list[Artifact]]:
        """Artifact metadata grouped by step id."""
        return self._artifacts

    @property
    def end_index(self) -> Optional[int]:
        """Index of the end step, or None if no step is marked end."""
        for position, step in enumerate(self._steps):
            if step.is_end:
                return position
        return None

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo

    def step_at(self, index: int) -> Step:
        """Get the step at a position (raises NotFoundError)."""
        if index < 0 or index >= len(self._steps):
            raise NotFoundError(f"No step at index {index}")
        return self._steps[index]

    def artifacts_for(self, index: int, kind: Optional[ArtifactKind | str] = None) -> list[Artifact]:
        """Artifacts attached to the step at a position."""
        step = self.step_at(index)
        if step.id is None:
            return []
        artifacts = self._artifacts.get(step.id, [])
        if kind is not None:
            kind = ArtifactKind(kind).value
            artifacts = [a for a in artifacts if a.kind == kind]
        return list(artifacts)

    def target_of(self, index: int) -> Optional[int]:
        """Position of the step a "step" route points at, if any."""
        step = self.step_at(index)
        if step.next_type != NextType.STEP or step.next_ref is None:
            return None
        for position, other in enumerate(self._steps):
            if other.key == step.next_ref:
                return position
        return None

    # -------------------------------------------------------------------------
    # Structural mutations (recorded in history)
    # -------------------------------------------------------------------------

    def add_step(self, **fields: Any) -> Step:
        """Append a new step. The first step of a process starts as the end step."""
        self._check_fields(fields)
        position = len(self._steps)
        step = Step(
            process_id=self.process_id,
            index=position,
            is_end=position == 0,
        )
        step = self._apply(step, fields)

        self.history.record(self._steps)
        steps = [s.snapshot() for s in self._steps]
        steps.append(step)
        self._commit(steps, step)
        logger.debug(f"Added step {position} to process {self.process_id}")
        return step

    def update_step(self, index: int, **patch: Any) -> Step:
        """
        Change fields of a step.

        Setting is_end marks the step as the single end step: every other
        step loses is_end, and the routing of this step is cleared. A "step"
        route given as an integer is taken as the position of the target.
        """
        self._check_fields(patch)
        current = self.step_at(index)
        updated = self._apply(current, patch)

        self.history.record(self._steps)
        steps = [s.snapshot() for s in self._steps]
        steps[index] = updated
        self._commit(steps, updated)
        return updated

    def mark_end(self, index: int) -> Step:
        """Make the step at a position the end of the process."""
        return self.update_step(index, is_end=True)

    def route_to_step(self, index: int, target_index: int) -> Step:
        """Route a step to another step of this process."""
        if target_index == index:
            raise ValueError("A step cannot route to itself")
        target = self.step_at(target_index)
        return self.update_step(index, is_end=False, next_type=NextType.STEP, next_ref=target.key)

    def hand_off(self, index: int, description: str) -> Step:
        """Route a step to another team or system."""
        return self.update_step(index, is_end=False, next_type=NextType.HANDOFF, next_ref=description)

    def move_step(self, index: int, direction: int) -> bool:
        """
        Swap a step with its neighbour.

        Args:
            index: Position of the step to move
            direction: -1 to move up, 1 to move down

        Returns:
            False if the move would leave the list (nothing recorded)
        """
        if direction not in (-1, 1):
            raise ValueError("direction must be -1 or 1")
        self.step_at(index)
        other = index + direction
        if other < 0 or other >= len(self._steps):
            return False

        self.history.record(self._steps)
        steps = [s.snapshot() for s in self._steps]
        steps[index], steps[other] = steps[other], steps[index]
        self._commit(steps)
        return True

    def remove_step(self, index: int, confirm: bool = False) -> Step:
        """
        Remove a step. Routes that pointed at it are cleared.

        Raises:
            ConfirmationRequired: If the step has artifacts and confirm is False
        """
        step = self.step_at(index)
        if step.id is not None and self._artifacts.get(step.id) and not confirm:
            raise ConfirmationRequired(
                f"Step {index} has artifacts; they are deleted with it on the next save"
            )

        self.history.record(self._steps)
        steps = [s.snapshot() for position, s in enumerate(self._steps) if position != index]
        for other in steps:
            if other.next_type == NextType.STEP and other.next_ref == step.key:
                other.next_ref = None
        self._commit(steps)
        logger.debug(f"Removed step {index} from process {self.process_id}")
        return step

    def undo(self) -> bool:
        """Restore the state before the last mutation. Returns False if nothing to undo."""
        restored = self.history.undo(self._steps)
        if restored is None:
            return False
        self._steps = restored
        self.dirty = True
        return True

    def redo(self) -> bool:
        """Re-apply the last undone mutation. Returns False if nothing to redo."""
        restored = self.history.redo(self._steps)
        if restored is None:
            return False
        self._steps = restored
        self.dirty = True
        return True

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def save(self) -> list[Step]:
        """
        Write the step list to the store.

        On failure the in-memory list is left exactly as it was (no ids are
        assigned) and the error propagates.
        """
        saved = await self.store.save_steps(self.process_id, self._steps)
        self._steps = saved
        self.dirty = False

        kept = {s.id for s in saved}
        self._artifacts = {
            step_id: artifacts
            for step_id, artifacts in self._artifacts.items()
            if step_id in kept
        }
        self.process = await self.store.get_process(self.process_id)

        if self._on_saved:
            await self._on_saved(self.process, saved)
        return saved

    async def attach_artifact(
        self,
        index: int,
        kind: ArtifactKind | str,
        name: str,
        content: bytes,
        mime_type: Optional[str] = None,
    ) -> Artifact:
        """
        Store an example file on a step right away.

        A step that was never saved has no id to reference yet, so the
        whole list is saved first.
        """
        kind = ArtifactKind(kind)
        step = self.step_at(index)
        if not step.is_persisted:
            logger.info(f"Saving process {self.process_id} before attaching to new step {index}")
            await self.save()
            step = self.step_at(index)

        artifact = await self.store.add_artifact(
            self.process_id,
            step.id,
            kind,
            name,
            mime_type or mimetypes.guess_type(name)[0],
            content,
        )
        self._artifacts.setdefault(step.id, []).append(artifact.model_copy(update={"content": None}))
        return artifact

    async def attach_file(self, index: int, kind: ArtifactKind | str, path: Path | str) -> Artifact:
        """Read a file from disk and attach it to a step."""
        path = Path(path)
        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
        return await self.attach_artifact(index, kind, path.name, content)

    async def remove_artifact(self, artifact_id: int) -> None:
        """Delete an attached file."""
        await self.store.delete_artifact(artifact_id)
        for step_id, artifacts in self._artifacts.items():
            self._artifacts[step_id] = [a for a in artifacts if a.id != artifact_id]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _check_fields(self, fields: dict) -> None:
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown step fields: {', '.join(sorted(unknown))}")

    def _apply(self, step: Step, patch: dict) -> Step:
        """Validate a patch against a step and return the patched copy."""
        data = step.model_dump()
        data.update(patch)

        if "next_type" in patch:
            if patch["next_type"] != NextType.END and "is_end" not in patch:
                data["is_end"] = False
            if "next_ref" not in patch:
                data["next_ref"] = None

        updated = Step.model_validate(data)

        if updated.is_end:
            updated.mark_end()
        elif updated.next_type == NextType.END:
            updated.next_ref = None
        elif updated.next_type == NextType.STEP:
            if isinstance(updated.next_ref, int):
                updated.next_ref = self.step_at(updated.next_ref).key
            if updated.next_ref is not None and updated.next_ref == updated.key:
                raise ValueError("A step cannot route to itself")
        elif updated.next_ref is not None:
            # Handoff targets are free text
            updated.next_ref = str(updated.next_ref)
        return updated

    def _commit(self, steps: list[Step], changed: Optional[Step] = None) -> None:
        """Install a new step list, reindexing and enforcing the single end step."""
        if changed is not None and changed.is_end:
            for step in steps:
                if step.key != changed.key:
                    step.is_end = False
        for position, step in enumerate(steps):
            step.index = position
        self._steps = steps
        self.dirty = True
