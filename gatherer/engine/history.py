"""Undo/redo history for step-list editing."""

from collections import deque
from typing import Optional
import logging

from ..models import Step

logger = logging.getLogger(__name__)

MAX_HISTORY = 50


def snapshot_steps(steps: list[Step]) -> list[Step]:
    """Deep copy of a step list."""
    return [s.snapshot() for s in steps]


class HistoryManager:
    """
    Linear undo/redo over snapshots of the step list.

    Both stacks hold full copies of the step list, newest first. Recording a
    new snapshot drops the redo stack: there is no branching history. The
    undo stack keeps at most `limit` entries and evicts the oldest.

    The manager never touches persistence; callers pass the current list in
    and get the list to restore back.
    """

    def __init__(self, limit: int = MAX_HISTORY):
        self.limit = limit
        self._history: deque[list[Step]] = deque(maxlen=limit)
        self._future: deque[list[Step]] = deque()

    def record(self, current: list[Step]) -> None:
        """Snapshot the state before a mutation."""
        self._history.appendleft(snapshot_steps(current))
        self._future.clear()

    def undo(self, current: list[Step]) -> Optional[list[Step]]:
        """
        Step back one snapshot.

        Returns:
            The list to restore, or None if there is nothing to undo
        """
        if not self._history:
            return None
        self._future.appendleft(snapshot_steps(current))
        restored = self._history.popleft()
        logger.debug(f"Undo ({len(self._history)} left, {len(self._future)} to redo)")
        return restored

    def redo(self, current: list[Step]) -> Optional[list[Step]]:
        """
        Re-apply the most recently undone snapshot.

        Returns:
            The list to restore, or None if there is nothing to redo
        """
        if not self._future:
            return None
        self._history.appendleft(snapshot_steps(current))
        restored = self._future.popleft()
        logger.debug(f"Redo ({len(self._history)} to undo, {len(self._future)} left)")
        return restored

    def reset(self) -> None:
        """Forget everything (used when switching processes)."""
        self._history.clear()
        self._future.clear()

    @property
    def can_undo(self) -> bool:
        return bool(self._history)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    @property
    def undo_depth(self) -> int:
        return len(self._history)

    @property
    def redo_depth(self) -> int:
        return len(self._future)
