"""Tests for undo/redo history."""

from gatherer.engine import HistoryManager, MAX_HISTORY
from gatherer.models import Step


def make_steps(count: int) -> list[Step]:
    return [Step(process_id=1, index=i, action=f"step {i}") for i in range(count)]


def actions(steps: list[Step]) -> list[str]:
    return [s.action for s in steps]


class TestHistoryManager:
    """Tests for the HistoryManager."""

    def test_empty(self):
        history = HistoryManager()

        assert not history.can_undo
        assert not history.can_redo
        assert history.undo([]) is None
        assert history.redo([]) is None

    def test_undo_all_mutations(self):
        """Test that N undos after N mutations restore the original list."""
        history = HistoryManager()
        original = make_steps(2)
        current = original
        for i in range(5):
            history.record(current)
            current = current + [Step(process_id=1, action=f"extra {i}")]

        for _ in range(5):
            current = history.undo(current)

        assert actions(current) == actions(original)
        assert not history.can_undo

    def test_undo_then_redo(self):
        history = HistoryManager()
        before = make_steps(1)
        after = make_steps(2)

        history.record(before)
        restored = history.undo(after)
        assert actions(restored) == actions(before)
        assert history.can_redo

        again = history.redo(restored)
        assert actions(again) == actions(after)
        assert history.can_undo
        assert not history.can_redo

    def test_new_mutation_clears_redo(self):
        history = HistoryManager()
        history.record(make_steps(1))
        history.undo(make_steps(2))
        assert history.redo_depth == 1

        history.record(make_steps(1))

        assert not history.can_redo

    def test_oldest_snapshot_is_evicted(self):
        """Test that the undo stack keeps only the newest snapshots."""
        history = HistoryManager()
        for count in range(MAX_HISTORY + 1):
            history.record(make_steps(count))

        assert history.undo_depth == MAX_HISTORY

        current = make_steps(MAX_HISTORY + 1)
        for _ in range(MAX_HISTORY):
            current = history.undo(current)

        # The empty list (first snapshot) was dropped
        assert len(current) == 1
        assert history.undo(current) is None

    def test_snapshots_are_copies(self):
        history = HistoryManager()
        steps = make_steps(1)
        history.record(steps)
        steps[0].action = "changed"

        restored = history.undo(steps)

        assert restored[0].action == "step 0"

    def test_custom_limit_and_reset(self):
        history = HistoryManager(limit=2)
        for count in range(4):
            history.record(make_steps(count))
        assert history.undo_depth == 2

        history.reset()
        assert not history.can_undo
        assert not history.can_redo
