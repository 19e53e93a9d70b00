"""Tests for the storage layer."""

import asyncio

import pytest

from gatherer.engine import exchange
from gatherer.errors import NotFoundError, StorageError
from gatherer.models import Process, Step, Artifact, ArtifactKind
from gatherer.storage import SCHEMA_VERSION


async def orphan_counts(db) -> tuple[int, int]:
    """Full-table scan for steps/artifacts whose process is gone."""
    steps = await db.fetch_one(
        "SELECT COUNT(*) AS count FROM steps WHERE process_id NOT IN (SELECT id FROM processes)"
    )
    artifacts = await db.fetch_one(
        "SELECT COUNT(*) AS count FROM artifacts "
        "WHERE process_id NOT IN (SELECT id FROM processes) "
        "OR step_id NOT IN (SELECT id FROM steps)"
    )
    return steps["count"], artifacts["count"]


class TestDatabase:
    """Tests for the database connection."""

    @pytest.mark.asyncio
    async def test_schema_version(self, temp_db):
        assert await temp_db.schema_version() == SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_reconnect_keeps_data(self, temp_db, store):
        """Test that migrations are not re-run on an existing file."""
        await store.create_process("Kept")
        await temp_db.close()
        await temp_db.connect()

        assert [p.name for p in await store.list_processes()] == ["Kept"]

    @pytest.mark.asyncio
    async def test_failed_transaction_rolls_back(self, temp_db, store):
        """Test that nothing from a failed transaction is visible."""
        with pytest.raises(StorageError):
            async with temp_db.transaction():
                await store.processes.insert(Process(name="Half written"))
                await temp_db.execute("INSERT INTO no_such_table VALUES (1)")

        assert await store.processes.count() == 0
        assert not temp_db.in_transaction

    @pytest.mark.asyncio
    async def test_nested_transaction_joins_outer(self, temp_db, store):
        """Test that an inner failure undoes the whole outer block."""
        with pytest.raises(NotFoundError):
            async with temp_db.transaction():
                await store.create_process("Outer")
                await store.get_process(9999)

        assert await store.processes.count() == 0


class TestConcurrentReaders:
    """Tests for what other tasks see while a transaction is open."""

    @pytest.mark.asyncio
    async def test_reader_never_sees_partial_import(self, store):
        document = {
            "process": {"name": "Big"},
            "steps": [{"id": i, "index": i, "action": f"s{i}"} for i in range(300)],
            "artifacts": [],
        }
        seen = set()
        done = asyncio.Event()

        async def poll():
            while not done.is_set():
                seen.add(await store.steps.count())
                await asyncio.sleep(0)

        poller = asyncio.create_task(poll())
        await asyncio.sleep(0)
        await exchange.import_document(store, document)
        done.set()
        await poller

        assert seen <= {0, 300}

    @pytest.mark.asyncio
    async def test_reader_never_sees_rolled_back_rows(self, temp_db, store):
        inserted = asyncio.Event()

        async def failing_writer():
            async with temp_db.transaction():
                await store.processes.insert(Process(name="ghost"))
                inserted.set()
                await asyncio.sleep(0.05)
                raise RuntimeError("writer failed")

        writer = asyncio.create_task(failing_writer())
        await inserted.wait()

        names = [p.name for p in await store.list_processes()]

        with pytest.raises(RuntimeError):
            await writer
        assert names == []


class TestProcesses:
    """Tests for process operations."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        process = await store.create_process("Invoice approval", "AP flow")

        assert process.id is not None
        loaded = await store.get_process(process.id)
        assert loaded.name == "Invoice approval"
        assert loaded.description == "AP flow"

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.get_process(42)

    @pytest.mark.asyncio
    async def test_list_most_recent_first(self, store):
        """Test that a save moves a process to the top of the list."""
        first = await store.create_process("First")
        second = await store.create_process("Second")

        assert [p.id for p in await store.list_processes()] == [second.id, first.id]

        await store.save_steps(first.id, [Step(process_id=first.id, action="a")])
        assert [p.id for p in await store.list_processes()] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_rename(self, store):
        process = await store.create_process("Old")
        renamed = await store.rename_process(process.id, "New")

        assert renamed.name == "New"
        assert (await store.get_process(process.id)).name == "New"

    @pytest.mark.asyncio
    async def test_set_cloud_id(self, store):
        process = await store.create_process("p")
        await store.set_cloud_id(process.id, "remote-7")
        assert (await store.get_process(process.id)).cloud_id == "remote-7"

    @pytest.mark.asyncio
    async def test_delete_cascades(self, temp_db, store):
        """Test that deleting a process leaves no orphan rows anywhere."""
        process = await store.create_process("Doomed")
        other = await store.create_process("Survivor")
        saved = await store.save_steps(process.id, [
            Step(process_id=process.id, action="a"),
            Step(process_id=process.id, action="b"),
        ])
        kept = await store.save_steps(other.id, [Step(process_id=other.id, action="c")])
        await store.add_artifact(process.id, saved[0].id, ArtifactKind.INPUT, "in.txt", "text/plain", b"in")
        await store.add_artifact(other.id, kept[0].id, ArtifactKind.OUTPUT, "out.txt", "text/plain", b"out")

        await store.delete_process(process.id)

        assert await orphan_counts(temp_db) == (0, 0)
        assert await store.counts() == {"processes": 1, "steps": 1, "artifacts": 1}
        with pytest.raises(NotFoundError):
            await store.get_process(process.id)

    @pytest.mark.asyncio
    async def test_reset(self, store):
        process = await store.create_process("p")
        saved = await store.save_steps(process.id, [Step(process_id=process.id)])
        await store.add_artifact(process.id, saved[0].id, "system", "s.png", None, b"png")

        await store.reset()

        assert await store.counts() == {"processes": 0, "steps": 0, "artifacts": 0}


class TestSaveSteps:
    """Tests for saving a step list."""

    @pytest.mark.asyncio
    async def test_assigns_ids_without_touching_input(self, store):
        process = await store.create_process("p")
        steps = [Step(process_id=process.id, index=i, action=f"s{i}") for i in range(3)]

        saved = await store.save_steps(process.id, steps)

        assert all(s.id is not None for s in saved)
        assert all(s.id is None for s in steps)
        assert [s.key for s in saved] == [s.key for s in steps]

    @pytest.mark.asyncio
    async def test_save_is_idempotent(self, store):
        """Test that saving the same list twice creates no duplicates."""
        process = await store.create_process("p")
        steps = [Step(process_id=process.id, index=i) for i in range(3)]

        first = await store.save_steps(process.id, steps)
        second = await store.save_steps(process.id, first)

        assert [s.id for s in first] == [s.id for s in second]
        assert await store.steps.count(process.id) == 3

    @pytest.mark.asyncio
    async def test_unsaved_copy_reuses_row_by_key(self, store):
        """Test that a step restored without its id does not duplicate."""
        process = await store.create_process("p")
        step = Step(process_id=process.id, action="a")
        saved = await store.save_steps(process.id, [step])

        again = await store.save_steps(process.id, [step])

        assert again[0].id == saved[0].id
        assert await store.steps.count(process.id) == 1

    @pytest.mark.asyncio
    async def test_round_trip_fields(self, store):
        process = await store.create_process("p")
        a = Step(process_id=process.id, index=0, who="Clerk", tools=["Excel"], frequency="Daily")
        b = Step(process_id=process.id, index=1, is_end=True)
        a.route_to(b)
        await store.save_steps(process.id, [a, b])

        steps, artifacts = await store.load_steps_and_artifacts(process.id)

        assert [s.key for s in steps] == [a.key, b.key]
        assert steps[0].who == "Clerk"
        assert steps[0].tools == ["Excel"]
        assert steps[0].frequency == "Daily"
        assert steps[0].next_type == "step"
        assert steps[0].next_ref == b.key
        assert steps[1].is_end is True
        assert artifacts == {}

    @pytest.mark.asyncio
    async def test_prunes_missing_steps_and_their_artifacts(self, temp_db, store):
        process = await store.create_process("p")
        saved = await store.save_steps(process.id, [
            Step(process_id=process.id, index=0),
            Step(process_id=process.id, index=1),
        ])
        await store.add_artifact(process.id, saved[1].id, "input", "a.txt", None, b"a")

        await store.save_steps(process.id, [saved[0]])

        assert await store.steps.count(process.id) == 1
        assert await store.artifacts.count(process.id) == 0
        assert await orphan_counts(temp_db) == (0, 0)

    @pytest.mark.asyncio
    async def test_failed_save_changes_nothing(self, store):
        """Test that a save failing halfway leaves the database untouched."""
        process = await store.create_process("p")
        step = Step(process_id=process.id)
        twin = Step(process_id=process.id, key=step.key)

        with pytest.raises(StorageError):
            await store.save_steps(process.id, [step, twin])

        assert await store.steps.count() == 0
        assert step.id is None

    @pytest.mark.asyncio
    async def test_missing_process(self, store):
        with pytest.raises(NotFoundError):
            await store.save_steps(404, [Step(process_id=404)])


class TestImportBundle:
    """Tests for atomic import of a process bundle."""

    @pytest.mark.asyncio
    async def test_remaps_artifact_steps(self, store):
        a = Step(process_id=0, index=0, action="a")
        b = Step(process_id=0, index=1, action="b")
        artifact = Artifact(process_id=0, step_id=21, kind="input", name="x.txt", size=4)

        process = await store.import_bundle(Process(name="Copy"), [(20, a), (21, b)], [artifact])

        steps, grouped = await store.load_steps_and_artifacts(process.id)
        assert [s.action for s in steps] == ["a", "b"]
        assert [x.name for x in grouped[steps[1].id]] == ["x.txt"]
        assert a.id is None

    @pytest.mark.asyncio
    async def test_unknown_step_rolls_back(self, store):
        artifact = Artifact(process_id=0, step_id=99, kind="input", name="x.txt")

        with pytest.raises(NotFoundError):
            await store.import_bundle(Process(name="Copy"), [(1, Step(process_id=0))], [artifact])

        assert await store.counts() == {"processes": 0, "steps": 0, "artifacts": 0}


class TestArtifacts:
    """Tests for artifact operations."""

    @pytest.mark.asyncio
    async def test_add_and_load(self, store):
        process = await store.create_process("p")
        saved = await store.save_steps(process.id, [Step(process_id=process.id)])

        artifact = await store.add_artifact(
            process.id, saved[0].id, ArtifactKind.INPUT, "data.csv", "text/csv", b"a,b\n1,2\n"
        )

        assert artifact.id is not None
        assert artifact.size == 8

        full = await store.get_artifact(artifact.id)
        assert full.content == b"a,b\n1,2\n"
        assert full.kind == "input"

        meta = await store.get_artifact(artifact.id, with_content=False)
        assert meta.content is None

        _, grouped = await store.load_steps_and_artifacts(process.id)
        assert [a.name for a in grouped[saved[0].id]] == ["data.csv"]
        assert grouped[saved[0].id][0].content is None

    @pytest.mark.asyncio
    async def test_default_mime_type(self, store):
        process = await store.create_process("p")
        saved = await store.save_steps(process.id, [Step(process_id=process.id)])

        artifact = await store.add_artifact(process.id, saved[0].id, "output", "blob", None, b"x")

        assert artifact.mime_type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_step_must_belong_to_process(self, store):
        process = await store.create_process("p")
        other = await store.create_process("q")
        saved = await store.save_steps(other.id, [Step(process_id=other.id)])

        with pytest.raises(NotFoundError):
            await store.add_artifact(process.id, saved[0].id, "input", "x", None, b"x")

    @pytest.mark.asyncio
    async def test_delete(self, store):
        process = await store.create_process("p")
        saved = await store.save_steps(process.id, [Step(process_id=process.id)])
        artifact = await store.add_artifact(process.id, saved[0].id, "input", "x", None, b"x")

        await store.delete_artifact(artifact.id)

        with pytest.raises(NotFoundError):
            await store.get_artifact(artifact.id)
        with pytest.raises(NotFoundError):
            await store.delete_artifact(artifact.id)
