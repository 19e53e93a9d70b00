"""Tests for remote mirroring."""

import asyncio
import json
import tempfile
from pathlib import Path

import httpx
import pytest

from gatherer.engine import Workspace
from gatherer.errors import RemoteUnavailable
from gatherer.models import Step, SyncStatus
from gatherer.sync import SyncClient, step_payloads

API_BASE = "https://remote.test"


class FakeRemote:
    """Records requests and answers like the remote process service."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests: list[tuple[str, str, dict]] = []
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.method, request.url.path, body))
        if self.fail:
            return httpx.Response(503, json={"error": "unavailable"})
        if request.method == "POST" and request.url.path == "/processes":
            return httpx.Response(200, json={"processId": "cloud-1"})
        return httpx.Response(200, json={})

    def calls(self, method: str, path: str) -> list[dict]:
        return [body for m, p, body in self.requests if m == method and p == path]


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
async def workspace(remote):
    """A started workspace mirrored to the fake remote."""
    with tempfile.TemporaryDirectory() as tmpdir:
        ws = Workspace(
            db_path=Path(tmpdir) / "sync.db",
            api_base=API_BASE,
            transport=remote.transport,
        )
        await ws.start()
        yield ws
        await ws.stop()


class TestStepPayloads:
    """Tests for the remote step list."""

    def test_routes_become_positions(self):
        a = Step(process_id=1, index=0, action="a")
        b = Step(process_id=1, index=1, action="b", is_end=True)
        a.route_to(b)

        payloads = step_payloads([a, b])

        assert payloads[0]["nextType"] == "step"
        assert payloads[0]["nextRef"] == 1
        assert payloads[1]["isEnd"] is True
        assert payloads[1]["nextRef"] is None
        assert set(payloads[0]) == {
            "index", "who", "action", "tools", "details", "frequency",
            "outcome", "duration", "isEnd", "nextType", "nextRef",
        }


class TestSyncClient:
    """Tests for the HTTP client."""

    @pytest.mark.asyncio
    async def test_disabled_without_base_url(self):
        client = SyncClient(None)
        assert not client.enabled
        with pytest.raises(RemoteUnavailable):
            await client.create_process("x")
        await client.close()

    @pytest.mark.asyncio
    async def test_errors_become_remote_unavailable(self):
        remote = FakeRemote(fail=True)
        client = SyncClient(API_BASE, transport=remote.transport)

        with pytest.raises(RemoteUnavailable):
            await client.put_steps("cloud-1", [])
        await client.close()

    @pytest.mark.asyncio
    async def test_create_requires_process_id(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        client = SyncClient(API_BASE, transport=transport)

        with pytest.raises(RemoteUnavailable):
            await client.create_process("x")
        await client.close()


class TestSyncWorker:
    """Tests for background mirroring through the workspace."""

    @pytest.mark.asyncio
    async def test_first_save_provisions_remote(self, workspace, remote):
        process = await workspace.create_process("Onboarding")
        workspace.editor.add_step(action="Send contract")
        await workspace.save()
        await workspace.sync.wait_idle()

        assert remote.calls("POST", "/processes") == [{"name": "Onboarding"}]
        steps = remote.calls("PUT", "/processes/cloud-1/steps")
        assert len(steps) == 1
        assert steps[0]["steps"][0]["action"] == "Send contract"
        assert (await workspace.get_process(process.id)).cloud_id == "cloud-1"
        assert workspace.sync_status(process.id) == SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_second_save_updates(self, workspace, remote):
        await workspace.create_process("Onboarding")
        workspace.editor.add_step(action="Send contract")
        await workspace.save()
        await workspace.sync.wait_idle()
        remote.requests.clear()

        workspace.editor.add_step(action="Create account")
        await workspace.save()
        await workspace.sync.wait_idle()

        assert remote.calls("POST", "/processes") == []
        assert len(remote.calls("PUT", "/processes/cloud-1")) == 1
        replaced = remote.calls("PUT", "/processes/cloud-1/steps")
        assert len(replaced) == 1
        assert [s["action"] for s in replaced[0]["steps"]] == ["Send contract", "Create account"]

    @pytest.mark.asyncio
    async def test_rename_pushes_metadata(self, workspace, remote):
        process = await workspace.create_process("Old")
        workspace.editor.add_step()
        await workspace.save()
        await workspace.sync.wait_idle()
        remote.requests.clear()

        await workspace.rename_process(process.id, "New")
        await workspace.sync.wait_idle()

        assert remote.calls("PUT", "/processes/cloud-1") == [{"name": "New", "description": ""}]
        assert remote.calls("PUT", "/processes/cloud-1/steps") == []

    @pytest.mark.asyncio
    async def test_rename_before_first_sync_stays_local(self, workspace, remote):
        process = await workspace.create_process("Old")

        await workspace.rename_process(process.id, "New")
        await workspace.sync.wait_idle()

        assert remote.requests == []

    @pytest.mark.asyncio
    async def test_latest_submission_wins(self, workspace, remote):
        process = await workspace.create_process("p")
        for count in (1, 2, 3):
            workspace.sync.submit(process.id, [{"index": i} for i in range(count)])
        await workspace.sync.wait_idle()

        replaced = remote.calls("PUT", "/processes/cloud-1/steps")
        assert len(replaced) == 1
        assert len(replaced[0]["steps"]) == 3

    @pytest.mark.asyncio
    async def test_failure_keeps_local_data(self, workspace, remote):
        remote.fail = True
        statuses = []

        async def on_status(process_id, status):
            statuses.append(status)

        workspace.on("sync_status", on_status)
        process = await workspace.create_process("Offline")
        workspace.editor.add_step(action="Still saved")
        await workspace.save()
        await workspace.sync.wait_idle()

        assert workspace.sync_status(process.id) == SyncStatus.ERROR
        assert workspace.sync.last_error(process.id)
        assert statuses == [SyncStatus.SYNCING, SyncStatus.ERROR]

        stored = await workspace.get_process(process.id)
        assert stored.cloud_id is None
        steps, _ = await workspace.store.load_steps_and_artifacts(process.id)
        assert [s.action for s in steps] == ["Still saved"]

        # The next save retries and recovers
        remote.fail = False
        await workspace.save()
        await workspace.sync.wait_idle()
        assert workspace.sync_status(process.id) == SyncStatus.IDLE
        assert (await workspace.get_process(process.id)).cloud_id == "cloud-1"

    @pytest.mark.asyncio
    async def test_slow_remote_does_not_block_saves(self):
        """Saves finish while a request hangs; requests never overlap."""
        release = asyncio.Event()
        calls = []
        in_flight = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            calls.append((request.method, request.url.path))
            await release.wait()
            in_flight -= 1
            if request.method == "POST":
                return httpx.Response(200, json={"processId": "cloud-1"})
            return httpx.Response(200, json={})

        with tempfile.TemporaryDirectory() as tmpdir:
            ws = Workspace(
                db_path=Path(tmpdir) / "slow.db",
                api_base=API_BASE,
                transport=httpx.MockTransport(handler),
            )
            await ws.start()
            try:
                process = await ws.create_process("Slow")
                ws.editor.add_step(action="a")
                await asyncio.wait_for(ws.save(), timeout=2)
                while not calls:
                    await asyncio.sleep(0.01)

                ws.editor.add_step(action="b")
                await asyncio.wait_for(ws.save(), timeout=2)

                assert calls == [("POST", "/processes")]
                assert ws.sync_status(process.id) == SyncStatus.SYNCING

                release.set()
                await ws.sync.wait_idle()

                assert peak == 1
                assert calls.count(("POST", "/processes")) == 1
                assert calls[-1] == ("PUT", "/processes/cloud-1/steps")
                assert ws.sync_status(process.id) == SyncStatus.IDLE
            finally:
                release.set()
                await ws.stop()

    @pytest.mark.asyncio
    async def test_disabled_makes_no_calls(self, remote):
        with tempfile.TemporaryDirectory() as tmpdir:
            ws = Workspace(db_path=Path(tmpdir) / "local.db", transport=remote.transport)
            await ws.start()
            await ws.create_process("Local")
            ws.editor.add_step()
            await ws.save()
            await ws.sync.wait_idle()

            assert not ws.sync.enabled
            assert remote.requests == []
            assert ws.sync_status(ws.active_process_id) == SyncStatus.IDLE
            await ws.stop()
