"""Background mirroring of saved processes to the remote service."""

import asyncio
from dataclasses import dataclass
from typing import Optional, Callable, Awaitable, Any
import logging

from ..errors import NotFoundError, RemoteUnavailable
from ..models import SyncStatus
from ..storage import LocalStore
from .client import SyncClient

logger = logging.getLogger(__name__)


@dataclass
class SyncJob:
    """One unit of remote work for a process.

    Attributes:
        process_id: Local process id
        steps: Remote step payloads to replace, or None for a metadata-only update
    """
    process_id: int
    steps: Optional[list[dict[str, Any]]] = None


class SyncWorker:
    """
    Runs remote calls in the background, one sequence at a time per process.

    Jobs submitted while a sequence is in flight for the same process wait
    behind it; only the latest waiting job is kept, since each save carries
    the complete step list. Failures never reach the caller: they are logged
    as warnings and reflected in the process's sync status.
    """

    def __init__(self, client: SyncClient, store: LocalStore):
        self.client = client
        self.store = store
        self._pending: dict[int, SyncJob] = {}
        self._tasks: dict[int, asyncio.Task] = {}
        self._status: dict[int, SyncStatus] = {}
        self._errors: dict[int, str] = {}
        self._callbacks: list[Callable[[int, SyncStatus], Awaitable[None]]] = []

    @property
    def enabled(self) -> bool:
        return self.client.enabled

    def on_status(self, callback: Callable[[int, SyncStatus], Awaitable[None]]) -> None:
        """Register a callback for sync status changes."""
        self._callbacks.append(callback)

    def status(self, process_id: int) -> SyncStatus:
        """Current sync status of a process."""
        return self._status.get(process_id, SyncStatus.IDLE)

    def last_error(self, process_id: int) -> Optional[str]:
        """Message of the last failed attempt, if the last attempt failed."""
        return self._errors.get(process_id)

    def statuses(self) -> dict[int, str]:
        """Sync status of every process seen by this worker."""
        return {pid: status.value for pid, status in self._status.items()}

    def submit(self, process_id: int, steps: Optional[list[dict[str, Any]]] = None) -> None:
        """
        Queue remote work for a process. Returns immediately.

        Args:
            process_id: Local process id
            steps: Full remote step list, or None to only push metadata
        """
        if not self.client.enabled:
            return

        waiting = self._pending.get(process_id)
        if waiting is None or steps is not None:
            self._pending[process_id] = SyncJob(process_id, steps)

        task = self._tasks.get(process_id)
        if task is None or task.done():
            self._tasks[process_id] = asyncio.create_task(self._drain(process_id))

    async def wait_idle(self) -> None:
        """Wait until every queued job has run."""
        while True:
            running = [t for t in self._tasks.values() if not t.done()]
            if not running:
                return
            await asyncio.gather(*running, return_exceptions=True)

    async def close(self) -> None:
        """Cancel in-flight work and close the HTTP client."""
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._tasks.clear()
        self._pending.clear()
        await self.client.close()

    def forget(self, process_id: int) -> None:
        """Drop queued work and status of a process (after it was deleted)."""
        self._pending.pop(process_id, None)
        self._status.pop(process_id, None)
        self._errors.pop(process_id, None)

    async def _drain(self, process_id: int) -> None:
        while process_id in self._pending:
            job = self._pending.pop(process_id)
            await self._set_status(process_id, SyncStatus.SYNCING)
            try:
                await self._run(job)
            except RemoteUnavailable as e:
                logger.warning(f"Cloud sync failed for process {process_id} (offline mode): {e}")
                self._errors[process_id] = str(e)
                await self._set_status(process_id, SyncStatus.ERROR)
                continue
            except NotFoundError:
                logger.debug(f"Process {process_id} was deleted before it could sync")
                self.forget(process_id)
                continue
            except Exception as e:
                logger.error(f"Unexpected error while syncing process {process_id}: {e}")
                self._errors[process_id] = str(e)
                await self._set_status(process_id, SyncStatus.ERROR)
                continue
            self._errors.pop(process_id, None)
            await self._set_status(process_id, SyncStatus.IDLE)

    async def _run(self, job: SyncJob) -> None:
        """Reconcile one process with its remote counterpart."""
        process = await self.store.get_process(job.process_id)
        cloud_id = process.cloud_id

        if cloud_id is None:
            if job.steps is None:
                # Nothing remote yet; the next save provisions it
                return
            cloud_id = await self.client.create_process(process.name)
            await self.store.set_cloud_id(process.id, cloud_id)
        else:
            await self.client.update_process(
                cloud_id,
                name=process.name,
                description=process.description,
            )

        if job.steps is not None:
            await self.client.put_steps(cloud_id, job.steps)

        logger.info(f"Synced process {process.id} to remote {cloud_id}")

    async def _set_status(self, process_id: int, status: SyncStatus) -> None:
        if self._status.get(process_id) == status:
            return
        self._status[process_id] = status
        for callback in self._callbacks:
            try:
                await callback(process_id, status)
            except Exception as e:
                logger.warning(f"Sync status callback failed: {e}")
