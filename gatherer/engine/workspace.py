"""Workspace - the main orchestrator the UI collaborator talks to."""

from pathlib import Path
from typing import Optional, Callable, Any, Union
import logging

import httpx

from ..config import Settings
from ..errors import ConfirmationRequired, NoActiveProcess
from ..models import Process, Step, SyncStatus
from ..storage import Database, LocalStore
from ..sync import SyncClient, SyncWorker, step_payloads
from . import exchange
from .editor import ProcessEditor
from .history import MAX_HISTORY

logger = logging.getLogger(__name__)


class Workspace:
    """
    Main orchestrator for the process gatherer.

    Manages:
    - The database and local store (one per workspace)
    - The active editing session (one process at a time)
    - Background mirroring to the remote service
    - Event callbacks for UI integration

    Usage:
        workspace = Workspace(db_path="gatherer.db", api_base="https://api.example.com")
        await workspace.start()

        process = await workspace.create_process()
        workspace.editor.add_step(action="Collect invoices")
        await workspace.save()

        await workspace.stop()
    """

    def __init__(
        self,
        db_path: Path | str = "gatherer.db",
        api_base: Optional[str] = None,
        request_timeout: float = 10.0,
        history_limit: int = MAX_HISTORY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db_path = Path(db_path)
        self.history_limit = history_limit

        # Core components
        self.database = Database(db_path)
        self.store = LocalStore(self.database)
        self.sync = SyncWorker(
            SyncClient(api_base, timeout=request_timeout, transport=transport),
            self.store,
        )
        self.sync.on_status(self._handle_sync_status)

        # State
        self._running = False
        self._editor: Optional[ProcessEditor] = None

        # Callbacks
        self._callbacks: dict[str, list[Callable]] = {
            "process_created": [],
            "process_renamed": [],
            "process_deleted": [],
            "process_saved": [],
            "process_imported": [],
            "sync_status": [],
            "data_reset": [],
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "Workspace":
        """Build a workspace from loaded settings."""
        return cls(
            db_path=settings.db_path,
            api_base=settings.api_base,
            request_timeout=settings.request_timeout,
            history_limit=settings.history_limit,
            transport=transport,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to the database and open the most recently updated process."""
        if self._running:
            logger.warning("Workspace already running")
            return

        logger.info("Starting workspace...")
        await self.database.connect()
        self._running = True

        processes = await self.store.list_processes()
        if processes:
            await self.open_process(processes[0].id)

        mode = "cloud sync on" if self.sync.enabled else "local only"
        logger.info(f"Workspace started ({len(processes)} processes, {mode})")

    async def stop(self) -> None:
        """Stop background sync and close the database."""
        if not self._running:
            return

        logger.info("Stopping workspace...")
        self._running = False
        await self.sync.close()
        await self.database.close()
        self._editor = None
        logger.info("Workspace stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    @property
    def editor(self) -> ProcessEditor:
        """The active editing session (raises NoActiveProcess)."""
        if self._editor is None:
            raise NoActiveProcess("No process is open")
        return self._editor

    @property
    def active_process_id(self) -> Optional[int]:
        return self._editor.process_id if self._editor else None

    async def open_process(self, process_id: int) -> ProcessEditor:
        """Switch the session to a process. Undo/redo history starts empty."""
        self._editor = await ProcessEditor.open(
            self.store,
            process_id,
            history_limit=self.history_limit,
            on_saved=self._handle_saved,
        )
        logger.info(f"Opened process {process_id}")
        return self._editor

    async def save(self) -> list[Step]:
        """Save the active session and queue remote mirroring."""
        return await self.editor.save()

    # -------------------------------------------------------------------------
    # Process Management
    # -------------------------------------------------------------------------

    async def list_processes(self) -> list[Process]:
        """List processes, most recently updated first."""
        return await self.store.list_processes()

    async def get_process(self, process_id: int) -> Process:
        """Get a process by ID."""
        return await self.store.get_process(process_id)

    async def create_process(self, name: Optional[str] = None) -> Process:
        """
        Create an empty process and open it.

        Args:
            name: Display name (default "Untitled Process N")

        Returns:
            The created process
        """
        if not name:
            name = f"Untitled Process {await self.store.processes.count() + 1}"
        process = await self.store.create_process(name)
        await self.open_process(process.id)
        await self._emit("process_created", process)
        return process

    async def rename_process(self, process_id: int, name: str) -> Process:
        """Rename a process; the remote copy follows if it exists."""
        return await self.update_process(process_id, name=name)

    async def update_process(
        self,
        process_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Process:
        """Change name and/or description; the remote copy follows if it exists."""
        process = await self.store.update_process(process_id, name=name, description=description)
        if self._editor and self._editor.process_id == process_id:
            self._editor.process = process
        self.sync.submit(process_id)
        await self._emit("process_renamed", process)
        return process

    async def delete_process(self, process_id: int, confirm: bool = False) -> None:
        """
        Delete a process with its steps and artifacts.

        Raises:
            ConfirmationRequired: If confirm is False
        """
        if not confirm:
            raise ConfirmationRequired("Delete this process and all steps/artifacts?")

        await self.store.delete_process(process_id)
        self.sync.forget(process_id)

        if self.active_process_id == process_id:
            self._editor = None
            remaining = await self.store.list_processes()
            if remaining:
                await self.open_process(remaining[0].id)

        await self._emit("process_deleted", process_id)

    async def reset(self, confirm: bool = False) -> None:
        """
        Delete every process, step and artifact.

        Raises:
            ConfirmationRequired: If confirm is False
        """
        if not confirm:
            raise ConfirmationRequired(
                "This will delete all locally stored processes and files. Continue?"
            )

        await self.store.reset()
        for process_id in list(self.sync.statuses()):
            self.sync.forget(process_id)
        self._editor = None
        await self._emit("data_reset")

    def sync_status(self, process_id: int) -> SyncStatus:
        """Remote mirroring status of a process."""
        return self.sync.status(process_id)

    # -------------------------------------------------------------------------
    # Import / Export
    # -------------------------------------------------------------------------

    async def export_process(self, process_id: int) -> dict[str, Any]:
        """Export document of a process (artifact metadata only)."""
        return await exchange.export_process(self.store, process_id)

    async def export_to_file(self, process_id: int, directory: Path | str) -> Path:
        """Write the export document of a process to a directory."""
        return await exchange.export_to_file(self.store, process_id, directory)

    async def import_document(self, document: Union[dict, str, bytes]) -> Process:
        """Import a document as a brand-new process."""
        process_id = await exchange.import_document(self.store, document)
        process = await self.store.get_process(process_id)
        await self._emit("process_imported", process)
        return process

    async def import_from_file(self, path: Path | str) -> Process:
        """Import an export file as a brand-new process."""
        process_id = await exchange.import_from_file(self.store, path)
        process = await self.store.get_process(process_id)
        await self._emit("process_imported", process)
        return process

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def on(self, event: str, callback: Callable) -> None:
        """
        Register a callback for an event.

        Events:
            - process_created(process)
            - process_renamed(process)
            - process_deleted(process_id)
            - process_saved(process, steps)
            - process_imported(process)
            - sync_status(process_id, status)
            - data_reset()
        """
        if event in self._callbacks:
            self._callbacks[event].append(callback)
        else:
            logger.warning(f"Unknown event type: {event}")

    async def _emit(self, event: str, *args) -> None:
        """Emit an event to all registered callbacks."""
        for callback in self._callbacks.get(event, []):
            try:
                await callback(*args)
            except Exception as e:
                logger.error(f"Error in {event} callback: {e}")

    async def _handle_saved(self, process: Process, steps: list[Step]) -> None:
        """Queue remote mirroring after a local save."""
        self.sync.submit(process.id, step_payloads(steps))
        await self._emit("process_saved", process, steps)

    async def _handle_sync_status(self, process_id: int, status: SyncStatus) -> None:
        """Forward sync status changes."""
        await self._emit("sync_status", process_id, status)
