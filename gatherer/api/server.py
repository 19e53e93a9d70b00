"""FastAPI server for UI communication."""

from typing import Optional, Literal
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
import uvicorn
import json

from ..config import load_settings
from ..engine import Workspace
from ..errors import (
    NotFoundError,
    NoActiveProcess,
    ConfirmationRequired,
    InvalidDocument,
    StorageError,
)
from ..models import ArtifactKind, NextType

logger = logging.getLogger(__name__)

# Global workspace instance
workspace: Optional[Workspace] = None


# -------------------------------------------------------------------------
# Request Models
# -------------------------------------------------------------------------

class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateProcessRequest(_Request):
    """Request to create a new process."""
    name: Optional[str] = None


class UpdateProcessRequest(_Request):
    """Request to rename or describe a process."""
    name: Optional[str] = None
    description: Optional[str] = None


class StepFieldsRequest(_Request):
    """Step fields; only the fields sent are applied."""
    who: Optional[str] = None
    action: Optional[str] = None
    tools: Optional[list[str]] = None
    details: Optional[str] = None
    frequency: Optional[str] = None
    outcome: Optional[str] = None
    duration: Optional[str] = None
    is_end: Optional[bool] = None
    next_type: Optional[NextType] = None
    next_ref: Optional[int | str] = None


class MoveStepRequest(_Request):
    """Request to move a step up (-1) or down (1)."""
    direction: Literal[-1, 1]


# -------------------------------------------------------------------------
# WebSocket Connection Manager
# -------------------------------------------------------------------------

class ConnectionManager:
    """Manages WebSocket connections for real-time updates."""

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: dict):
        """Broadcast a message to all connected clients."""
        if not self.active_connections:
            return

        message_json = json.dumps(message, default=str)

        for connection in self.active_connections.copy():
            try:
                await connection.send_text(message_json)
            except Exception as e:
                logger.warning(f"Error sending WebSocket message: {e}")
                self.disconnect(connection)


manager = ConnectionManager()


# -------------------------------------------------------------------------
# App Lifecycle
# -------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global workspace

    logger.info("Starting Process Gatherer API server...")

    settings = load_settings()
    workspace = Workspace.from_settings(settings)
    await workspace.start()

    # Register callbacks for WebSocket broadcasts
    workspace.on("process_created", on_process_created)
    workspace.on("process_renamed", on_process_renamed)
    workspace.on("process_deleted", on_process_deleted)
    workspace.on("process_saved", on_process_saved)
    workspace.on("process_imported", on_process_imported)
    workspace.on("sync_status", on_sync_status)
    workspace.on("data_reset", on_data_reset)

    logger.info("Process Gatherer API server started")

    yield

    logger.info("Shutting down Process Gatherer API server...")
    await workspace.stop()
    logger.info("Process Gatherer API server stopped")


# -------------------------------------------------------------------------
# Event Callbacks (for WebSocket)
# -------------------------------------------------------------------------

async def on_process_created(process):
    await manager.broadcast({"event": "process_created", "process_id": process.id})

async def on_process_renamed(process):
    await manager.broadcast({"event": "process_renamed", "process_id": process.id, "name": process.name})

async def on_process_deleted(process_id):
    await manager.broadcast({"event": "process_deleted", "process_id": process_id})

async def on_process_saved(process, steps):
    await manager.broadcast({
        "event": "process_saved",
        "process_id": process.id,
        "steps": len(steps),
    })

async def on_process_imported(process):
    await manager.broadcast({"event": "process_imported", "process_id": process.id})

async def on_sync_status(process_id, status):
    await manager.broadcast({
        "event": "sync_status",
        "process_id": process_id,
        "status": status.value,
    })

async def on_data_reset():
    await manager.broadcast({"event": "data_reset"})


# -------------------------------------------------------------------------
# App Factory
# -------------------------------------------------------------------------

def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="Process Gatherer API",
        description="API for the local-first process step gatherer",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Add CORS middleware for UI development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict this
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Error Mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(NoActiveProcess)
    async def no_active_process(request: Request, exc: NoActiveProcess):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ConfirmationRequired)
    async def confirmation_required(request: Request, exc: ConfirmationRequired):
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "confirmation_required": True},
        )

    @app.exception_handler(InvalidDocument)
    async def invalid_document(request: Request, exc: InvalidDocument):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def invalid_value(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    # -------------------------------------------------------------------------
    # Health Check
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    # -------------------------------------------------------------------------
    # Process Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/processes")
    async def list_processes():
        """List processes, most recently updated first."""
        processes = await workspace.list_processes()
        return [p.model_dump(mode="json", by_alias=True) for p in processes]

    @app.post("/api/processes", status_code=201)
    async def create_process(request: CreateProcessRequest):
        """Create a new process and open it."""
        process = await workspace.create_process(request.name)
        return process.model_dump(mode="json", by_alias=True)

    @app.get("/api/processes/{process_id}")
    async def get_process(process_id: int):
        """Get a process by ID."""
        process = await workspace.get_process(process_id)
        return process.model_dump(mode="json", by_alias=True)

    @app.patch("/api/processes/{process_id}")
    async def update_process(process_id: int, request: UpdateProcessRequest):
        """Rename and/or describe a process."""
        process = await workspace.update_process(
            process_id,
            name=request.name,
            description=request.description,
        )
        return process.model_dump(mode="json", by_alias=True)

    @app.delete("/api/processes/{process_id}")
    async def delete_process(process_id: int, confirm: bool = Query(False)):
        """Delete a process with its steps and artifacts."""
        await workspace.delete_process(process_id, confirm=confirm)
        return {"deleted": True}

    @app.post("/api/processes/{process_id}/open")
    async def open_process(process_id: int):
        """Switch the session to a process."""
        await workspace.open_process(process_id)
        return _session_to_response()

    @app.get("/api/processes/{process_id}/export")
    async def export_process(process_id: int):
        """Export a process as a JSON document (no file contents)."""
        return await workspace.export_process(process_id)

    @app.post("/api/import", status_code=201)
    async def import_process(request: Request):
        """Import an export document as a new process."""
        body = await request.body()
        process = await workspace.import_document(body)
        return process.model_dump(mode="json", by_alias=True)

    @app.delete("/api/data")
    async def reset_data(confirm: bool = Query(False)):
        """Delete everything."""
        await workspace.reset(confirm=confirm)
        return {"reset": True}

    # -------------------------------------------------------------------------
    # Session Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/session")
    async def get_session():
        """Current editing session."""
        return _session_to_response()

    @app.post("/api/session/steps", status_code=201)
    async def add_step(request: StepFieldsRequest):
        """Append a step."""
        workspace.editor.add_step(**request.model_dump(exclude_unset=True))
        return _session_to_response()

    @app.patch("/api/session/steps/{index}")
    async def update_step(index: int, request: StepFieldsRequest):
        """Change fields of a step."""
        workspace.editor.update_step(index, **request.model_dump(exclude_unset=True))
        return _session_to_response()

    @app.post("/api/session/steps/{index}/move")
    async def move_step(index: int, request: MoveStepRequest):
        """Move a step up or down."""
        workspace.editor.move_step(index, request.direction)
        return _session_to_response()

    @app.delete("/api/session/steps/{index}")
    async def remove_step(index: int, confirm: bool = Query(False)):
        """Remove a step."""
        workspace.editor.remove_step(index, confirm=confirm)
        return _session_to_response()

    @app.post("/api/session/undo")
    async def undo():
        """Undo the last step-list change."""
        workspace.editor.undo()
        return _session_to_response()

    @app.post("/api/session/redo")
    async def redo():
        """Redo the last undone change."""
        workspace.editor.redo()
        return _session_to_response()

    @app.post("/api/session/save")
    async def save():
        """Save the session; remote mirroring runs in the background."""
        await workspace.save()
        return _session_to_response()

    # -------------------------------------------------------------------------
    # Artifact Endpoints
    # -------------------------------------------------------------------------

    @app.post("/api/session/steps/{index}/artifacts", status_code=201)
    async def attach_artifact(
        index: int,
        request: Request,
        kind: ArtifactKind = Query(...),
        name: str = Query(..., min_length=1),
    ):
        """Attach a file (raw request body) to a step."""
        content = await request.body()
        mime_type = request.headers.get("content-type")
        artifact = await workspace.editor.attach_artifact(
            index, kind, name, content, mime_type=mime_type
        )
        return artifact.metadata()

    @app.get("/api/artifacts/{artifact_id}/content")
    async def get_artifact_content(artifact_id: int):
        """Download the stored file of an artifact."""
        artifact = await workspace.store.get_artifact(artifact_id)
        return Response(content=artifact.content or b"", media_type=artifact.mime_type)

    @app.delete("/api/artifacts/{artifact_id}")
    async def remove_artifact(artifact_id: int):
        """Delete an artifact."""
        if workspace.active_process_id is not None:
            await workspace.editor.remove_artifact(artifact_id)
        else:
            await workspace.store.delete_artifact(artifact_id)
        return {"deleted": True}

    # -------------------------------------------------------------------------
    # Sync Endpoints
    # -------------------------------------------------------------------------

    @app.get("/api/sync/status")
    async def sync_status():
        """Remote mirroring status."""
        return {
            "enabled": workspace.sync.enabled,
            "processes": workspace.sync.statuses(),
        }

    # -------------------------------------------------------------------------
    # WebSocket
    # -------------------------------------------------------------------------

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for real-time updates."""
        await manager.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
                logger.debug(f"Received WebSocket message: {data}")
                if data == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app


def _session_to_response() -> dict:
    """Convert the active session to a response dict."""
    editor = workspace.editor
    return {
        "process": editor.process.model_dump(mode="json", by_alias=True),
        "steps": [s.model_dump(mode="json", by_alias=True) for s in editor.steps],
        "artifacts": {
            str(step_id): [a.metadata() for a in artifacts]
            for step_id, artifacts in editor.artifacts.items()
        },
        "dirty": editor.dirty,
        "canUndo": editor.can_undo,
        "canRedo": editor.can_redo,
        "endIndex": editor.end_index,
        "syncStatus": workspace.sync_status(editor.process_id).value,
    }


# -------------------------------------------------------------------------
# Main Entry Point
# -------------------------------------------------------------------------

def main():
    """Run the API server."""
    import argparse

    parser = argparse.ArgumentParser(description="Process Gatherer API Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--config", help="Path to the YAML configuration file")
    parser.add_argument("--log-level", default=None, help="Log level")
    args = parser.parse_args()

    if args.config:
        os.environ["GATHERER_CONFIG"] = args.config

    log_level = args.log_level or load_settings().log_level
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "gatherer.api.server:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
