"""Import and export of processes as portable JSON documents."""

from pathlib import Path
from typing import Optional, Union, Any
from uuid import uuid4
import json
import logging
import re

import aiofiles
from pydantic import BaseModel, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..errors import InvalidDocument
from ..models import Process, Step, Artifact, ArtifactKind, NextType
from ..storage import LocalStore

logger = logging.getLogger(__name__)

IMPORT_SUFFIX = " (import)"
DEFAULT_IMPORT_NAME = "Imported Process"
EXPORT_EXTENSION = ".apo.json"


# -------------------------------------------------------------------------
# Document schema (what an import must look like)
# -------------------------------------------------------------------------

class _DocumentModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class ProcessEntry(_DocumentModel):
    name: Optional[str] = None
    description: Optional[str] = None


class StepEntry(_DocumentModel):
    id: Optional[int] = None
    key: Optional[str] = None
    index: Optional[int] = None
    who: str = ""
    action: str = ""
    tools: list[str] = Field(default_factory=list)
    details: str = ""
    frequency: str = ""
    outcome: str = ""
    duration: str = ""
    is_end: bool = False
    next_type: NextType = NextType.END
    next_ref: Optional[Union[int, str]] = None


class ArtifactEntry(_DocumentModel):
    step_id: int
    kind: ArtifactKind = Field(alias="type")
    name: str
    mime_type: str = "application/octet-stream"
    size: int = 0


class ExchangeDocument(_DocumentModel):
    """Top-level export document: a process, its steps and artifact metadata."""
    process: Optional[ProcessEntry]
    steps: list[StepEntry]
    artifacts: list[ArtifactEntry]


# -------------------------------------------------------------------------
# Export
# -------------------------------------------------------------------------

async def export_process(store: LocalStore, process_id: int) -> dict[str, Any]:
    """
    Build the export document of a process.

    Binary artifact content is left out on purpose; an import restores
    artifact metadata only.
    """
    process = await store.get_process(process_id)
    steps, grouped = await store.load_steps_and_artifacts(process_id)
    artifacts = [a for step in steps for a in grouped.get(step.id, [])]

    return {
        "process": process.model_dump(mode="json", by_alias=True),
        "steps": [s.model_dump(mode="json", by_alias=True) for s in steps],
        "artifacts": [a.model_dump(mode="json", by_alias=True) for a in artifacts],
    }


def export_filename(name: Optional[str]) -> str:
    """File name for an exported process."""
    stem = re.sub(r"[\s/\\]+", "_", (name or "").strip()) or "process"
    return stem + EXPORT_EXTENSION


async def export_to_file(store: LocalStore, process_id: int, directory: Path | str) -> Path:
    """Write the export document of a process into a directory. Returns the file path."""
    document = await export_process(store, process_id)
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(document["process"]["name"])

    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(document, indent=2))

    logger.info(f"Exported process {process_id} to {path}")
    return path


# -------------------------------------------------------------------------
# Import
# -------------------------------------------------------------------------

def parse_document(raw: Union[dict, str, bytes]) -> ExchangeDocument:
    """
    Validate an import document.

    Raises:
        InvalidDocument: If the document is not JSON, does not match the
            schema, or its references do not resolve
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidDocument(f"Not a JSON document: {e}") from e

    if not isinstance(raw, dict):
        raise InvalidDocument("Document must be a JSON object")

    try:
        document = ExchangeDocument.model_validate(raw)
    except ValidationError as e:
        raise InvalidDocument(f"Malformed document: {e}") from e

    step_ids = [s.id for s in document.steps if s.id is not None]
    if len(step_ids) != len(set(step_ids)):
        raise InvalidDocument("Duplicate step ids")

    if sum(1 for s in document.steps if s.is_end) > 1:
        raise InvalidDocument("More than one step is marked as end")

    known = set(step_ids)
    for artifact in document.artifacts:
        if artifact.step_id not in known:
            raise InvalidDocument(
                f"Artifact {artifact.name!r} references unknown step {artifact.step_id}"
            )

    return document


def _build_steps(document: ExchangeDocument) -> list[tuple[Optional[int], Step]]:
    """Turn document entries into fresh steps (new keys, routes rewired)."""
    entries = sorted(
        enumerate(document.steps),
        key=lambda item: (item[1].index if item[1].index is not None else item[0], item[0]),
    )
    entries = [entry for _, entry in entries]

    new_keys = [str(uuid4()) for _ in entries]
    by_old_key = {
        entry.key: new_keys[position]
        for position, entry in enumerate(entries)
        if entry.key
    }

    built = []
    for position, entry in enumerate(entries):
        next_ref = entry.next_ref
        if entry.is_end or entry.next_type == NextType.END:
            next_ref = None
        elif entry.next_type == NextType.STEP:
            if isinstance(next_ref, int):
                # Older documents route by position
                next_ref = new_keys[next_ref] if 0 <= next_ref < len(entries) else None
            else:
                next_ref = by_old_key.get(next_ref)
        elif next_ref is not None:
            next_ref = str(next_ref)

        step = Step(
            key=new_keys[position],
            process_id=0,
            index=position,
            who=entry.who,
            action=entry.action,
            tools=entry.tools,
            details=entry.details,
            frequency=entry.frequency,
            outcome=entry.outcome,
            duration=entry.duration,
            is_end=entry.is_end,
            next_type=NextType.END if entry.is_end else entry.next_type,
            next_ref=next_ref,
        )
        built.append((entry.id, step))
    return built


async def import_document(store: LocalStore, raw: Union[dict, str, bytes]) -> int:
    """
    Create a new process from an export document. Returns the new process id.

    The document is validated completely before anything is written, and
    the whole import runs in one transaction.
    """
    document = parse_document(raw)
    try:
        steps = _build_steps(document)
    except ValidationError as e:
        raise InvalidDocument(f"Malformed step: {e}") from e

    entry = document.process or ProcessEntry()
    name = (entry.name or DEFAULT_IMPORT_NAME) + IMPORT_SUFFIX

    artifacts = [
        Artifact(
            process_id=0,
            step_id=artifact.step_id,
            kind=artifact.kind,
            name=artifact.name,
            mime_type=artifact.mime_type,
            size=artifact.size,
        )
        for artifact in document.artifacts
    ]

    process = await store.import_bundle(
        Process(name=name, description=entry.description or ""),
        steps,
        artifacts,
    )
    return process.id


async def import_from_file(store: LocalStore, path: Path | str) -> int:
    """Import a process from an export file."""
    async with aiofiles.open(Path(path), "r", encoding="utf-8") as f:
        text = await f.read()
    return await import_document(store, text)
