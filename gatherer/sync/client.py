"""HTTP client for the remote process service."""

from typing import Optional, Any
import json
import logging

import httpx

from ..errors import RemoteUnavailable
from ..models import Step, NextType

logger = logging.getLogger(__name__)


def step_payloads(steps: list[Step]) -> list[dict[str, Any]]:
    """
    Build the remote step list.

    The remote contract is positional: a "step" route carries the index of
    its target in the list being sent, so step keys are resolved to the
    target's current index here.
    """
    positions = {s.key: position for position, s in enumerate(steps)}
    payloads = []
    for step in steps:
        next_ref = step.next_ref
        if step.next_type == NextType.STEP:
            next_ref = positions.get(next_ref)
        payloads.append({
            "index": step.index,
            "who": step.who,
            "action": step.action,
            "tools": list(step.tools),
            "details": step.details,
            "frequency": step.frequency or "",
            "outcome": step.outcome,
            "duration": step.duration,
            "isEnd": step.is_end,
            "nextType": step.next_type,
            "nextRef": next_ref,
        })
    return payloads


class SyncClient:
    """
    Thin client for the three remote operations.

    Every failure (transport error, non-2xx answer, unreadable body) is
    raised as RemoteUnavailable. With no base URL configured the client is
    disabled and never touches the network.

    Usage:
        client = SyncClient("https://api.example.com")
        cloud_id = await client.create_process("Invoice approval")
        await client.put_steps(cloud_id, step_payloads(steps))
        await client.close()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self._http: Optional[httpx.AsyncClient] = None
        if self.base_url:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=timeout,
                transport=transport,
                headers={"Content-Type": "application/json"},
            )

    @property
    def enabled(self) -> bool:
        """Check if a remote endpoint is configured."""
        return self._http is not None

    async def _request(self, method: str, path: str, body: dict) -> dict:
        if self._http is None:
            raise RemoteUnavailable("API base not configured")

        try:
            response = await self._http.request(method, path, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RemoteUnavailable(f"{method} {path} failed: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise RemoteUnavailable(f"{method} {path} returned invalid JSON") from e

    async def create_process(self, name: str) -> str:
        """Create the remote counterpart of a process. Returns its id."""
        data = await self._request("POST", "/processes", {"name": name})
        cloud_id = data.get("processId") if isinstance(data, dict) else None
        if not cloud_id:
            raise RemoteUnavailable("Remote create returned no processId")
        logger.info(f"Provisioned remote process {cloud_id} for {name!r}")
        return str(cloud_id)

    async def update_process(
        self,
        cloud_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        """Update remote process metadata (only the fields given)."""
        patch = {}
        if name is not None:
            patch["name"] = name
        if description is not None:
            patch["description"] = description
        await self._request("PUT", f"/processes/{cloud_id}", patch)

    async def put_steps(self, cloud_id: str, steps: list[dict[str, Any]]) -> None:
        """Replace the whole remote step list."""
        await self._request("PUT", f"/processes/{cloud_id}/steps", {"steps": steps})
        logger.debug(f"Replaced {len(steps)} remote steps for {cloud_id}")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._http is not None:
            await self._http.aclose()
