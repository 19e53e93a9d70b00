"""Best-effort mirroring of processes to a remote service."""

from .client import SyncClient, step_payloads
from .worker import SyncWorker, SyncJob

__all__ = ["SyncClient", "SyncWorker", "SyncJob", "step_payloads"]
