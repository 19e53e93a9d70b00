"""Editing engine for the process gatherer."""

from .history import HistoryManager, MAX_HISTORY
from .editor import ProcessEditor
from .workspace import Workspace
from . import exchange

__all__ = ["HistoryManager", "MAX_HISTORY", "ProcessEditor", "Workspace", "exchange"]
