"""
Exceptions raised by the process gatherer core.
"""


class GathererError(Exception):
    """Base exception for all gatherer errors."""

    pass


class NotFoundError(GathererError, LookupError):
    """A process, step or artifact does not exist."""

    pass


class NoActiveProcess(GathererError):
    """A session command was issued while no process is open."""

    pass


class ConfirmationRequired(GathererError):
    """A destructive operation was called without explicit confirmation."""

    pass


class InvalidDocument(GathererError, ValueError):
    """An import document is malformed. Raised before anything is written."""

    pass


class StorageError(GathererError):
    """A local transaction failed and was rolled back."""

    pass


class RemoteUnavailable(GathererError):
    """The remote service could not be reached or answered with an error."""

    pass
