"""Exception types raised by the session storage layer."""

from __future__ import annotations


class StorageError(RuntimeError):
    """A backend could not be reached, written, or read.

    Attributes
    ----------
    backend: str
        Name of the backend that failed (e.g., ``"file"``, ``"mongo"``).
    """

    def __init__(self, message: str, *, backend: str = "") -> None:
        super().__init__(message)
        self.backend = backend


class StorageConfigError(ValueError):
    """The storage configuration enables no usable backend."""


class SessionNotFoundError(KeyError):
    """A read or delete targeted a session id that no backend holds."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"
