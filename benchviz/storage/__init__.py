"""Session store interface shared by every storage backend."""

from __future__ import annotations

from typing import Dict, Optional, Protocol

from pydantic import BaseModel

from ..domain.models import Session
from .errors import SessionNotFoundError, StorageConfigError, StorageError

__all__ = [
    "DeleteResult",
    "SaveResult",
    "SessionNotFoundError",
    "SessionStore",
    "StorageConfigError",
    "StorageError",
]


class DeleteResult(BaseModel):
    """Outcome of a delete; a missing record is a soft failure."""

    success: bool
    error: Optional[str] = None


class SaveResult(BaseModel):
    """Outcome of a coordinated save across backends."""

    success: bool
    session: Session


class SessionStore(Protocol):
    """Protocol for session storage backends.

    Implementations persist whole :class:`Session` documents keyed by
    ``session.id``. Every write is a full overwrite; there is no partial
    field merge.
    """

    name: str

    async def save(self, session: Session) -> Session:
        """Create or fully replace the session; return what was stored."""
        raise NotImplementedError

    async def get_all(self) -> Dict[str, Session]:
        """Return every stored session keyed by id (no ordering promise)."""
        raise NotImplementedError

    async def get_one(self, session_id: str) -> Optional[Session]:
        """Return the session or ``None`` when absent."""
        raise NotImplementedError

    async def delete(self, session_id: str) -> DeleteResult:
        """Remove the session; ``success=False`` when nothing existed."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections or handles held by the backend."""
        raise NotImplementedError
