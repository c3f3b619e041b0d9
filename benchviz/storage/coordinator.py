"""Multi-backend session coordinator.

The coordinator presents the same contract as a single :class:`SessionStore`
while fanning writes out to every enabled backend. Reads go to the primary
backend only (the first one in priority order); the others are replicated
write targets that are never read back. A write is reported successful when
at least one backend accepted it. Failed backends are logged and left as
they are: there is no retry and no reconciliation between backends.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from ..config.models import StorageConfig
from ..domain.models import Session
from ..utils.correlation import get_request_id
from ..utils.partial_results import format_failure_summary, gather_partial
from . import DeleteResult, SaveResult, SessionStore
from .errors import StorageConfigError, StorageError
from .file import FileSessionStore
from .mongo import MongoSessionStore, mask_uri

logger = logging.getLogger(__name__)


class SessionCoordinator:
    """Fan-out/primary-read composite over an ordered set of stores.

    Parameters
    ----------
    stores: Sequence[SessionStore]
        Enabled backends in priority order; the first one is the primary.

    Raises
    ------
    StorageConfigError
        If no backend is supplied.
    """

    def __init__(self, stores: Sequence[SessionStore]) -> None:
        if not stores:
            raise StorageConfigError("At least one storage backend must be enabled")
        names = [s.name for s in stores]
        if len(set(names)) != len(names):
            raise StorageConfigError(f"duplicate storage backend names: {names}")
        self._stores: List[SessionStore] = list(stores)
        logger.info(
            "storage.coordinator.init",
            extra={"backends": names, "primary": names[0]},
        )

    @classmethod
    def from_config(cls, config: StorageConfig) -> "SessionCoordinator":
        """Build the backends enabled in ``config`` (file first, then mongo)."""
        stores: List[SessionStore] = []
        if config.enable_file:
            stores.append(FileSessionStore(config.data_dir))
        else:
            logger.info("storage.coordinator.file_disabled")
        if config.enable_mongo:
            stores.append(
                MongoSessionStore(
                    config.mongo_uri,
                    config.mongo_database,
                    config.mongo_collection,
                    timeout_ms=config.mongo_timeout_ms,
                )
            )
        else:
            logger.info("storage.coordinator.mongo_disabled")
        if not stores:
            logger.error(
                "storage.coordinator.no_backends",
                extra={"mongo_uri": mask_uri(config.mongo_uri)},
            )
        return cls(stores)

    @property
    def backend_names(self) -> List[str]:
        """Names of the active backends in priority order."""
        return [s.name for s in self._stores]

    @property
    def primary(self) -> SessionStore:
        """Backend that serves every read."""
        return self._stores[0]

    async def save(self, session: Session) -> SaveResult:
        """Write ``session`` to every backend; succeed if any write did."""
        result = await gather_partial(
            {s.name: s.save(session) for s in self._stores},
            "session_save",
        )
        if result.has_failures:
            logger.error(
                "storage.coordinator.save.partial_failure",
                extra={
                    "req_id": get_request_id(),
                    "session_id": session.id,
                    "summary": format_failure_summary(result),
                },
            )
        logger.info(
            "storage.coordinator.saved",
            extra={
                "req_id": get_request_id(),
                "session_id": session.id,
                "backends": list(result.successes),
            },
        )
        return SaveResult(success=bool(result.successes), session=session)

    async def get_all(self) -> Dict[str, Session]:
        """List sessions from the primary backend."""
        logger.debug(
            "storage.coordinator.list", extra={"backend": self.primary.name}
        )
        return await self.primary.get_all()

    async def get_one(self, session_id: str) -> Optional[Session]:
        """Load one session from the primary backend."""
        logger.debug(
            "storage.coordinator.load",
            extra={"backend": self.primary.name, "session_id": session_id},
        )
        return await self.primary.get_one(session_id)

    async def delete(self, session_id: str) -> DeleteResult:
        """Delete from every backend; succeed if any backend removed it.

        When no backend confirms, ``error`` says whether the session was
        simply absent or every backend failed.
        """
        result = await gather_partial(
            {s.name: s.delete(session_id) for s in self._stores},
            "session_delete",
        )
        confirmed = [name for name, r in result.successes.items() if r.success]
        if result.has_failures:
            logger.error(
                "storage.coordinator.delete.partial_failure",
                extra={
                    "req_id": get_request_id(),
                    "session_id": session_id,
                    "summary": format_failure_summary(result),
                },
            )
        logger.info(
            "storage.coordinator.deleted",
            extra={
                "req_id": get_request_id(),
                "session_id": session_id,
                "backends": confirmed,
            },
        )
        if confirmed:
            return DeleteResult(success=True)
        if result.all_failed:
            return DeleteResult(
                success=False, error="All storage backends failed to delete"
            )
        return DeleteResult(success=False, error="Session not found")

    async def close(self) -> None:
        """Close every backend, logging rather than raising on failure."""
        for store in self._stores:
            try:
                await store.close()
            except StorageError as exc:
                logger.warning(
                    "storage.coordinator.close_failed",
                    extra={"backend": store.name, "error": str(exc)},
                )
