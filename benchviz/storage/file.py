"""Filesystem session store.

Each session lives in its own ``<id>.json`` file inside a data directory. The
directory is created on first use. Files are written through a temporary file
and an atomic rename so a crashed write never leaves a truncated document
behind; a document that is nevertheless unreadable is skipped by
:meth:`FileSessionStore.get_all` instead of failing the whole listing.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Optional

import orjson
from pydantic import ValidationError

from ..domain.models import SESSION_ID_PATTERN, Session
from ..utils.correlation import get_request_id
from . import DeleteResult
from .errors import StorageError

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


def _is_storable_id(session_id: str) -> bool:
    """True when ``session_id`` could name a session file in this store."""
    return re.fullmatch(SESSION_ID_PATTERN, session_id) is not None


class FileSessionStore:
    """Session store backed by one JSON file per session.

    Parameters
    ----------
    data_dir: Path
        Directory holding the session files. Created lazily (with parents)
        the first time any operation runs.
    """

    name = "file"

    def __init__(self, data_dir: Path | str) -> None:
        self._data_dir = Path(data_dir)
        self._dir_ready = False
        logger.info(
            "storage.file.init", extra={"data_dir": str(self._data_dir)}
        )

    @property
    def data_dir(self) -> Path:
        """Directory the store reads and writes."""
        return self._data_dir

    def _ensure_dir(self) -> None:
        if self._dir_ready:
            return
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(
                f"cannot create data directory {self._data_dir}: {exc}",
                backend=self.name,
            ) from exc
        self._dir_ready = True

    def _path_for(self, session_id: str) -> Path:
        path = self._data_dir / f"{session_id}{_SUFFIX}"
        # Reads and deletes screen ids first; writes only see model-validated ids.
        if path.parent != self._data_dir or session_id in ("", ".", ".."):
            raise StorageError(
                f"invalid session id for file storage: {session_id!r}",
                backend=self.name,
            )
        return path

    # ---------------- synchronous workers (run in a thread) ----------------

    def _write(self, session: Session) -> None:
        self._ensure_dir()
        path = self._path_for(session.id)
        tmp_path = path.with_name(f".{path.name}.tmp")
        payload = orjson.dumps(session.to_document(), option=orjson.OPT_INDENT_2)
        try:
            tmp_path.write_bytes(payload)
            os.replace(tmp_path, path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(
                f"failed to write session {session.id}: {exc}", backend=self.name
            ) from exc

    def _read_all(self) -> Dict[str, Session]:
        self._ensure_dir()
        sessions: Dict[str, Session] = {}
        skipped: List[str] = []
        try:
            files = sorted(self._data_dir.glob(f"*{_SUFFIX}"))
        except OSError as exc:
            raise StorageError(
                f"failed to list {self._data_dir}: {exc}", backend=self.name
            ) from exc
        for path in files:
            try:
                session = Session.model_validate(orjson.loads(path.read_bytes()))
            except (OSError, orjson.JSONDecodeError, ValidationError) as exc:
                skipped.append(path.name)
                logger.warning(
                    "storage.file.corrupt_record",
                    extra={
                        "req_id": get_request_id(),
                        "file": path.name,
                        "error": str(exc),
                    },
                )
                continue
            sessions[session.id] = session
        logger.debug(
            "storage.file.listed",
            extra={"sessions": len(sessions), "skipped": skipped},
        )
        return sessions

    def _read_one(self, session_id: str) -> Optional[Session]:
        if not _is_storable_id(session_id):
            return None
        self._ensure_dir()
        path = self._path_for(session_id)
        if not path.exists():
            return None
        try:
            return Session.model_validate(orjson.loads(path.read_bytes()))
        except (OSError, orjson.JSONDecodeError, ValidationError) as exc:
            raise StorageError(
                f"failed to load session {session_id}: {exc}", backend=self.name
            ) from exc

    def _remove(self, session_id: str) -> DeleteResult:
        if not _is_storable_id(session_id):
            return DeleteResult(success=False, error="Session not found")
        self._ensure_dir()
        path = self._path_for(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return DeleteResult(success=False, error="Session not found")
        except OSError as exc:
            raise StorageError(
                f"failed to delete session {session_id}: {exc}", backend=self.name
            ) from exc
        return DeleteResult(success=True)

    # ---------------- SessionStore protocol ----------------

    async def save(self, session: Session) -> Session:
        """Write the full session document, replacing any previous file."""
        await asyncio.to_thread(self._write, session)
        logger.info(
            "storage.file.saved",
            extra={
                "req_id": get_request_id(),
                "session_id": session.id,
                "name": session.name,
            },
        )
        return session

    async def get_all(self) -> Dict[str, Session]:
        """Return every readable session; corrupt files are skipped."""
        return await asyncio.to_thread(self._read_all)

    async def get_one(self, session_id: str) -> Optional[Session]:
        """Return the session stored under ``session_id`` or ``None``."""
        return await asyncio.to_thread(self._read_one, session_id)

    async def delete(self, session_id: str) -> DeleteResult:
        """Remove the session file; soft failure when it does not exist."""
        result = await asyncio.to_thread(self._remove, session_id)
        if result.success:
            logger.info(
                "storage.file.deleted",
                extra={"req_id": get_request_id(), "session_id": session_id},
            )
        return result

    async def close(self) -> None:
        """Nothing to release for plain files."""
        return None
