"""Service lifecycle for the benchmark dashboard backend.

:class:`BenchmarkService` owns the session coordinator and exposes the
operations the HTTP layer needs: session persistence, plot statistics and
run summaries. The HTTP layer stays a thin transport over these methods.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List

from ..config.models import StorageConfig
from ..domain.models import Session, as_utc, utcnow
from ..domain.utils.comparison import PlotStatistics, compute_plot_statistics
from ..domain.utils.summary import (
    ProtectionDomainAverage,
    RunSummary,
    TableRow,
    build_table_rows,
    protection_domain_averages,
    summarize_run,
)
from ..storage import DeleteResult, SaveResult, SessionNotFoundError
from ..storage.coordinator import SessionCoordinator

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Summary, PD averages and table rows for one run."""

    summary: RunSummary
    protection_domains: List[ProtectionDomainAverage]
    rows: List[TableRow]


class BenchmarkService:
    """Async service wrapping the session coordinator.

    Parameters
    ----------
    coordinator: SessionCoordinator
        Storage front-end shared by every request.
    """

    def __init__(self, coordinator: SessionCoordinator) -> None:
        self._coordinator = coordinator
        self._started: bool = False

    @classmethod
    def from_config(cls, config: StorageConfig) -> "BenchmarkService":
        """Build a service with the backends enabled in ``config``."""
        return cls(SessionCoordinator.from_config(config))

    @property
    def coordinator(self) -> SessionCoordinator:
        """Coordinator serving storage operations."""
        return self._coordinator

    @property
    def started(self) -> bool:
        """Whether :meth:`start` has run without a matching :meth:`stop`."""
        return self._started

    async def start(self) -> None:
        """Mark the service as started. Idempotent."""
        if self._started:
            logger.debug("service.start no-op: already started")
            return
        self._started = True
        logger.info(
            "service.started",
            extra={"backends": self._coordinator.backend_names},
        )

    async def stop(self) -> None:
        """Close storage backends. Idempotent."""
        if not self._started:
            logger.debug("service.stop no-op: not started")
            return
        await self._coordinator.close()
        self._started = False
        logger.info("service.stopped")

    # ----------------------------- sessions -----------------------------

    async def save_session(
        self, session: Session, *, touch: bool = False
    ) -> SaveResult:
        """Persist ``session``; ``touch`` refreshes ``updated_at`` first."""
        if touch:
            session.updated_at = max(utcnow(), as_utc(session.created_at))
        return await self._coordinator.save(session)

    async def list_sessions(self) -> Dict[str, Session]:
        """All sessions keyed by id."""
        return await self._coordinator.get_all()

    async def get_session(self, session_id: str) -> Session:
        """Return the session or raise :class:`SessionNotFoundError`."""
        session = await self._coordinator.get_one(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def delete_session(self, session_id: str) -> DeleteResult:
        """Delete the session from every backend."""
        return await self._coordinator.delete(session_id)

    # ---------------------------- analysis ------------------------------

    async def plot_statistics(self, session_id: str, plot_id: int) -> PlotStatistics:
        """Comparison statistics for a saved custom plot.

        Raises
        ------
        SessionNotFoundError
            If the session is absent.
        KeyError
            If the session holds no plot with ``plot_id``.
        """
        session = await self.get_session(session_id)
        plot = session.get_plot(plot_id)
        if plot is None:
            raise KeyError(f"plot {plot_id} not found in session {session_id}")
        return compute_plot_statistics(session, plot)

    async def run_report(self, session_id: str, run_id: int) -> RunReport:
        """Summary, PD averages and table rows for one run of a session."""
        session = await self.get_session(session_id)
        run = session.get_run(run_id)
        if run is None:
            raise KeyError(f"run {run_id} not found in session {session_id}")
        return RunReport(
            summary=summarize_run(run),
            protection_domains=protection_domain_averages(run),
            rows=build_table_rows(run),
        )

