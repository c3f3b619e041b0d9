"""Canonical session data model persisted by the storage backends.

These Pydantic models mirror the JSON documents the dashboard frontend sends
and receives. Attribute names are snake_case; the wire names (camelCase keys
and the benchmark CSV column headers) are kept as aliases so that documents
round-trip unchanged through ``model_dump(by_alias=True)``. Unknown keys are
preserved rather than rejected, since the frontend owns parts of the shape
that the backend never interprets.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

SESSION_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    """Base for models that accept and emit the wire (alias) names."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_document(self) -> Dict[str, Any]:
        """Return a JSON-compatible dict using wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TestPoint(_WireModel):
    """One row of the benchmark CSV.

    Throughput columns are in bits per second, RTT columns in microseconds.
    """

    __test__ = False  # keep pytest from collecting this as a test class

    requested_throughput: float = Field(0.0, alias="Requested_Throughput")
    receive_throughput: float = Field(0.0, alias="Receive_Throughput")
    average_rtt: float = Field(0.0, alias="Average_RTT")
    minimum_rtt: float = Field(0.0, alias="Minimum_RTT")
    maximum_rtt: float = Field(0.0, alias="Maximum_RTT")
    stdev_rtt: float = Field(0.0, alias="Stdev_RTT")
    median_rtt: float = Field(0.0, alias="Median_RTT")
    bad_packets: float = Field(0.0, alias="Bad_Packets")


class ProtectionDomainSample(_WireModel):
    """CPU accounting for one protection domain on one core."""

    name: str
    cpu_utilization: Optional[float] = None
    kernel_cpu_utilization: Optional[float] = None
    user_cpu_utilization: Optional[float] = None
    total_cycles: Optional[float] = None
    kernel_cycles: Optional[float] = None
    user_cycles: Optional[float] = None
    kernel_entries: Optional[float] = None
    schedules: Optional[float] = None


class CoreSample(_WireModel):
    """Per-core breakdown of a test; only protection domains are modelled."""

    protection_domains: List[ProtectionDomainSample] = Field(default_factory=list)


class SystemCpu(_WireModel):
    """System-wide CPU utilization percentages for one test."""

    cpu_utilization: Optional[float] = None
    kernel_cpu_utilization: Optional[float] = None
    user_cpu_utilization: Optional[float] = None


class TestCpuSample(_WireModel):
    """CPU measurements taken at one throughput step."""

    __test__ = False

    throughput_mbps: float = 0.0
    system: SystemCpu = Field(default_factory=SystemCpu)
    cores: List[CoreSample] = Field(default_factory=list)

    def protection_domain(self, name: str) -> Optional[ProtectionDomainSample]:
        """Return the named protection domain of the first core, if present."""
        if not self.cores:
            return None
        for pd in self.cores[0].protection_domains:
            if pd.name == name:
                return pd
        return None


class CpuMetadata(_WireModel):
    """Metadata block of the CPU document."""

    test_throughputs: Optional[List[float]] = None


class CpuData(_WireModel):
    """CPU / protection-domain / PMU document uploaded alongside a CSV."""

    tests: List[TestCpuSample] = Field(default_factory=list)
    pmu_data: Optional[Dict[str, List[float]]] = None
    metadata: Optional[CpuMetadata] = None


class RunMetadata(_WireModel):
    """Free-form description of the environment a run was measured in."""

    commit: Optional[str] = None
    hardware: Optional[str] = None
    date_time: Optional[str] = Field(None, alias="dateTime")
    notes: Optional[str] = None


class Run(_WireModel):
    """One benchmark execution: CSV rows plus optional CPU document."""

    id: int
    name: str
    data: List[TestPoint] = Field(default_factory=list)
    cpu_data: Optional[CpuData] = Field(None, alias="cpuData")
    metadata: RunMetadata = Field(default_factory=RunMetadata)


class PlotType(str, Enum):
    """Kinds of custom plot the dashboard can render."""

    THROUGHPUT_CPU = "throughput-cpu"
    PROTECTION_DOMAINS = "protection-domains"
    CACHE_METRICS = "cache-metrics"


class CpuType(str, Enum):
    """Which CPU utilization figure a protection-domain plot shows."""

    TOTAL = "total"
    KERNEL = "kernel"
    USER = "user"


class CustomPlot(_WireModel):
    """User-defined plot over a subset of a session's runs."""

    id: int
    name: str
    selected_runs: List[int] = Field(default_factory=list, alias="selectedRuns")
    plot_type: PlotType = Field(PlotType.THROUGHPUT_CPU, alias="plotType")
    selected_pds: List[str] = Field(default_factory=list, alias="selectedPDs")
    cpu_type: CpuType = Field(CpuType.TOTAL, alias="cpuType")
    cache_metrics: List[str] = Field(default_factory=list, alias="cacheMetrics")


class Session(_WireModel):
    """Named, persisted collection of runs and custom plots.

    Attributes
    ----------
    id: str
        Caller-assigned identifier; unique across the store and used as the
        file name by the file backend.
    name: str
        Display name; mutable and not unique.
    runs: List[Run]
        Ordered runs; run ids are unique within the session.
    custom_plots: List[CustomPlot]
        Ordered plot definitions.
    created_at / updated_at: datetime
        Lifecycle timestamps; ``updated_at`` never precedes ``created_at``.
    """

    id: str = Field(..., min_length=1, max_length=200, pattern=SESSION_ID_PATTERN)
    name: str = Field(..., min_length=1)
    runs: List[Run] = Field(default_factory=list)
    custom_plots: List[CustomPlot] = Field(default_factory=list, alias="customPlots")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    @model_validator(mode="after")
    def _validate_invariants(self) -> "Session":
        seen: set[int] = set()
        for run in self.runs:
            if run.id in seen:
                raise ValueError(f"duplicate run id {run.id} in session {self.id}")
            seen.add(run.id)
        if as_utc(self.updated_at) < as_utc(self.created_at):
            raise ValueError("updatedAt must not precede createdAt")
        return self

    def get_run(self, run_id: int) -> Optional[Run]:
        """Return the run with ``run_id`` or None."""
        for run in self.runs:
            if run.id == run_id:
                return run
        return None

    def get_plot(self, plot_id: int) -> Optional[CustomPlot]:
        """Return the custom plot with ``plot_id`` or None."""
        for plot in self.custom_plots:
            if plot.id == plot_id:
                return plot
        return None


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def sort_sessions_by_recency(sessions: Dict[str, Session]) -> List[Session]:
    """Return sessions ordered most recently updated first.

    Stores make no ordering promise, so callers that want "latest session"
    semantics go through this helper.
    """
    return sorted(
        sessions.values(), key=lambda s: as_utc(s.updated_at), reverse=True
    )
