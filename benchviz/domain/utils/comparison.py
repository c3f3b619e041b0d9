"""
Throughput-aligned comparison of benchmark runs.

Quantifies how a metric behaves in one or more comparison runs relative to a
baseline run (the first run of a selection). Runs may be measured at
different throughput steps or miss points, so samples are aligned by
throughput rather than by position:

1. Each run is reduced to ``(throughput_mbps, value)`` points for the metric.
2. Every baseline point is matched to the comparison point with the nearest
   throughput (linear scan, first-seen wins ties). The match is accepted only
   when the throughput difference is strictly below ``MATCH_TOLERANCE_MBPS``.
3. Per matched pair the relative difference ``(cmp - base) / base * 100`` is
   taken when ``base > 0``, and the absolute difference ``cmp - base``
   always.
4. Means of the per-point differences are reported (mean of ratios, not a
   ratio of means). A run without any matched point is left out.

Protection-domain CPU comparisons align on the *received* CSV throughput of
the run, while PMU counter comparisons align on the declared test throughput
steps. The two keys are kept distinct on purpose: PMU data is indexed by
nominal step, CPU data by achieved throughput.

All functions are pure and deterministic; sums accumulate left to right.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from ..models import CpuType, CustomPlot, PlotType, Run, Session
from .units import bps_to_mbps

logger = logging.getLogger(__name__)

MATCH_TOLERANCE_MBPS = 1.0

_CPU_FIELDS = {
    CpuType.TOTAL: "cpu_utilization",
    CpuType.KERNEL: "kernel_cpu_utilization",
    CpuType.USER: "user_cpu_utilization",
}


@dataclass(frozen=True)
class ThroughputPoint:
    """A metric value observed at a throughput (Mbps)."""

    throughput_mbps: float
    value: float


@dataclass
class PointComparison:
    """
    Aggregated differences between two point lists.

    Attributes
    ----------
    mean_rel : float or None
        Mean relative difference in percent over points with a positive
        baseline value; None when no such point matched
    mean_abs : float
        Mean absolute difference over all matched points
    matched : int
        Number of baseline points that found a match
    rel_count : int
        Number of matched points that contributed a relative difference
    """

    mean_rel: Optional[float]
    mean_abs: float
    matched: int
    rel_count: int


@dataclass
class RunComparison:  # pylint: disable=too-many-instance-attributes
    """Comparison of one run against the baseline for a single metric."""

    run_id: int
    run_name: str
    baseline_id: int
    baseline_name: str
    mean_rel: Optional[float]
    mean_abs: float
    matched: int
    rel_count: int
    baseline_mean: Optional[float] = None
    compare_mean: Optional[float] = None


@dataclass
class MetricComparison:
    """All run comparisons for one metric (a PD name, PMU counter, ...)."""

    metric: str
    comparisons: List[RunComparison] = field(default_factory=list)


PointExtractor = Callable[[Run], List[ThroughputPoint]]


def find_closest(
    points: Sequence[ThroughputPoint], throughput_mbps: float
) -> Optional[ThroughputPoint]:
    """
    Return the point whose throughput is nearest ``throughput_mbps``.

    Linear scan; a later point replaces the current best only when it is
    strictly closer, so ties resolve to the first point encountered.
    """
    closest: Optional[ThroughputPoint] = None
    closest_diff = 0.0
    for point in points:
        diff = abs(point.throughput_mbps - throughput_mbps)
        if closest is None or diff < closest_diff:
            closest = point
            closest_diff = diff
    return closest


def compare_points(
    baseline: Sequence[ThroughputPoint],
    comparison: Sequence[ThroughputPoint],
    tolerance_mbps: float = MATCH_TOLERANCE_MBPS,
) -> Optional[PointComparison]:
    """
    Match baseline points to comparison points and average the differences.

    Parameters
    ----------
    baseline : Sequence[ThroughputPoint]
        Points of the reference run
    comparison : Sequence[ThroughputPoint]
        Points of the run being compared
    tolerance_mbps : float
        Exclusive upper bound on the throughput gap of an accepted match

    Returns
    -------
    PointComparison or None
        Aggregated differences, or None when no baseline point matched

    Examples
    --------
    >>> base = [ThroughputPoint(10.0, 5.0)]
    >>> cmp = [ThroughputPoint(10.9, 6.0), ThroughputPoint(11.1, 7.0)]
    >>> result = compare_points(base, cmp)
    >>> round(result.mean_rel, 6), result.mean_abs
    (20.0, 1.0)
    """
    rel_diffs: List[float] = []
    abs_diffs: List[float] = []
    for base_pt in baseline:
        match = find_closest(comparison, base_pt.throughput_mbps)
        if match is None:
            continue
        if not abs(match.throughput_mbps - base_pt.throughput_mbps) < tolerance_mbps:
            continue
        if base_pt.value > 0:
            rel_diffs.append((match.value - base_pt.value) / base_pt.value * 100)
        abs_diffs.append(match.value - base_pt.value)

    mean_abs = _mean(abs_diffs)
    if mean_abs is None:
        return None
    return PointComparison(
        mean_rel=_mean(rel_diffs),
        mean_abs=mean_abs,
        matched=len(abs_diffs),
        rel_count=len(rel_diffs),
    )


def _mean(values: Sequence[float]) -> Optional[float]:
    """Arithmetic mean with plain left-to-right summation."""
    if not values:
        return None
    total = 0.0
    for value in values:
        total += value
    return total / len(values)


# ---------------------------------------------------------------------------
# Point extraction
# ---------------------------------------------------------------------------


def _received_mbps(run: Run, index: int) -> float:
    """Received throughput of CSV row ``index`` in Mbps (0 when missing)."""
    if index < len(run.data):
        return bps_to_mbps(run.data[index].receive_throughput or 0.0)
    return 0.0


def protection_domain_points(
    run: Run, pd_name: str, cpu_type: CpuType = CpuType.TOTAL
) -> List[ThroughputPoint]:
    """
    Points for one protection domain's CPU utilization.

    A CPU test contributes a point when the PD appears on its first core;
    the throughput is the received throughput of the CSV row at the same
    position. A missing utilization value counts as 0.
    """
    if run.cpu_data is None:
        return []
    attr = _CPU_FIELDS[cpu_type]
    points: List[ThroughputPoint] = []
    for index, test in enumerate(run.cpu_data.tests):
        pd = test.protection_domain(pd_name)
        if pd is None:
            continue
        value = getattr(pd, attr) or 0.0
        points.append(ThroughputPoint(_received_mbps(run, index), value))
    return points


def system_cpu_points(
    run: Run, cpu_type: CpuType = CpuType.TOTAL
) -> List[ThroughputPoint]:
    """Points for system-wide CPU utilization, aligned like PD points."""
    if run.cpu_data is None:
        return []
    attr = _CPU_FIELDS[cpu_type]
    points: List[ThroughputPoint] = []
    for index, test in enumerate(run.cpu_data.tests):
        value = getattr(test.system, attr)
        if value is None:
            continue
        points.append(ThroughputPoint(_received_mbps(run, index), value))
    return points


def pmu_points(run: Run, metric: str) -> List[ThroughputPoint]:
    """
    Points for a PMU counter, keyed by the declared test throughput steps.

    When the CPU document declares no steps, the sample position stands in
    for the throughput so that runs sampled at the same steps still align.
    """
    if run.cpu_data is None or not run.cpu_data.pmu_data:
        return []
    series = run.cpu_data.pmu_data.get(metric) or []
    steps: Optional[List[float]] = None
    if run.cpu_data.metadata is not None:
        steps = run.cpu_data.metadata.test_throughputs
    if not steps:
        return [ThroughputPoint(float(i), v) for i, v in enumerate(series)]
    return [ThroughputPoint(float(t), v) for t, v in zip(steps, series)]


# ---------------------------------------------------------------------------
# Run-level comparisons
# ---------------------------------------------------------------------------


def compare_runs(
    runs: Sequence[Run], metric: str, extract: PointExtractor
) -> MetricComparison:
    """
    Compare every run after the first against the first, for one metric.

    Parameters
    ----------
    runs : Sequence[Run]
        Selected runs; ``runs[0]`` is the baseline
    metric : str
        Label of the metric (PD name, counter name, ...)
    extract : Callable[[Run], List[ThroughputPoint]]
        Reduces a run to its points for this metric
    """
    result = MetricComparison(metric=metric)
    if len(runs) < 2:
        return result
    baseline = runs[0]
    baseline_points = extract(baseline)
    for run in runs[1:]:
        compared = compare_points(baseline_points, extract(run))
        if compared is None:
            logger.debug(
                "comparison.no_match",
                extra={"metric": metric, "run_id": run.id, "baseline_id": baseline.id},
            )
            continue
        result.comparisons.append(
            RunComparison(
                run_id=run.id,
                run_name=run.name,
                baseline_id=baseline.id,
                baseline_name=baseline.name,
                mean_rel=compared.mean_rel,
                mean_abs=compared.mean_abs,
                matched=compared.matched,
                rel_count=compared.rel_count,
            )
        )
    return result


def compare_protection_domains(
    runs: Sequence[Run], pd_names: Sequence[str], cpu_type: CpuType = CpuType.TOTAL
) -> List[MetricComparison]:
    """Per-PD CPU comparisons; PDs without any comparison are omitted."""
    results: List[MetricComparison] = []
    for pd_name in pd_names:
        compared = compare_runs(
            runs,
            pd_name,
            lambda run, name=pd_name: protection_domain_points(run, name, cpu_type),
        )
        if compared.comparisons:
            results.append(compared)
    return results


def compare_system_cpu(
    runs: Sequence[Run], cpu_type: CpuType = CpuType.TOTAL
) -> List[MetricComparison]:
    """System CPU utilization comparison (empty list when nothing matched)."""
    compared = compare_runs(
        runs, f"system.{cpu_type.value}", lambda run: system_cpu_points(run, cpu_type)
    )
    return [compared] if compared.comparisons else []


def compare_cache_metrics(
    runs: Sequence[Run], metrics: Sequence[str]
) -> List[MetricComparison]:
    """
    Per-counter PMU comparisons.

    Each run comparison also carries the plain means of the baseline and
    comparison series, for display next to the relative difference.
    """
    results: List[MetricComparison] = []
    for metric in metrics:
        compared = compare_runs(
            runs, metric, lambda run, name=metric: pmu_points(run, name)
        )
        if not compared.comparisons:
            continue
        baseline_mean = _mean([p.value for p in pmu_points(runs[0], metric)])
        by_id = {run.id: run for run in runs}
        for item in compared.comparisons:
            item.baseline_mean = baseline_mean
            item.compare_mean = _mean(
                [p.value for p in pmu_points(by_id[item.run_id], metric)]
            )
        results.append(compared)
    return results


@dataclass
class PlotStatistics:
    """Comparison statistics for one custom plot."""

    plot_id: int
    plot_type: PlotType
    baseline_run_id: Optional[int]
    metrics: List[MetricComparison] = field(default_factory=list)


def select_plot_runs(session: Session, plot: CustomPlot) -> List[Run]:
    """Runs selected by ``plot`` in session order (first is the baseline)."""
    selected = set(plot.selected_runs)
    return [run for run in session.runs if run.id in selected]


def compute_plot_statistics(session: Session, plot: CustomPlot) -> PlotStatistics:
    """
    Compute the comparison statistics shown under a custom plot.

    Fewer than two selected runs yields no metrics.
    """
    runs = select_plot_runs(session, plot)
    stats = PlotStatistics(
        plot_id=plot.id,
        plot_type=plot.plot_type,
        baseline_run_id=runs[0].id if runs else None,
    )
    if len(runs) < 2:
        return stats
    if plot.plot_type is PlotType.PROTECTION_DOMAINS:
        stats.metrics = compare_protection_domains(
            runs, plot.selected_pds, plot.cpu_type
        )
    elif plot.plot_type is PlotType.CACHE_METRICS:
        stats.metrics = compare_cache_metrics(runs, plot.cache_metrics)
    else:
        stats.metrics = compare_system_cpu(runs, plot.cpu_type)
    logger.debug(
        "comparison.plot_statistics",
        extra={
            "session_id": session.id,
            "plot_id": plot.id,
            "runs": len(runs),
            "metrics": len(stats.metrics),
        },
    )
    return stats
