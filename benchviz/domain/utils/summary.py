"""
Per-run summaries and table rows for reports.

Summaries condense a run into throughput, RTT and CPU figures; table rows
join every CSV row with the CPU test measured at the same requested
throughput step.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models import ProtectionDomainSample, Run, TestCpuSample
from .units import (
    bps_to_mbps,
    format_cycles,
    format_microseconds,
    format_percentage,
    format_throughput,
)

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:  # pylint: disable=too-many-instance-attributes
    """
    Headline figures for one run.

    Attributes
    ----------
    test_count : int
        Number of CSV rows
    min_throughput / max_throughput / avg_throughput : float or None
        Received throughput in bits/s; None for a run without rows
    avg_rtt : float
        Mean of the non-zero average RTTs (µs); 0 when there are none
    has_cpu : bool
        Whether the run carries CPU test data
    min_cpu / max_cpu / avg_cpu : float or None
        System CPU utilization over CPU tests (missing values count as 0)
    labels : Dict[str, str]
        Display strings for the figures above, keyed by attribute name
    """

    test_count: int
    min_throughput: Optional[float]
    max_throughput: Optional[float]
    avg_throughput: Optional[float]
    avg_rtt: float
    has_cpu: bool
    min_cpu: Optional[float] = None
    max_cpu: Optional[float] = None
    avg_cpu: Optional[float] = None
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class ProtectionDomainAverage:
    """Average utilization of a protection domain across a run's tests."""

    name: str
    avg_total: float
    avg_kernel: float
    avg_user: float


@dataclass
class TableRow:  # pylint: disable=too-many-instance-attributes
    """One CSV row joined with its CPU test, ready for tabular display.

    ``labels`` holds display strings keyed by attribute name, and
    ``cycle_labels`` the total cycles of each protection domain by name.
    """

    test_number: int
    requested_throughput: float
    received_throughput: float
    throughput_percent: float
    avg_rtt: float
    min_rtt: float
    max_rtt: float
    stdev_rtt: float
    median_rtt: float
    bad_packets: float
    total_cpu: Optional[float] = None
    kernel_cpu: Optional[float] = None
    user_cpu: Optional[float] = None
    protection_domains: List[ProtectionDomainSample] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    cycle_labels: Dict[str, str] = field(default_factory=dict)


def summarize_run(run: Run) -> RunSummary:
    """Compute the headline figures of ``run``."""
    throughputs = [row.receive_throughput for row in run.data]
    rtts = [row.average_rtt for row in run.data if row.average_rtt]
    tests = run.cpu_data.tests if run.cpu_data is not None else []

    summary = RunSummary(
        test_count=len(run.data),
        min_throughput=min(throughputs) if throughputs else None,
        max_throughput=max(throughputs) if throughputs else None,
        avg_throughput=(sum(throughputs) / len(throughputs)) if throughputs else None,
        avg_rtt=(sum(rtts) / len(rtts)) if rtts else 0.0,
        has_cpu=bool(tests),
    )
    if tests:
        cpu_values = [t.system.cpu_utilization or 0.0 for t in tests]
        summary.min_cpu = min(cpu_values)
        summary.max_cpu = max(cpu_values)
        summary.avg_cpu = sum(cpu_values) / len(cpu_values)
    summary.labels = {
        "min_throughput": format_throughput(summary.min_throughput),
        "max_throughput": format_throughput(summary.max_throughput),
        "avg_throughput": format_throughput(summary.avg_throughput),
        "avg_rtt": format_microseconds(summary.avg_rtt),
        "min_cpu": format_percentage(summary.min_cpu),
        "max_cpu": format_percentage(summary.max_cpu),
        "avg_cpu": format_percentage(summary.avg_cpu),
    }
    return summary


def protection_domain_averages(run: Run) -> List[ProtectionDomainAverage]:
    """Average each PD's utilization over the tests where it appears.

    Only the first core is considered. PDs are listed in first-seen order.
    """
    if run.cpu_data is None:
        return []
    sums: Dict[str, List[float]] = {}
    for test in run.cpu_data.tests:
        if not test.cores:
            continue
        for pd in test.cores[0].protection_domains:
            entry = sums.setdefault(pd.name, [0.0, 0.0, 0.0, 0.0])
            entry[0] += pd.cpu_utilization or 0.0
            entry[1] += pd.kernel_cpu_utilization or 0.0
            entry[2] += pd.user_cpu_utilization or 0.0
            entry[3] += 1
    return [
        ProtectionDomainAverage(
            name=name,
            avg_total=total / count,
            avg_kernel=kernel / count,
            avg_user=user / count,
        )
        for name, (total, kernel, user, count) in sums.items()
    ]


def build_table_rows(run: Run) -> List[TableRow]:
    """
    Join CSV rows with CPU tests for tabular display.

    A CSV row is paired with the CPU test whose ``throughput_mbps`` equals
    the row's requested throughput rounded (half up) to whole Mbps. Rows
    without a matching test keep ``None`` CPU figures.
    """
    by_step: Dict[float, TestCpuSample] = {}
    if run.cpu_data is not None:
        for test in run.cpu_data.tests:
            by_step[test.throughput_mbps] = test

    rows: List[TableRow] = []
    for index, point in enumerate(run.data):
        step = float(math.floor(bps_to_mbps(point.requested_throughput) + 0.5))
        test = by_step.get(step)
        percent = (
            point.receive_throughput / point.requested_throughput * 100
            if point.requested_throughput > 0
            else 0.0
        )
        row = TableRow(
            test_number=index + 1,
            requested_throughput=point.requested_throughput,
            received_throughput=point.receive_throughput,
            throughput_percent=percent,
            avg_rtt=point.average_rtt,
            min_rtt=point.minimum_rtt,
            max_rtt=point.maximum_rtt,
            stdev_rtt=point.stdev_rtt,
            median_rtt=point.median_rtt,
            bad_packets=point.bad_packets,
        )
        if test is not None:
            row.total_cpu = test.system.cpu_utilization
            row.kernel_cpu = test.system.kernel_cpu_utilization
            row.user_cpu = test.system.user_cpu_utilization
            if test.cores:
                row.protection_domains = list(test.cores[0].protection_domains)
        _label_row(row)
        rows.append(row)
    return rows


def _label_row(row: TableRow) -> None:
    row.labels = {
        "requested_throughput": format_throughput(row.requested_throughput),
        "received_throughput": format_throughput(row.received_throughput),
        "throughput_percent": format_percentage(row.throughput_percent),
        "avg_rtt": format_microseconds(row.avg_rtt),
        "min_rtt": format_microseconds(row.min_rtt),
        "max_rtt": format_microseconds(row.max_rtt),
        "stdev_rtt": format_microseconds(row.stdev_rtt),
        "median_rtt": format_microseconds(row.median_rtt),
        "total_cpu": format_percentage(row.total_cpu),
        "kernel_cpu": format_percentage(row.kernel_cpu),
        "user_cpu": format_percentage(row.user_cpu),
    }
    row.cycle_labels = {
        pd.name: format_cycles(pd.total_cycles) for pd in row.protection_domains
    }
