"""Tests for throughput-aligned run comparison."""

from __future__ import annotations

import pytest

from benchviz.domain.models import CpuType, CustomPlot, PlotType, Run, Session
from benchviz.domain.utils.comparison import (
    MATCH_TOLERANCE_MBPS,
    ThroughputPoint,
    compare_cache_metrics,
    compare_points,
    compare_protection_domains,
    compare_system_cpu,
    compute_plot_statistics,
    find_closest,
    pmu_points,
    protection_domain_points,
    select_plot_runs,
)

TP = ThroughputPoint


def _run(run_id, received_mbps, pd_values, *, pd_name="net", pmu=None, steps=None):
    """Build a run whose i-th CPU test reports ``pd_values[i]`` for ``pd_name``."""
    cpu_data = {
        "tests": [
            {
                "throughput_mbps": float(i),
                "system": {"cpu_utilization": value},
                "cores": [
                    {
                        "protection_domains": [
                            {
                                "name": pd_name,
                                "cpu_utilization": value,
                                "kernel_cpu_utilization": value / 4,
                                "user_cpu_utilization": value * 3 / 4,
                            }
                        ]
                    }
                ],
            }
            for i, value in enumerate(pd_values)
        ],
        "pmu_data": pmu,
        "metadata": {"test_throughputs": steps} if steps is not None else None,
    }
    return Run.model_validate(
        {
            "id": run_id,
            "name": f"run-{run_id}",
            "data": [{"Receive_Throughput": m * 1e6} for m in received_mbps],
            "cpuData": cpu_data,
        }
    )


# ----------------------------- point matching -----------------------------


def test_find_closest_prefers_first_on_tie():
    points = [TP(9.5, 6.0), TP(10.5, 8.0)]
    assert find_closest(points, 10.0) == TP(9.5, 6.0)


def test_find_closest_empty():
    assert find_closest([], 10.0) is None


def test_match_just_inside_tolerance():
    result = compare_points([TP(10.0, 5.0)], [TP(10.9, 6.0), TP(11.1, 7.0)])

    assert result is not None
    assert result.matched == 1
    assert result.mean_rel == pytest.approx(20.0)
    assert result.mean_abs == pytest.approx(1.0)


def test_match_at_tolerance_is_rejected():
    assert MATCH_TOLERANCE_MBPS == 1.0
    assert compare_points([TP(10.0, 5.0)], [TP(11.0, 6.0)]) is None


def test_nearest_point_wins_even_if_another_is_in_range():
    result = compare_points([TP(10.0, 5.0)], [TP(10.8, 100.0), TP(10.1, 6.0)])

    assert result.mean_abs == pytest.approx(1.0)


def test_tie_uses_first_comparison_point():
    result = compare_points([TP(10.0, 5.0)], [TP(9.5, 6.0), TP(10.5, 8.0)])

    assert result.mean_abs == pytest.approx(1.0)


def test_zero_baseline_excluded_from_relative_only():
    result = compare_points(
        [TP(10.0, 0.0), TP(20.0, 10.0)], [TP(10.0, 3.0), TP(20.0, 11.0)]
    )

    assert result.matched == 2
    assert result.rel_count == 1
    assert result.mean_rel == pytest.approx(10.0)
    assert result.mean_abs == pytest.approx(2.0)


def test_all_zero_baseline_has_no_relative_mean():
    result = compare_points([TP(10.0, 0.0)], [TP(10.0, 3.0)])

    assert result.mean_rel is None
    assert result.mean_abs == pytest.approx(3.0)


def test_mean_of_ratios_not_ratio_of_means():
    result = compare_points(
        [TP(10.0, 5.0), TP(20.0, 10.0)], [TP(10.2, 6.0), TP(20.3, 9.0)]
    )

    # per-point +20% and -10%
    assert result.mean_rel == pytest.approx(5.0)
    assert result.mean_abs == pytest.approx(0.0)


def test_unmatched_baseline_points_are_dropped():
    result = compare_points(
        [TP(10.0, 5.0), TP(50.0, 10.0)], [TP(10.0, 6.0), TP(20.0, 1.0)]
    )

    assert result.matched == 1
    assert result.mean_rel == pytest.approx(20.0)


# ---------------------------- point extraction -----------------------------


def test_pd_points_use_received_throughput_at_same_index():
    run = _run(1, [10.3, 20.2], [12.0, 18.0])

    points = protection_domain_points(run, "net")

    assert [p.throughput_mbps for p in points] == pytest.approx([10.3, 20.2])
    assert [p.value for p in points] == [12.0, 18.0]


def test_pd_points_missing_csv_row_maps_to_zero_throughput():
    run = _run(1, [10.0], [5.0, 6.0])

    points = protection_domain_points(run, "net")

    assert [p.throughput_mbps for p in points] == [10.0, 0.0]


def test_pd_points_cpu_type_selects_field():
    run = _run(1, [10.0], [8.0])

    assert protection_domain_points(run, "net", CpuType.KERNEL)[0].value == 2.0
    assert protection_domain_points(run, "net", CpuType.USER)[0].value == 6.0


def test_pd_points_absent_pd_or_cpu_data():
    run = _run(1, [10.0], [8.0])
    bare = Run(id=2, name="bare")

    assert protection_domain_points(run, "other") == []
    assert protection_domain_points(bare, "net") == []


def test_pmu_points_use_declared_steps():
    run = _run(1, [99.0, 99.0], [1.0, 1.0], pmu={"l1": [5.0, 6.0]}, steps=[10, 20])

    assert pmu_points(run, "l1") == [TP(10.0, 5.0), TP(20.0, 6.0)]


def test_pmu_points_fall_back_to_index():
    run = _run(1, [10.0], [1.0], pmu={"l1": [5.0, 6.0]})

    assert pmu_points(run, "l1") == [TP(0.0, 5.0), TP(1.0, 6.0)]
    assert pmu_points(run, "missing") == []


# ----------------------------- run comparisons -----------------------------


def test_compare_protection_domains():
    baseline = _run(1, [10.0, 20.0], [10.0, 20.0])
    patched = _run(2, [10.3, 20.2], [12.0, 18.0])

    results = compare_protection_domains([baseline, patched], ["net", "absent"])

    assert [m.metric for m in results] == ["net"]
    (cmp,) = results[0].comparisons
    assert (cmp.run_id, cmp.baseline_id) == (2, 1)
    assert cmp.run_name == "run-2"
    assert cmp.baseline_name == "run-1"
    assert cmp.mean_rel == pytest.approx(5.0)
    assert cmp.mean_abs == pytest.approx(0.0)
    assert cmp.matched == 2


def test_run_without_matches_is_omitted():
    baseline = _run(1, [10.0], [10.0])
    far_away = _run(2, [50.0], [12.0])
    close = _run(3, [10.5], [15.0])

    (metric,) = compare_protection_domains([baseline, far_away, close], ["net"])

    assert [c.run_id for c in metric.comparisons] == [3]
    assert metric.comparisons[0].mean_rel == pytest.approx(50.0)


def test_single_run_has_nothing_to_compare():
    assert compare_protection_domains([_run(1, [10.0], [1.0])], ["net"]) == []


def test_compare_cache_metrics_reports_series_means():
    steps = [10, 20]
    cpu = [1.0, 1.0]
    baseline = _run(1, [10.0, 20.0], cpu, pmu={"l1": [100.0, 200.0]}, steps=steps)
    patched = _run(2, [70.0, 90.0], cpu, pmu={"l1": [120.0, 180.0]}, steps=steps)

    (metric,) = compare_cache_metrics([baseline, patched], ["l1", "l2"])

    (cmp,) = metric.comparisons
    assert metric.metric == "l1"
    assert cmp.mean_rel == pytest.approx(5.0)
    assert cmp.mean_abs == pytest.approx(0.0)
    assert cmp.baseline_mean == pytest.approx(150.0)
    assert cmp.compare_mean == pytest.approx(150.0)


def test_compare_system_cpu_labels_metric_by_cpu_type():
    baseline = _run(1, [10.0], [10.0])
    patched = _run(2, [10.0], [11.0])

    (metric,) = compare_system_cpu([baseline, patched])

    assert metric.metric == "system.total"
    assert metric.comparisons[0].mean_rel == pytest.approx(10.0)


# ------------------------------ plot dispatch ------------------------------


def _session(*runs, plots=()):
    return Session(id="s", name="s", runs=list(runs), custom_plots=list(plots))


def test_select_plot_runs_keeps_session_order():
    a, b, c = (_run(i, [10.0], [float(i)]) for i in (1, 2, 3))
    plot = CustomPlot(id=1, name="p", selected_runs=[3, 1])

    selected = select_plot_runs(_session(a, b, c), plot)

    assert [r.id for r in selected] == [1, 3]


def test_plot_statistics_baseline_is_first_selected_in_session_order():
    a = _run(1, [10.0], [10.0])
    b = _run(2, [10.0], [20.0])
    c = _run(3, [10.0], [15.0])
    plot = CustomPlot(
        id=7,
        name="pd",
        selected_runs=[3, 1],
        plot_type=PlotType.PROTECTION_DOMAINS,
        selected_pds=["net"],
    )

    stats = compute_plot_statistics(_session(a, b, c, plots=[plot]), plot)

    assert stats.plot_id == 7
    assert stats.baseline_run_id == 1
    (metric,) = stats.metrics
    assert [cmp.run_id for cmp in metric.comparisons] == [3]
    assert metric.comparisons[0].mean_rel == pytest.approx(50.0)


def test_plot_statistics_with_one_run_is_empty():
    a = _run(1, [10.0], [10.0])
    plot = CustomPlot(id=1, name="p", selected_runs=[1, 99])

    stats = compute_plot_statistics(_session(a), plot)

    assert stats.baseline_run_id == 1
    assert stats.metrics == []


def test_plot_statistics_dispatches_by_type():
    a = _run(1, [10.0], [10.0], pmu={"l1": [10.0]}, steps=[10])
    b = _run(2, [10.0], [12.0], pmu={"l1": [11.0]}, steps=[10])
    session = _session(a, b)

    cache = CustomPlot(
        id=1,
        name="c",
        selected_runs=[1, 2],
        plot_type=PlotType.CACHE_METRICS,
        cache_metrics=["l1"],
    )
    system = CustomPlot(id=2, name="t", selected_runs=[1, 2])

    cache_stats = compute_plot_statistics(session, cache)
    system_stats = compute_plot_statistics(session, system)

    assert [m.metric for m in cache_stats.metrics] == ["l1"]
    assert cache_stats.metrics[0].comparisons[0].mean_rel == pytest.approx(10.0)
    assert [m.metric for m in system_stats.metrics] == ["system.total"]
    assert system_stats.metrics[0].comparisons[0].mean_rel == pytest.approx(20.0)


def test_comparison_is_deterministic():
    baseline = _run(1, [10.0, 20.0, 30.0], [10.0, 20.0, 30.0])
    patched = _run(2, [10.1, 19.9, 30.4], [11.0, 19.0, 33.0])

    first = compare_protection_domains([baseline, patched], ["net"])
    second = compare_protection_domains([baseline, patched], ["net"])

    assert first == second
