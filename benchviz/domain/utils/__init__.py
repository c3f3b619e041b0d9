"""
Shared analysis utilities for benchmark runs.

Modules
-------
units
    Throughput unit conversion (bps, Kbps, Mbps, Gbps, Tbps) with
    auto-scaling, and human-readable formatting of throughput, durations
    in microseconds and cycle counts
comparison
    Throughput-aligned comparison of runs against a baseline: nearest
    neighbour matching, relative and absolute differences, and per-plot
    dispatch for protection-domain, PMU and system CPU metrics
summary
    Per-run headline figures, protection-domain averages and table rows
    joining CSV rows with CPU tests
"""

__all__ = []
