"""Pytest configuration for test suite.

Ensures the project root is on ``sys.path`` so imports like
``import benchviz`` resolve correctly regardless of the working directory
pytest chooses, and provides shared session documents.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest


def _ensure_project_root_on_syspath() -> None:
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)
    if project_root_str not in sys.path:
        # Prepend to prefer local sources over site-packages
        sys.path.insert(0, project_root_str)


_ensure_project_root_on_syspath()


def _run_doc(
    run_id: int, name: str, received_mbps: List[float], net_cpu: List[float]
) -> Dict[str, Any]:
    return {
        "id": run_id,
        "name": name,
        "data": [
            {
                "Requested_Throughput": round(mbps) * 1e6,
                "Receive_Throughput": mbps * 1e6,
                "Average_RTT": 100.0 + i,
                "Minimum_RTT": 90.0,
                "Maximum_RTT": 150.0,
                "Stdev_RTT": 5.0,
                "Median_RTT": 99.0,
                "Bad_Packets": 0,
            }
            for i, mbps in enumerate(received_mbps)
        ],
        "cpuData": {
            "tests": [
                {
                    "throughput_mbps": float(round(mbps)),
                    "system": {
                        "cpu_utilization": cpu * 2,
                        "kernel_cpu_utilization": cpu,
                        "user_cpu_utilization": cpu,
                    },
                    "cores": [
                        {
                            "protection_domains": [
                                {
                                    "name": "net",
                                    "cpu_utilization": cpu,
                                    "kernel_cpu_utilization": cpu / 2,
                                    "user_cpu_utilization": cpu / 2,
                                }
                            ]
                        }
                    ],
                }
                for mbps, cpu in zip(received_mbps, net_cpu)
            ],
            "pmu_data": {"l1_misses": [c * 10 for c in net_cpu]},
            "metadata": {"test_throughputs": [round(m) for m in received_mbps]},
        },
        "metadata": {
            "commit": "abc123",
            "hardware": "x86",
            "dateTime": "2025-01-01T10:00",
        },
    }


@pytest.fixture
def session_doc() -> Dict[str, Any]:
    """Session with a baseline and a comparison run plus one PD plot."""
    return {
        "id": "session-1",
        "name": "Nightly comparison",
        "createdAt": "2025-01-01T00:00:00Z",
        "updatedAt": "2025-01-02T00:00:00Z",
        "runs": [
            _run_doc(1001, "baseline", [10.0, 20.0], [10.0, 20.0]),
            _run_doc(1002, "patched", [10.3, 20.2], [12.0, 18.0]),
        ],
        "customPlots": [
            {
                "id": 1,
                "name": "net overhead",
                "selectedRuns": [1001, 1002],
                "plotType": "protection-domains",
                "selectedPDs": ["net"],
                "cpuType": "total",
                "cacheMetrics": [],
            }
        ],
    }
