"""
Unit conversion utilities for throughput, latency and cycle counts.

Benchmark CSVs report throughput in bits per second and RTTs in
microseconds, while CPU documents key tests by Mbps. This module converts
between those units and renders human-readable labels for reports.
"""

import logging
import math
from enum import Enum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class ThroughputUnit(Enum):
    """Throughput units for conversion (decimal multiples of bits/s)."""

    BPS = "bps"
    KBPS = "Kbps"
    MBPS = "Mbps"
    GBPS = "Gbps"
    TBPS = "Tbps"


# Throughput conversion factors to bits per second
_THROUGHPUT_TO_BPS = {
    ThroughputUnit.BPS: 1.0,
    ThroughputUnit.KBPS: 1e3,
    ThroughputUnit.MBPS: 1e6,
    ThroughputUnit.GBPS: 1e9,
    ThroughputUnit.TBPS: 1e12,
}

_THROUGHPUT_SCALE = [
    ThroughputUnit.BPS,
    ThroughputUnit.KBPS,
    ThroughputUnit.MBPS,
    ThroughputUnit.GBPS,
    ThroughputUnit.TBPS,
]

_CYCLE_SUFFIXES = [(1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K")]


def bps_to_mbps(value_bps: float) -> float:
    """Convert bits per second to megabits per second (decimal)."""
    return value_bps / _THROUGHPUT_TO_BPS[ThroughputUnit.MBPS]


def auto_scale_throughput(value_bps: float, precision: int = 2) -> Tuple[float, str]:
    """
    Scale a bits-per-second value to the largest unit keeping it >= 1.

    Values of 100 or more in the chosen unit are rounded to whole numbers,
    smaller values keep ``precision`` decimals.

    Examples
    --------
    >>> auto_scale_throughput(10_000_184.0)
    (10.0, 'Mbps')
    >>> auto_scale_throughput(250_000_000.0)
    (250.0, 'Mbps')
    """
    value = abs(value_bps)
    index = 0
    while value >= 1000 and index < len(_THROUGHPUT_SCALE) - 1:
        value /= 1000
        index += 1
    digits = 0 if value >= 100 else precision
    scaled = round(value, digits)
    if value_bps < 0:
        scaled = -scaled
    return scaled, _THROUGHPUT_SCALE[index].value


def format_throughput(value_bps: Optional[float]) -> str:
    """Render a throughput in bits/s as e.g. ``"10.00 Mbps"``; ``N/A`` if missing."""
    if value_bps is None or not math.isfinite(value_bps):
        return "N/A"
    value, unit = auto_scale_throughput(value_bps)
    digits = 0 if abs(value) >= 100 else 2
    return f"{value:.{digits}f} {unit}"


def format_microseconds(value_us: Optional[float]) -> str:
    """Render a duration in microseconds using µs, ms or s."""
    if value_us is None or not math.isfinite(value_us):
        return "N/A"
    if value_us >= 1_000_000:
        return f"{value_us / 1_000_000:.2f} s"
    if value_us >= 1000:
        return f"{value_us / 1000:.2f} ms"
    return f"{value_us:.2f} μs"


def format_cycles(cycles: Optional[float]) -> str:
    """Render a cycle count with K/M/B/T suffixes (e.g. ``"249.03 B"``)."""
    if cycles is None or not math.isfinite(cycles):
        return "N/A"
    magnitude = abs(cycles)
    sign = "-" if cycles < 0 else ""
    for threshold, suffix in _CYCLE_SUFFIXES:
        if magnitude >= threshold:
            return f"{sign}{magnitude / threshold:.2f} {suffix}"
    return f"{cycles:.0f}"


def format_percentage(value: Optional[float], decimals: int = 2) -> str:
    """Render a percentage value (already scaled to 0-100)."""
    if value is None or not math.isfinite(value):
        return "N/A"
    return f"{value:.{decimals}f}%"
