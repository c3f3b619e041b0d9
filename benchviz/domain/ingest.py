"""Parsing of uploaded benchmark files.

A run is assembled from two files: the benchmark CSV (one row per requested
throughput step) and an optional JSON document carrying CPU, protection
domain and PMU measurements. Both arrive as raw bytes from multipart uploads.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Any, List

import orjson
from pydantic import ValidationError

from .models import CpuData, TestPoint

logger = logging.getLogger(__name__)


class UploadParseError(ValueError):
    """Uploaded content could not be parsed.

    ``reason`` is the short, user-facing summary; ``details`` carries the
    parser's own message.
    """

    def __init__(self, reason: str, details: str) -> None:
        super().__init__(f"{reason}: {details}")
        self.reason = reason
        self.details = details


def parse_json_upload(content: bytes) -> Any:
    """Decode an uploaded JSON document.

    Raises
    ------
    UploadParseError
        If the bytes are not valid UTF-8 JSON.
    """
    try:
        return orjson.loads(content)
    except orjson.JSONDecodeError as exc:
        logger.info("ingest.json.invalid", extra={"error": str(exc)})
        raise UploadParseError("Invalid JSON file", str(exc)) from exc


def parse_cpu_data(content: bytes) -> CpuData:
    """Decode and validate an uploaded CPU document."""
    raw = parse_json_upload(content)
    try:
        return CpuData.model_validate(raw)
    except ValidationError as exc:
        raise UploadParseError("Invalid CPU data file", str(exc)) from exc


def parse_csv_points(text: str) -> List[TestPoint]:
    """
    Parse benchmark CSV text into test points.

    The first line holds the column headers; headers and cells are stripped
    of surrounding whitespace. Columns beyond the known ones are kept on the
    point as extra fields.

    Parameters
    ----------
    text : str
        Full CSV content

    Returns
    -------
    List[TestPoint]
        One point per data row, in file order

    Raises
    ------
    UploadParseError
        If there is no data row or a row holds a non-numeric measurement.

    Examples
    --------
    >>> pts = parse_csv_points("Requested_Throughput,Receive_Throughput\\n1e7,9.9e6")
    >>> pts[0].receive_throughput
    9900000.0
    """
    lines = text.strip().splitlines()
    if len(lines) < 2:
        raise UploadParseError("Invalid CSV file", "CSV must have headers and data")

    reader = csv.reader(io.StringIO("\n".join(lines)))
    headers = [h.strip() for h in next(reader)]
    points: List[TestPoint] = []
    for line_no, cells in enumerate(reader, start=2):
        if not any(c.strip() for c in cells):
            continue
        row = {
            header: cell.strip()
            for header, cell in zip(headers, cells)
            if header and cell.strip() != ""
        }
        try:
            points.append(TestPoint.model_validate(row))
        except ValidationError as exc:
            raise UploadParseError(
                "Invalid CSV file", f"line {line_no}: {exc.errors()[0]['msg']}"
            ) from exc
    logger.debug("ingest.csv.parsed", extra={"rows": len(points)})
    return points
