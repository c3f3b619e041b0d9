"""Tests for parsing uploaded CSV and JSON files."""

from __future__ import annotations

import pytest

from benchviz.domain.ingest import (
    UploadParseError,
    parse_cpu_data,
    parse_csv_points,
    parse_json_upload,
)

CSV = (
    "Requested_Throughput, Receive_Throughput, Average_RTT, Bad_Packets, Label\n"
    "10000000, 9990000, 120.5, 0, warmup\n"
    "\n"
    "20000000, 19980000, 130.25, 2, steady\n"
)


def test_parse_json_upload_returns_document():
    assert parse_json_upload(b'{"tests": [], "n": 1}') == {"tests": [], "n": 1}


def test_parse_json_upload_reports_parser_message():
    with pytest.raises(UploadParseError) as exc_info:
        parse_json_upload(b"{broken")

    assert exc_info.value.reason == "Invalid JSON file"
    assert exc_info.value.details
    assert str(exc_info.value).startswith("Invalid JSON file: ")


def test_parse_cpu_data_validates_shape():
    cpu = parse_cpu_data(
        b'{"tests": [{"throughput_mbps": 10, "system": {"cpu_utilization": 5}}],'
        b' "pmu_data": {"l1": [1, 2]}}'
    )

    assert cpu.tests[0].throughput_mbps == 10.0
    assert cpu.pmu_data == {"l1": [1.0, 2.0]}


def test_parse_cpu_data_rejects_wrong_types():
    with pytest.raises(UploadParseError, match="Invalid CPU data file"):
        parse_cpu_data(b'{"tests": "nope"}')


def test_parse_csv_points():
    points = parse_csv_points(CSV)

    assert len(points) == 2
    first, second = points
    assert first.requested_throughput == 10_000_000.0
    assert first.receive_throughput == 9_990_000.0
    assert first.average_rtt == 120.5
    assert first.minimum_rtt == 0.0  # column absent
    assert second.bad_packets == 2.0
    assert first.model_extra == {"Label": "warmup"}


def test_parse_csv_keeps_row_order():
    text = "Receive_Throughput\n3\n1\n2\n"
    assert [p.receive_throughput for p in parse_csv_points(text)] == [3.0, 1.0, 2.0]


@pytest.mark.parametrize("text", ["", "Requested_Throughput\n", "   \n\n"])
def test_parse_csv_requires_header_and_data(text):
    with pytest.raises(UploadParseError, match="CSV must have headers and data"):
        parse_csv_points(text)


def test_parse_csv_reports_line_of_bad_value():
    text = "Requested_Throughput,Receive_Throughput\n1,2\nfast,3\n"

    with pytest.raises(UploadParseError) as exc_info:
        parse_csv_points(text)

    assert exc_info.value.reason == "Invalid CSV file"
    assert "line 3" in exc_info.value.details
