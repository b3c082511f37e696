"""Tests for the converter progress metric."""

from __future__ import annotations

import pytest

from DiskImport.HttpImport.metrics import NullProgress, PrometheusProgress, parse_progress


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("    (45.34/100%)", 45.34),
        ("(0.00/100%)", 0.0),
        ("(100.00/100%)", 100.0),
        ("nbdkit: curl[1]: debug: pread count=512", None),
        ("", None),
    ],
)
def test_parse_progress(line, expected) -> None:
    assert parse_progress(line) == expected


def test_counter_tracks_highest_percentage(registry) -> None:
    progress = PrometheusProgress("uid-1", registry=registry)

    for line in ["(10.00/100%)", "(25.00/100%)", "(20.00/100%)", "garbage", "(40.00/100%)"]:
        progress.report(line)

    assert registry.get_sample_value("import_progress_total", {"ownerUID": "uid-1"}) == 40.0
    assert progress.current == 40.0


def test_missing_owner_uid_records_nothing(registry) -> None:
    progress = PrometheusProgress("", registry=registry)

    progress.report("(50.00/100%)")

    assert registry.get_sample_value("import_progress_total", {"ownerUID": ""}) is None


def test_duplicate_registration_reuses_existing_collector(registry) -> None:
    """A second reporter in the same process shares the registered counter."""

    first = PrometheusProgress("uid-a", registry=registry)
    second = PrometheusProgress("uid-b", registry=registry)

    assert first.counter is second.counter
    second.report("(12.00/100%)")
    assert registry.get_sample_value("import_progress_total", {"ownerUID": "uid-b"}) == 12.0


def test_null_progress_accepts_lines() -> None:
    assert NullProgress().report("(50.00/100%)") is None
