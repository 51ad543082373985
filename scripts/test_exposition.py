import sys
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry
from prometheus_client.parser import text_string_to_metric_families

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from prstatus.config import DEFAULT_STATUS_TAXONOMY  # noqa: E402
from prstatus.exceptions import ExpositionFailure  # noqa: E402
from prstatus.observability.exposition import METRIC_NAME, generate_scrape, render  # noqa: E402
from prstatus.pipelineruns.models import EntityIdentity, MetricRecord  # noqa: E402

A = EntityIdentity("builds", "a")
B = EntityIdentity("builds", "b")


def _samples(payload: bytes):
    for family in text_string_to_metric_families(payload.decode("utf-8")):
        if family.name == METRIC_NAME:
            return family.samples
    return []


def test_render_state_set_for_succeeded_run():
    rows = render([MetricRecord(A, "Succeeded", "linux/amd64")], DEFAULT_STATUS_TAXONOMY)

    assert len(rows) == len(DEFAULT_STATUS_TAXONOMY)
    values = {row.status: row.value for row in rows}
    assert values["Succeeded"] == 1.0
    assert all(value == 0.0 for status, value in values.items() if status != "Succeeded")
    assert {row.build_platform for row in rows} == {"linux/amd64"}


def test_render_reason_outside_taxonomy_adds_single_active_row():
    rows = render([MetricRecord(A, "InvalidParamValue")], ("Succeeded", "Failed"))

    assert [(row.status, row.value) for row in rows] == [
        ("Succeeded", 0.0),
        ("Failed", 0.0),
        ("InvalidParamValue", 1.0),
    ]


def test_render_exactly_one_active_row_per_run():
    records = [MetricRecord(A, "Running"), MetricRecord(B, "Whatever")]
    rows = render(records, DEFAULT_STATUS_TAXONOMY)

    for identity in (A, B):
        assert sum(row.value for row in rows if row.identity == identity) == 1.0


def test_render_empty_snapshot_has_no_rows():
    assert render([], DEFAULT_STATUS_TAXONOMY) == []


def test_generate_scrape_text_format():
    payload = generate_scrape(
        [MetricRecord(A, "Pending", "")],
        ("Pending", "Running"),
        registry=CollectorRegistry(),
    )

    samples = _samples(payload)
    assert {(s.labels["status"], s.value) for s in samples} == {("Pending", 1.0), ("Running", 0.0)}
    assert all(s.labels["build_platform"] == "" for s in samples)
    assert all(s.labels["namespace"] == "builds" and s.labels["name"] == "a" for s in samples)


def test_generate_scrape_includes_exporter_metrics():
    payload = generate_scrape([], ("Pending",))
    assert b"prstatus_tracked_pipelineruns" in payload


def test_generate_scrape_failure_is_exposition_failure():
    class Broken:
        def collect(self):
            raise RuntimeError("boom")

    with pytest.raises(ExpositionFailure):
        generate_scrape([], ("Pending",), registry=Broken())
