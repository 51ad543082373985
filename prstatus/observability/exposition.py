"""State-set exposition of PipelineRun status.

For every PipelineRun with a record, one row per taxonomy status: 1 for the
active status and 0 for the rest. A status outside the taxonomy (an
arbitrary failure reason) gets one extra row with value 1, so each
PipelineRun always has exactly one active row.

Rendering is a pure function of the records passed in; nothing is cached
between scrapes.
"""
from __future__ import annotations

from typing import Iterable, List, NamedTuple, Sequence

from prometheus_client import REGISTRY, generate_latest
from prometheus_client.core import GaugeMetricFamily

from prstatus.exceptions import ExpositionFailure
from prstatus.pipelineruns.models import EntityIdentity, MetricRecord

METRIC_NAME = "tekton_kueue_pipelinerun_status"
METRIC_DOCUMENTATION = (
    "The status of a PipelineRun, labeled by namespace, name, status, and build platform."
)
METRIC_LABELS = ["namespace", "name", "status", "build_platform"]


class Sample(NamedTuple):
    identity: EntityIdentity
    status: str
    build_platform: str
    value: float


def render(records: Iterable[MetricRecord], taxonomy: Sequence[str]) -> List[Sample]:
    samples: List[Sample] = []
    for record in records:
        for status in taxonomy:
            value = 1.0 if status == record.status else 0.0
            samples.append(Sample(record.identity, status, record.build_platform, value))
        if record.status not in taxonomy:
            samples.append(Sample(record.identity, record.status, record.build_platform, 1.0))
    return samples


class StateSetCollector:
    """prometheus_client collector over a fixed set of records."""

    def __init__(self, records: Iterable[MetricRecord], taxonomy: Sequence[str]):
        self.records = list(records)
        self.taxonomy = tuple(taxonomy)

    def collect(self):
        family = GaugeMetricFamily(METRIC_NAME, METRIC_DOCUMENTATION, labels=METRIC_LABELS)
        for sample in render(self.records, self.taxonomy):
            family.add_metric(
                [sample.identity.namespace, sample.identity.name, sample.status, sample.build_platform],
                sample.value,
            )
        yield family


class _ScrapeView:
    """Joins several collectors into the single registry-like object generate_latest expects."""

    def __init__(self, *collectors):
        self.collectors = collectors

    def collect(self):
        for collector in self.collectors:
            yield from collector.collect()


def generate_scrape(records: Iterable[MetricRecord], taxonomy: Sequence[str], registry=REGISTRY) -> bytes:
    """Prometheus text payload: the exporter's own metrics plus the state set.

    Raises:
        ExpositionFailure: If the payload cannot be rendered
    """
    try:
        return generate_latest(_ScrapeView(registry, StateSetCollector(records, taxonomy)))
    except Exception as exc:
        raise ExpositionFailure(f"rendering scrape failed: {exc}") from exc


__all__ = [
    "METRIC_LABELS",
    "METRIC_NAME",
    "Sample",
    "StateSetCollector",
    "generate_scrape",
    "render",
]
