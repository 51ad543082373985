"""Prometheus metrics for exporter self-observability.

Design principles:
- Low-cardinality labels only (no namespace/name of PipelineRuns here)
- Per-PipelineRun state is exposed by the state-set collector, not by these
"""
from prometheus_client import Counter, Gauge

# Router input
events_total = Counter(
    "prstatus_events_total",
    "Lifecycle signals processed by the router",
    ["type"]
)

malformed_snapshots_total = Counter(
    "prstatus_malformed_snapshots_total",
    "PipelineRun objects skipped because they could not be parsed"
)

# Cluster API health
source_errors_total = Counter(
    "prstatus_source_errors_total",
    "Failed or timed out calls against the PipelineRun source",
    ["operation"]
)

# Exposition health
scrape_failures_total = Counter(
    "prstatus_scrape_failures_total",
    "Scrapes answered with an error instead of a state set"
)

tracked_pipelineruns = Gauge(
    "prstatus_tracked_pipelineruns",
    "PipelineRuns with an active status record"
)
