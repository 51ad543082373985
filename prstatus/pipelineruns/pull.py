"""Pull-mode collection: derive the full state set from a live listing per scrape.

No state survives between scrapes unless a staleness window is configured,
in which case concurrent scrapes share one listing for at most that long.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from prstatus.exceptions import ExpositionFailure, MalformedSnapshotError, TransientSourceError
from prstatus.observability.metrics import (
    malformed_snapshots_total,
    source_errors_total,
    tracked_pipelineruns,
)
from prstatus.pipelineruns.classifier import DEFAULT_PLATFORM_PARAM, record_for
from prstatus.pipelineruns.models import MetricRecord, snapshot_from_object
from prstatus.pipelineruns.source import EntitySource

logger = structlog.get_logger()


def records_from_listing(
    items: Iterable[Dict[str, Any]],
    platform_param: str = DEFAULT_PLATFORM_PARAM
) -> Tuple[List[MetricRecord], int]:
    """Classify every listed PipelineRun, skipping the ones that fail to parse.

    Returns:
        (records ordered by identity, number of skipped items)
    """
    records: List[MetricRecord] = []
    malformed = 0
    for item in items:
        try:
            snapshot = snapshot_from_object(item)
        except MalformedSnapshotError as exc:
            malformed += 1
            malformed_snapshots_total.inc()
            logger.warning(
                "pipelinerun.malformed",
                error=str(exc),
                pipelinerun=str(exc.identity) if exc.identity else None,
                during="scrape",
            )
            continue
        # Terminating PipelineRuns are no longer counted in any state.
        if snapshot.terminating:
            continue
        records.append(record_for(snapshot, platform_param))
    return sorted(records, key=lambda record: record.identity), malformed


class PullCollector:
    """Lists PipelineRuns at scrape time and returns their metric records.

    Args:
        source: Cluster view providing list()
        platform_param: PipelineRun param carrying the build platforms
        source_timeout: Upper bound in seconds on the listing call
        cache_max_age: Seconds a listing may be reused; 0 lists on every scrape
        clock: Monotonic time source
    """

    def __init__(
        self,
        source: EntitySource,
        platform_param: str = DEFAULT_PLATFORM_PARAM,
        source_timeout: float = 10.0,
        cache_max_age: float = 0.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.source = source
        self.platform_param = platform_param
        self.source_timeout = source_timeout
        self.cache_max_age = cache_max_age
        self._clock = clock
        self._lock = asyncio.Lock()
        self._cached: Optional[Tuple[float, List[MetricRecord]]] = None

    async def collect(self) -> List[MetricRecord]:
        """Current records for every listed PipelineRun.

        Raises:
            ExpositionFailure: If the listing failed or timed out
        """
        if self.cache_max_age <= 0:
            return await self._collect_fresh()

        async with self._lock:
            if self._cached is not None:
                listed_at, records = self._cached
                if self._clock() - listed_at <= self.cache_max_age:
                    return list(records)
                self._cached = None
            listed_at = self._clock()
            records = await self._collect_fresh()
            self._cached = (listed_at, records)
            return list(records)

    async def _collect_fresh(self) -> List[MetricRecord]:
        started = time.perf_counter()
        try:
            items = await asyncio.wait_for(self.source.list(), timeout=self.source_timeout)
        except asyncio.TimeoutError as exc:
            source_errors_total.labels(operation="list").inc()
            raise ExpositionFailure(f"listing PipelineRuns timed out after {self.source_timeout}s") from exc
        except TransientSourceError as exc:
            source_errors_total.labels(operation="list").inc()
            raise ExpositionFailure(f"listing PipelineRuns failed: {exc}") from exc

        records, malformed = records_from_listing(items, self.platform_param)
        tracked_pipelineruns.set(len(records))
        logger.info(
            "scrape.collected",
            listed=len(items),
            records=len(records),
            malformed=malformed,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return records


__all__ = ["PullCollector", "records_from_listing"]
