"""Reactive lifecycle router: keeps the metric store in step with the cluster.

Per PipelineRun the router tracks Absent -> Active -> Terminating -> Absent.

Signals:
- observe: ADDED/MODIFIED watch events, reconcile hits and resync items.
  A snapshot with a deletion timestamp is the soft-delete signal.
- not found: DELETED watch events, reconcile misses and identities missing
  from a resync listing. This is the hard-delete signal.

An ADDED/MODIFIED event that cannot be parsed but names its PipelineRun is
followed by a reconcile of that PipelineRun.

Every signal gets a sequence number when it is received, before any cluster
call is made. Signals for one identity are applied one at a time, and a
signal older than the last applied one is dropped. A delete therefore always
wins over an update that was already in flight when the delete arrived.
"""
from __future__ import annotations

import asyncio
import itertools
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Iterable, Optional, Set

import structlog

from prstatus.exceptions import MalformedSnapshotError, NotFoundError, TransientSourceError
from prstatus.observability.metrics import (
    events_total,
    malformed_snapshots_total,
    source_errors_total,
    tracked_pipelineruns,
)
from prstatus.pipelineruns.classifier import DEFAULT_PLATFORM_PARAM, record_for
from prstatus.pipelineruns.models import (
    EntityIdentity,
    EntitySnapshot,
    LifecycleState,
    WatchEvent,
    WatchEventType,
    identity_from_object,
    snapshot_from_object,
)
from prstatus.pipelineruns.source import EntitySource
from prstatus.pipelineruns.store import MetricStateStore

logger = structlog.get_logger()


@dataclass
class _Tracked:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    state: LifecycleState = LifecycleState.ABSENT
    seq: int = -1
    uid: Optional[str] = None
    waiting: int = 0


@dataclass(frozen=True)
class ResyncResult:
    listed: int
    malformed: int
    removed: int


class LifecycleRouter:
    """Applies lifecycle signals to a MetricStateStore.

    Args:
        store: Store owned by the application instance
        source: Cluster view used by reconcile() and resync(); optional when
            the caller only pushes snapshots in
        platform_param: PipelineRun param carrying the build platforms
        source_timeout: Upper bound in seconds on a single get/list call
    """

    # Deleted identities whose last sequence is remembered; oldest evicted first.
    tombstone_limit = 10_000

    def __init__(
        self,
        store: MetricStateStore,
        source: Optional[EntitySource] = None,
        platform_param: str = DEFAULT_PLATFORM_PARAM,
        source_timeout: float = 10.0
    ):
        self.store = store
        self.source = source
        self.platform_param = platform_param
        self.source_timeout = source_timeout
        self._tracked: Dict[EntityIdentity, _Tracked] = {}
        self._tombstones: "OrderedDict[EntityIdentity, int]" = OrderedDict()
        self._sequence = itertools.count()

    def next_sequence(self) -> int:
        return next(self._sequence)

    def state_of(self, identity: EntityIdentity) -> LifecycleState:
        tracked = self._tracked.get(identity)
        return tracked.state if tracked else LifecycleState.ABSENT

    def states(self) -> Dict[EntityIdentity, LifecycleState]:
        return {
            identity: tracked.state
            for identity, tracked in self._tracked.items()
            if tracked.state is not LifecycleState.ABSENT
        }

    # Signal entry points

    async def observe(self, snapshot: EntitySnapshot, seq: Optional[int] = None) -> LifecycleState:
        """Apply a create/update (or, with a deletion timestamp, soft-delete) signal."""
        if seq is None:
            seq = self.next_sequence()
        async with self._serialized(snapshot.identity) as tracked:
            self._apply_observe(snapshot.identity, tracked, snapshot, seq)
            return tracked.state

    async def not_found(self, identity: EntityIdentity, seq: Optional[int] = None) -> LifecycleState:
        """Apply the hard-delete signal. Safe to repeat and safe for never-seen identities."""
        if seq is None:
            seq = self.next_sequence()
        async with self._serialized(identity) as tracked:
            self._apply_not_found(identity, tracked, seq)
            return tracked.state

    async def handle_event(self, event: WatchEvent) -> None:
        seq = self.next_sequence()
        if event.type in (WatchEventType.ADDED, WatchEventType.MODIFIED):
            try:
                snapshot = snapshot_from_object(event.object)
            except MalformedSnapshotError as exc:
                self._skip_malformed(exc, watch_event=event.type.value)
                if exc.identity is not None and self.source is not None:
                    # The event is unusable; ask the API server what the run looks like now.
                    await self._reconcile_after_malformed(exc.identity)
                return
            await self.observe(snapshot, seq)
        elif event.type == WatchEventType.DELETED:
            try:
                identity = identity_from_object(event.object)
            except MalformedSnapshotError as exc:
                self._skip_malformed(exc, watch_event=event.type.value)
                return
            await self.not_found(identity, seq)
        elif event.type == WatchEventType.ERROR:
            raise TransientSourceError(
                f"watch error event: {event.object.get('message', 'unknown')}", operation="watch"
            )

    async def reconcile(self, identity: EntityIdentity) -> LifecycleState:
        """Look the PipelineRun up and apply whatever the cluster says now.

        Raises:
            TransientSourceError: If the lookup failed; the store is left untouched
        """
        seq = self.next_sequence()
        try:
            obj = await self._call(self._require_source().get(identity), "get")
        except NotFoundError:
            logger.info("pipelinerun.not_found", pipelinerun=str(identity))
            return await self.not_found(identity, seq)

        try:
            snapshot = snapshot_from_object(obj)
        except MalformedSnapshotError as exc:
            self._skip_malformed(exc, pipelinerun=str(identity))
            return self.state_of(identity)
        return await self.observe(snapshot, seq)

    async def resync(self) -> ResyncResult:
        """Re-list every PipelineRun and converge the store onto the listing.

        Listed PipelineRuns are observed and tracked ones missing from the
        listing are hard-deleted. Items that fail to parse are skipped, but
        if their identity is readable they still count as present.

        Raises:
            TransientSourceError: If the listing failed; the store is left untouched
        """
        seq = self.next_sequence()
        items = await self._call(self._require_source().list(), "list")

        present: Set[EntityIdentity] = set()
        malformed = 0
        for item in items:
            try:
                identity = identity_from_object(item)
            except MalformedSnapshotError as exc:
                malformed += 1
                self._skip_malformed(exc, during="resync")
                continue
            present.add(identity)
            try:
                snapshot = snapshot_from_object(item)
            except MalformedSnapshotError as exc:
                malformed += 1
                self._skip_malformed(exc, during="resync")
                continue
            await self.observe(snapshot, seq)

        removed = 0
        for identity in self._missing_from(present):
            if self.state_of(identity) is not LifecycleState.ABSENT:
                await self.not_found(identity, seq)
                removed += 1

        result = ResyncResult(listed=len(items), malformed=malformed, removed=removed)
        logger.info(
            "resync.complete",
            listed=result.listed,
            malformed=result.malformed,
            removed=result.removed,
            tracked=len(self.store),
        )
        return result

    # State machine

    def _apply_observe(
        self,
        identity: EntityIdentity,
        tracked: _Tracked,
        snapshot: EntitySnapshot,
        seq: int
    ) -> None:
        if seq < tracked.seq:
            events_total.labels(type="stale").inc()
            logger.debug("pipelinerun.stale_observe", pipelinerun=str(identity), seq=seq, applied=tracked.seq)
            return
        tracked.seq = seq

        if snapshot.terminating:
            events_total.labels(type="soft_delete").inc()
            removed = self.store.remove(identity)
            if tracked.state is not LifecycleState.TERMINATING:
                logger.info("pipelinerun.soft_delete", pipelinerun=str(identity), removed=removed)
            tracked.state = LifecycleState.TERMINATING
            tracked.uid = snapshot.uid
            self._update_tracked_gauge()
            return

        if tracked.state is LifecycleState.TERMINATING and self._same_incarnation(tracked.uid, snapshot.uid):
            events_total.labels(type="ignored").inc()
            return

        events_total.labels(type="observe").inc()
        record = record_for(snapshot, self.platform_param)
        previous = self.store.upsert(identity, record)
        if previous is None or previous.status != record.status:
            logger.info(
                "pipelinerun.observe",
                pipelinerun=str(identity),
                status=record.status,
                previous=previous.status if previous else None,
                build_platform=record.build_platform,
            )
        tracked.state = LifecycleState.ACTIVE
        tracked.uid = snapshot.uid
        self._update_tracked_gauge()

    def _apply_not_found(self, identity: EntityIdentity, tracked: _Tracked, seq: int) -> None:
        if seq < tracked.seq:
            events_total.labels(type="stale").inc()
            logger.debug("pipelinerun.stale_not_found", pipelinerun=str(identity), seq=seq, applied=tracked.seq)
            return
        tracked.seq = seq
        events_total.labels(type="hard_delete").inc()

        removed = self.store.remove(identity)
        if removed or tracked.state is not LifecycleState.ABSENT:
            logger.info("pipelinerun.hard_delete", pipelinerun=str(identity), removed=removed)
        tracked.state = LifecycleState.ABSENT
        tracked.uid = None
        self._update_tracked_gauge()

    @staticmethod
    def _same_incarnation(tracked_uid: Optional[str], observed_uid: Optional[str]) -> bool:
        return tracked_uid is None or observed_uid is None or tracked_uid == observed_uid

    # Bookkeeping

    @asynccontextmanager
    async def _serialized(self, identity: EntityIdentity):
        tracked = self._tracked.get(identity)
        if tracked is None:
            tracked = self._tracked[identity] = _Tracked(seq=self._tombstones.pop(identity, -1))
        tracked.waiting += 1
        try:
            async with tracked.lock:
                yield tracked
        finally:
            tracked.waiting -= 1
            self._forget_if_absent(identity, tracked)

    def _forget_if_absent(self, identity: EntityIdentity, tracked: _Tracked) -> None:
        if tracked.state is not LifecycleState.ABSENT or tracked.waiting:
            return
        if self._tracked.get(identity) is not tracked:
            return
        del self._tracked[identity]
        # Remember the last applied sequence so an older in-flight update
        # cannot bring the record back.
        self._tombstones[identity] = tracked.seq
        self._tombstones.move_to_end(identity)
        while len(self._tombstones) > self.tombstone_limit:
            self._tombstones.popitem(last=False)

    def _missing_from(self, present: Set[EntityIdentity]) -> Iterable[EntityIdentity]:
        return [
            identity
            for identity, tracked in list(self._tracked.items())
            if tracked.state is not LifecycleState.ABSENT and identity not in present
        ]

    async def _reconcile_after_malformed(self, identity: EntityIdentity) -> None:
        try:
            await self.reconcile(identity)
        except TransientSourceError as exc:
            # Left to the next resync.
            logger.warning("pipelinerun.reconcile_failed", pipelinerun=str(identity), error=str(exc))

    def _require_source(self) -> EntitySource:
        if self.source is None:
            raise RuntimeError("LifecycleRouter has no source configured")
        return self.source

    async def _call(self, awaitable: Awaitable[Any], operation: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.source_timeout)
        except asyncio.TimeoutError as exc:
            source_errors_total.labels(operation=operation).inc()
            raise TransientSourceError(
                f"{operation} timed out after {self.source_timeout}s", operation=operation
            ) from exc
        except TransientSourceError:
            source_errors_total.labels(operation=operation).inc()
            raise

    def _skip_malformed(self, exc: MalformedSnapshotError, **context: Any) -> None:
        malformed_snapshots_total.inc()
        logger.warning(
            "pipelinerun.malformed",
            error=str(exc),
            pipelinerun=str(exc.identity) if exc.identity else None,
            **context,
        )

    def _update_tracked_gauge(self) -> None:
        tracked_pipelineruns.set(len(self.store))


__all__ = ["LifecycleRouter", "ResyncResult"]
