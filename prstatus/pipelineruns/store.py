"""In-memory metric state for reactive mode.

Holds at most one active status per PipelineRun. Zero-valued rows for the
rest of the taxonomy are synthesized at exposition time and never stored.
"""
from __future__ import annotations

import threading
from typing import Dict, List, Optional

from prstatus.pipelineruns.models import EntityIdentity, MetricRecord


class MetricStateStore:
    """Identity -> MetricRecord mapping shared by the router and /metrics.

    Created empty per application instance; nothing survives a restart.
    Records are immutable, so a reader never sees a half-written entry.
    """

    def __init__(self):
        self._records: Dict[EntityIdentity, MetricRecord] = {}
        self._lock = threading.Lock()

    def upsert(self, identity: EntityIdentity, record: MetricRecord) -> Optional[MetricRecord]:
        """Replace the record for identity.

        Returns:
            The record that was replaced, None if there was none
        """
        with self._lock:
            previous = self._records.get(identity)
            self._records[identity] = record
        return previous

    def remove(self, identity: EntityIdentity) -> bool:
        """Drop the record for identity. Removing an absent identity is a no-op.

        Returns:
            True if a record was removed
        """
        with self._lock:
            return self._records.pop(identity, None) is not None

    def get(self, identity: EntityIdentity) -> Optional[MetricRecord]:
        with self._lock:
            return self._records.get(identity)

    def snapshot(self) -> List[MetricRecord]:
        """Point-in-time copy of all records, ordered by identity."""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda record: record.identity)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


__all__ = ["MetricStateStore"]
