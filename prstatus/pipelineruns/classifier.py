"""Status classification for PipelineRuns.

Rules (first match wins, conditions scanned in the order the API server
returned them):
- a Succeeded condition reports its reason (status-derived when empty)
- a terminal-outcome condition type (Cancelled, Failed, ...) with status
  True reports its reason, or its type
- otherwise Pending when spec.status is PipelineRunPending
- otherwise Unknown

Conflicting conditions are resolved purely by source order. That ordering
is part of the API server contract and is kept as-is.
"""
from __future__ import annotations

from typing import NamedTuple, Optional

from prstatus.pipelineruns.models import Condition, EntitySnapshot, MetricRecord

SUCCEEDED_CONDITION = "Succeeded"
TERMINAL_CONDITION_TYPES = frozenset({
    "Completed",
    "Failed",
    "Cancelled",
    "PipelineRunTimeout",
    "CreateRunFailed",
})

STATUS_PENDING = "Pending"
STATUS_UNKNOWN = "Unknown"

DEFAULT_PLATFORM_PARAM = "build-platforms"
PLATFORM_DELIMITER = ","

_STATUS_FROM_SUCCEEDED = {
    "True": "Succeeded",
    "False": "Failed",
    "Unknown": "Running",
}


class Classification(NamedTuple):
    status: str
    build_platform: str


def _completion_label(condition: Condition) -> Optional[str]:
    if condition.type == SUCCEEDED_CONDITION:
        return condition.reason or _STATUS_FROM_SUCCEEDED.get(condition.status, "Running")
    if condition.type in TERMINAL_CONDITION_TYPES and condition.status == "True":
        return condition.reason or condition.type
    return None


def status_label(snapshot: EntitySnapshot) -> str:
    for condition in snapshot.conditions:
        label = _completion_label(condition)
        if label is not None:
            return label
    if snapshot.pending:
        return STATUS_PENDING
    return STATUS_UNKNOWN


def build_platform_label(snapshot: EntitySnapshot, param_name: str = DEFAULT_PLATFORM_PARAM) -> str:
    """Platform list joined with ',' in original order; '' when not specified."""
    value = snapshot.params.get(param_name)
    if isinstance(value, tuple):
        return PLATFORM_DELIMITER.join(value)
    if isinstance(value, str):
        return value
    return ""


def classify(snapshot: EntitySnapshot, platform_param: str = DEFAULT_PLATFORM_PARAM) -> Classification:
    return Classification(
        status=status_label(snapshot),
        build_platform=build_platform_label(snapshot, platform_param),
    )


def record_for(snapshot: EntitySnapshot, platform_param: str = DEFAULT_PLATFORM_PARAM) -> MetricRecord:
    status, build_platform = classify(snapshot, platform_param)
    return MetricRecord(identity=snapshot.identity, status=status, build_platform=build_platform)


__all__ = [
    "Classification",
    "DEFAULT_PLATFORM_PARAM",
    "STATUS_PENDING",
    "STATUS_UNKNOWN",
    "build_platform_label",
    "classify",
    "record_for",
    "status_label",
]
