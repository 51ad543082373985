"""PipelineRun snapshot and metric record types.

Raw Tekton objects (plain dicts as returned by the API server) are turned
into immutable snapshots here, so everything downstream works on a small,
validated view of the resource.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union

from prstatus.exceptions import MalformedSnapshotError

PENDING_SPEC_STATUS = "PipelineRunPending"

ParamValue = Union[str, Tuple[str, ...], Dict[str, Any]]


class EntityIdentity(NamedTuple):
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class LifecycleState(str, enum.Enum):
    """Router view of a PipelineRun."""
    ABSENT = "Absent"
    ACTIVE = "Active"
    TERMINATING = "Terminating"


class WatchEventType(str, enum.Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Condition:
    type: str
    status: str = "Unknown"
    reason: str = ""


@dataclass(frozen=True)
class EntitySnapshot:
    identity: EntityIdentity
    conditions: Tuple[Condition, ...] = ()
    pending: bool = False
    deletion_timestamp: Optional[str] = None
    params: Dict[str, ParamValue] = field(default_factory=dict)
    uid: Optional[str] = None

    @property
    def terminating(self) -> bool:
        return self.deletion_timestamp is not None


@dataclass(frozen=True)
class MetricRecord:
    identity: EntityIdentity
    status: str
    build_platform: str = ""


@dataclass(frozen=True)
class WatchEvent:
    type: WatchEventType
    object: Dict[str, Any]


def identity_from_object(obj: Any) -> EntityIdentity:
    """Extract (namespace, name) from a raw object.

    Raises:
        MalformedSnapshotError: If metadata, namespace or name is missing
    """
    if not isinstance(obj, dict):
        raise MalformedSnapshotError(f"PipelineRun object must be a mapping, got {type(obj).__name__}")
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        raise MalformedSnapshotError("PipelineRun metadata is required")
    namespace = metadata.get("namespace")
    name = metadata.get("name")
    if not isinstance(namespace, str) or not namespace:
        raise MalformedSnapshotError("PipelineRun metadata.namespace is required")
    if not isinstance(name, str) or not name:
        raise MalformedSnapshotError("PipelineRun metadata.name is required")
    return EntityIdentity(namespace, name)


def _parse_conditions(status: Any, identity: EntityIdentity) -> Tuple[Condition, ...]:
    if status is None:
        return ()
    if not isinstance(status, dict):
        raise MalformedSnapshotError("PipelineRun status must be a mapping", identity)
    raw_conditions = status.get("conditions")
    if raw_conditions is None:
        return ()
    if not isinstance(raw_conditions, list):
        raise MalformedSnapshotError("PipelineRun status.conditions must be a list", identity)

    conditions: List[Condition] = []
    for raw in raw_conditions:
        if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
            raise MalformedSnapshotError("PipelineRun condition without a type", identity)
        conditions.append(Condition(
            type=raw["type"],
            status=str(raw.get("status") or "Unknown"),
            reason=str(raw.get("reason") or ""),
        ))
    return tuple(conditions)


def _parse_params(spec: Dict[str, Any], identity: EntityIdentity) -> Dict[str, ParamValue]:
    raw_params = spec.get("params") or []
    if not isinstance(raw_params, list):
        raise MalformedSnapshotError("PipelineRun spec.params must be a list", identity)

    params: Dict[str, ParamValue] = {}
    for raw in raw_params:
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            raise MalformedSnapshotError("PipelineRun param without a name", identity)
        value = raw.get("value")
        if isinstance(value, list):
            params[raw["name"]] = tuple(str(item) for item in value)
        elif isinstance(value, dict):
            params[raw["name"]] = dict(value)
        elif value is not None:
            params[raw["name"]] = str(value)
    return params


def snapshot_from_object(obj: Any) -> EntitySnapshot:
    """Build an EntitySnapshot from a raw PipelineRun object.

    Raises:
        MalformedSnapshotError: If required fields are missing or have unexpected types
    """
    identity = identity_from_object(obj)
    metadata = obj["metadata"]
    spec = obj.get("spec") or {}
    if not isinstance(spec, dict):
        raise MalformedSnapshotError("PipelineRun spec must be a mapping", identity)

    return EntitySnapshot(
        identity=identity,
        conditions=_parse_conditions(obj.get("status"), identity),
        pending=spec.get("status") == PENDING_SPEC_STATUS,
        deletion_timestamp=metadata.get("deletionTimestamp") or None,
        params=_parse_params(spec, identity),
        uid=metadata.get("uid") or None,
    )


__all__ = [
    "Condition",
    "EntityIdentity",
    "EntitySnapshot",
    "LifecycleState",
    "MetricRecord",
    "WatchEvent",
    "WatchEventType",
    "identity_from_object",
    "snapshot_from_object",
]
