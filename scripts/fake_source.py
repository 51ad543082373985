"""In-memory PipelineRun source and object builders shared by the tests."""
import asyncio
from typing import Any, Dict, List, Optional

from prstatus.exceptions import NotFoundError, TransientSourceError
from prstatus.pipelineruns.models import EntityIdentity, WatchEvent


def pipelinerun(
    name: str,
    namespace: str = "builds",
    conditions: Optional[List[Dict[str, Any]]] = None,
    pending: bool = False,
    deleting: bool = False,
    platforms: Optional[List[str]] = None,
    uid: Optional[str] = None
) -> Dict[str, Any]:
    """Raw Tekton v1 PipelineRun object as the API server returns it."""
    metadata: Dict[str, Any] = {"name": name, "namespace": namespace}
    if uid:
        metadata["uid"] = uid
    if deleting:
        metadata["deletionTimestamp"] = "2026-10-19T10:00:00Z"
    spec: Dict[str, Any] = {"pipelineRef": {"name": "build"}}
    if pending:
        spec["status"] = "PipelineRunPending"
    if platforms is not None:
        spec["params"] = [{"name": "build-platforms", "value": platforms}]
    obj: Dict[str, Any] = {"apiVersion": "tekton.dev/v1", "kind": "PipelineRun", "metadata": metadata, "spec": spec}
    if conditions is not None:
        obj["status"] = {"conditions": conditions}
    return obj


def succeeded(status: str, reason: str) -> Dict[str, Any]:
    return {"type": "Succeeded", "status": status, "reason": reason}


class FakeSource:
    """Dict-backed source; failures are injected by setting fail_with."""

    def __init__(self, objects: Optional[List[Dict[str, Any]]] = None):
        self.objects: Dict[EntityIdentity, Dict[str, Any]] = {}
        for obj in objects or []:
            self.put(obj)
        self.fail_with: Optional[Exception] = None
        self.delay: float = 0.0
        self.list_calls = 0
        self.events: List[WatchEvent] = []

    def put(self, obj: Dict[str, Any]) -> None:
        metadata = obj["metadata"]
        self.objects[EntityIdentity(metadata["namespace"], metadata["name"])] = obj

    def delete(self, identity: EntityIdentity) -> None:
        self.objects.pop(identity, None)

    async def _maybe_fail(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def get(self, identity: EntityIdentity) -> Dict[str, Any]:
        await self._maybe_fail()
        if identity not in self.objects:
            raise NotFoundError(identity)
        return self.objects[identity]

    async def list(self) -> List[Dict[str, Any]]:
        self.list_calls += 1
        await self._maybe_fail()
        return list(self.objects.values())

    async def watch(self):
        for event in self.events:
            yield event
        self.events = []
        # Real watches stay open; block until cancelled.
        await asyncio.Event().wait()


def broken(message: str = "connection refused") -> TransientSourceError:
    return TransientSourceError(message, operation="list")
