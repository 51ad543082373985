"""Operational endpoints: what the exporter currently reports per PipelineRun"""
from fastapi import APIRouter, HTTPException, Request

from prstatus.exceptions import ExpositionFailure
from prstatus.pipelineruns.models import EntityIdentity
from prstatus.schemas import PipelineRunStatus, PipelineRunStatusList

router = APIRouter()


@router.get("/ops/pipelineruns", response_model=PipelineRunStatusList)
async def list_pipelinerun_statuses(request: Request):
    """List the status records behind the state-set metric.

    In reactive mode this is the store content together with the router's
    lifecycle state; in pull mode it is a fresh listing.
    """
    state = request.app.state
    mode = state.settings.mode

    if mode == "pull":
        try:
            records = await state.pull.collect()
        except ExpositionFailure as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        lifecycle = {}
    else:
        records = state.store.snapshot()
        lifecycle = state.router.states()

    items = [
        PipelineRunStatus(
            namespace=record.identity.namespace,
            name=record.identity.name,
            status=record.status,
            build_platform=record.build_platform,
            state=lifecycle[record.identity].value if record.identity in lifecycle else None,
        )
        for record in records
    ]
    return PipelineRunStatusList(mode=mode, count=len(items), items=items)


@router.get("/ops/pipelineruns/{namespace}/{name}", response_model=PipelineRunStatus)
async def get_pipelinerun_status(namespace: str, name: str, request: Request):
    """Status record of one PipelineRun, 404 if the exporter reports none."""
    state = request.app.state
    identity = EntityIdentity(namespace, name)

    if state.settings.mode == "pull":
        try:
            records = await state.pull.collect()
        except ExpositionFailure as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        record = next((record for record in records if record.identity == identity), None)
        lifecycle = None
    else:
        record = state.store.get(identity)
        lifecycle = state.router.state_of(identity).value

    if record is None:
        raise HTTPException(status_code=404, detail=f"No status reported for PipelineRun {identity}")
    return PipelineRunStatus(
        namespace=namespace,
        name=name,
        status=record.status,
        build_platform=record.build_platform,
        state=lifecycle,
    )
