"""Prometheus scrape endpoint"""
import logging

from fastapi import APIRouter, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST

from prstatus.exceptions import ExpositionFailure
from prstatus.observability.exposition import generate_scrape
from prstatus.observability.metrics import scrape_failures_total

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/metrics")
async def metrics(request: Request):
    """Prometheus metrics endpoint.

    Exposes the PipelineRun state set plus the exporter's own metrics.
    A scrape that cannot be built is answered with 503, never with an
    empty or partial payload.
    """
    state = request.app.state
    try:
        if state.settings.mode == "pull":
            records = await state.pull.collect()
        else:
            records = state.store.snapshot()
        payload = generate_scrape(records, state.settings.status_taxonomy)
    except ExpositionFailure as exc:
        scrape_failures_total.inc()
        logger.error(f"Scrape failed: {exc}")
        return PlainTextResponse(f"scrape failed: {exc}\n", status_code=503)

    return Response(payload, media_type=CONTENT_TYPE_LATEST)
