"""Health check API endpoints"""
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from prstatus import __version__
from prstatus.schemas import HealthResponse

router = APIRouter()

# Track startup time for uptime calculation
_startup_time = time.time()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint.

    Returns exporter status, mode and version information.
    """
    uptime = int(time.time() - _startup_time)

    return HealthResponse(
        status="ok",
        version=__version__,
        mode=request.app.state.settings.mode,
        uptime_seconds=uptime,
        now=datetime.now(timezone.utc)
    )
