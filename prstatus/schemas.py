"""Pydantic schemas (DTOs) for the exporter HTTP API"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    mode: str
    uptime_seconds: int
    now: datetime


class PipelineRunStatus(BaseModel):
    """Current status record of one PipelineRun."""
    namespace: str
    name: str
    status: str
    build_platform: str
    state: Optional[str] = None


class PipelineRunStatusList(BaseModel):
    """All PipelineRuns currently reported on /metrics."""
    mode: str
    count: int
    items: List[PipelineRunStatus]
