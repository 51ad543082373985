"""Domain exceptions for the PipelineRun status exporter"""
from typing import Optional


class ExporterError(Exception):
    """Base exception for exporter errors."""
    pass


class NotFoundError(ExporterError):
    """Raised when a PipelineRun is no longer retrievable from the cluster.

    Not a failure: the router treats it as the hard-delete signal.
    """

    def __init__(self, identity):
        super().__init__(f"PipelineRun not found: {identity}")
        self.identity = identity


class SourceConfigError(ExporterError):
    """Raised at startup when no way to reach the Kubernetes API is configured."""
    pass


class TransientSourceError(ExporterError):
    """Raised when a get, list or watch call against the cluster fails or times out."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class MalformedSnapshotError(ExporterError):
    """Raised when a single PipelineRun object is missing or has unexpected fields."""

    def __init__(self, message: str, identity=None):
        super().__init__(message)
        self.identity = identity


class ExpositionFailure(ExporterError):
    """Raised when a scrape cannot be rendered; surfaced to the scraper as a failed scrape."""
    pass
