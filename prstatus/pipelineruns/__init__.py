"""PipelineRun classification, metric state and lifecycle routing."""
from prstatus.pipelineruns.classifier import classify
from prstatus.pipelineruns.router import LifecycleRouter
from prstatus.pipelineruns.store import MetricStateStore

__all__ = ["LifecycleRouter", "MetricStateStore", "classify"]
