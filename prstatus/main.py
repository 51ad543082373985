"""PipelineRun Status Exporter - Main FastAPI Application"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from prstatus import __version__
from prstatus.api import health, metrics, ops
from prstatus.config import Settings, load_settings
from prstatus.pipelineruns.kubeconfig import resolve_connection
from prstatus.pipelineruns.pull import PullCollector
from prstatus.pipelineruns.router import LifecycleRouter
from prstatus.pipelineruns.source import EntitySource, KubernetesEntitySource
from prstatus.pipelineruns.store import MetricStateStore
from prstatus.pipelineruns.watcher import resync_loop, watch_loop

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """stdlib logging for the app and API, structlog for router and loop events."""
    level_value = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level_value,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
    )


def build_source(settings: Settings) -> KubernetesEntitySource:
    return KubernetesEntitySource.from_connection(resolve_connection(settings), timeout=settings.source_timeout)


def create_app(
    settings: Optional[Settings] = None,
    source: Optional[EntitySource] = None,
    run_background: bool = True
) -> FastAPI:
    """Build the exporter application.

    Args:
        settings: Exporter settings; loaded from the environment when omitted
        source: PipelineRun source; the Kubernetes API when omitted
        run_background: Start the watch/resync loops in reactive mode
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    source = source or build_source(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info(f"Starting PipelineRun status exporter v{__version__} (mode={settings.mode})")
        tasks = []
        if settings.mode == "reactive" and run_background:
            tasks.append(asyncio.create_task(watch_loop(
                app.state.router,
                source,
                backoff_initial=settings.backoff_initial,
                backoff_max=settings.backoff_max,
            )))
            tasks.append(asyncio.create_task(resync_loop(app.state.router, settings.reconcile_interval)))

        yield

        logger.info("Shutting down PipelineRun status exporter")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()

    app = FastAPI(
        title="PipelineRun Status Exporter",
        description="State-set metrics for Tekton PipelineRun lifecycle status",
        version=__version__,
        lifespan=lifespan
    )

    # Metric state lives and dies with this application instance.
    app.state.settings = settings
    app.state.source = source
    if settings.mode == "pull":
        app.state.pull = PullCollector(
            source,
            platform_param=settings.platform_param,
            source_timeout=settings.source_timeout,
            cache_max_age=settings.cache_max_age,
        )
    else:
        app.state.store = MetricStateStore()
        app.state.router = LifecycleRouter(
            app.state.store,
            source,
            platform_param=settings.platform_param,
            source_timeout=settings.source_timeout,
        )

    app.include_router(metrics.router, tags=["Metrics"])
    app.include_router(health.router, tags=["Health"])
    app.include_router(health.router, prefix="/api/v1", tags=["Health"])
    app.include_router(ops.router, prefix="/api/v1", tags=["Operations"])

    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
