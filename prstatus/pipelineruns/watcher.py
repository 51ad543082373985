"""Background loops for reactive mode.

- watch_loop: initial resync, then apply watch events as they arrive.
  A broken stream, or one that closes without delivering anything, is
  retried with exponential backoff and followed by a resync, so deletes
  missed while disconnected are still caught.
- resync_loop: periodic full resync as a backstop for dropped events.
"""
from __future__ import annotations

import asyncio

import structlog

from prstatus.exceptions import TransientSourceError
from prstatus.pipelineruns.router import LifecycleRouter
from prstatus.pipelineruns.source import EntitySource

logger = structlog.get_logger()


async def watch_loop(
    router: LifecycleRouter,
    source: EntitySource,
    backoff_initial: float = 1.0,
    backoff_max: float = 60.0
) -> None:
    logger.info("watch.start", backoff_initial=backoff_initial, backoff_max=backoff_max)
    delay = backoff_initial
    needs_resync = True

    while True:
        try:
            if needs_resync:
                await router.resync()
                needs_resync = False
            received = 0
            async for event in source.watch():
                await router.handle_event(event)
                received += 1
                delay = backoff_initial
            if received:
                # Server-side watch timeout; resume from the last resourceVersion.
                logger.debug("watch.closed", received=received)
                continue
            logger.warning("watch.empty", delay=delay)
        except asyncio.CancelledError:
            raise
        except TransientSourceError as exc:
            logger.warning("watch.backoff", error=str(exc), delay=delay)
        except Exception as exc:
            logger.exception("watch.failed", error=str(exc), delay=delay)

        needs_resync = True
        await asyncio.sleep(delay)
        delay = min(delay * 2, backoff_max)


async def resync_loop(router: LifecycleRouter, interval_seconds: float = 30) -> None:
    """Periodic resync; a failed listing keeps the current store and waits for the next tick."""
    if interval_seconds <= 0:
        return
    logger.info("resync.start", interval=interval_seconds)

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await router.resync()
        except TransientSourceError as exc:
            logger.warning("resync.failed", error=str(exc))
        except Exception as exc:
            logger.exception("resync.failed", error=str(exc))


__all__ = ["resync_loop", "watch_loop"]
