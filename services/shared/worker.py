"""Entry point helper for standalone worker processes."""
from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog

from services.shared.app import BackgroundWorker
from services.shared.log import configure_logging

logger = structlog.get_logger(__name__)


async def run_workers(
    name: str,
    workers: Sequence[BackgroundWorker],
    *,
    on_start: Sequence[Callable[[], Awaitable[Any]]] = (),
    on_shutdown: Sequence[Callable[[], Awaitable[Any]]] = (),
) -> None:
    """Run workers until SIGINT/SIGTERM, then stop them in order."""
    configure_logging()
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    for callback in on_start:
        await callback()

    tasks = [asyncio.create_task(worker.run()) for worker in workers]
    logger.info("workers_started", process=name, count=len(tasks))
    await stop_requested.wait()

    logger.info("workers_stopping", process=name)
    for worker in workers:
        await worker.stop()
    await asyncio.gather(*tasks, return_exceptions=True)
    for callback in on_shutdown:
        await callback()
    logger.info("workers_stopped", process=name)
