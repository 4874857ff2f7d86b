"""arq worker process hosting the delivery loops and the idempotency sweeper.

Run with ``arq app.worker.WorkerSettings``. Each process starts
``DELIVERY_WORKER_CONCURRENCY`` delivery loops sharing one wake signal;
``wake_delivery_workers_task`` jobs enqueued by the API set that signal.
"""

import asyncio
import logging
from typing import Any

from app.core.config import settings
from app.core.wake import WakeSignal
from app.services.delivery_worker import DeliveryWorker
from app.services.email_service import SmtpEmailGateway
from app.services.expiration_sweeper import ExpirationSweeper
from app.tasks import redis_settings

logger = logging.getLogger(__name__)


async def wake_delivery_workers_task(ctx: dict[str, Any]) -> bool:
    """Background task: wake idle delivery loops after an issue was published."""
    wake_signal: WakeSignal | None = ctx.get("wake_signal")
    if wake_signal is None:
        logger.warning("Wake job received before delivery loops started")
        return False
    wake_signal.set()
    return True


async def startup(ctx: dict[str, Any]) -> None:
    wake_signal = WakeSignal()
    gateway = SmtpEmailGateway()
    loops: list[asyncio.Task[None]] = []
    for n in range(settings.DELIVERY_WORKER_CONCURRENCY):
        worker = DeliveryWorker(gateway, wake_signal=wake_signal, name=f"delivery-worker-{n}")
        loops.append(asyncio.create_task(worker.run()))
    loops.append(asyncio.create_task(ExpirationSweeper().run()))
    ctx["wake_signal"] = wake_signal
    ctx["background_loops"] = loops
    logger.info("Started %d delivery workers", settings.DELIVERY_WORKER_CONCURRENCY)


async def shutdown(ctx: dict[str, Any]) -> None:
    loops: list[asyncio.Task[None]] = ctx.get("background_loops", [])
    for task in loops:
        task.cancel()
    await asyncio.gather(*loops, return_exceptions=True)


class WorkerSettings:
    functions = [wake_delivery_workers_task]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings
