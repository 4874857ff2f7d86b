"""Wake signal shared by the publisher and the delivery workers.

The hosting process creates one signal and hands it to both sides. Publishing
calls ``notify``; idle workers block in ``wait`` until notified or until the
poll interval elapses. The signal only shortens latency: workers also poll.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class WakeSignal:
    """In-process wake-up for delivery workers running on the same event loop."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def set(self) -> None:
        self._event.set()

    async def notify(self) -> None:
        self.set()

    async def wait(self, timeout: float | None = None) -> bool:
        """Block until notified or ``timeout`` seconds pass; True when notified."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except TimeoutError:
            return False
        self._event.clear()
        return True


class ArqWakeSignal(WakeSignal):
    """Wakes local workers and enqueues a wake job for workers in other processes."""

    async def notify(self) -> None:
        self.set()
        from app.tasks import enqueue_wake_delivery_workers

        try:
            await enqueue_wake_delivery_workers()
        except Exception:
            logger.warning("Failed to enqueue delivery wake-up job", exc_info=True)


def build_wake_signal(backend: str) -> WakeSignal:
    if backend == "arq":
        return ArqWakeSignal()
    if backend == "local":
        return WakeSignal()
    raise ValueError(f"Unknown wake signal backend: {backend}")
