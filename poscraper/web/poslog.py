from __future__ import annotations

import asyncio
import contextlib
import logging


class LogBroker:
    """
    Fan-out log broker.

    Each subscriber gets its own asyncio.Queue.
    publish() is non-blocking and may be called from any thread; if a
    subscriber is too slow, we drop messages for that subscriber.
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._subscribers: set[asyncio.Queue[str]] = set()
        self._max_queue_size = max_queue_size
        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    async def connect(self) -> asyncio.Queue[str]:
        q: asyncio.Queue[str] = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._loop = asyncio.get_running_loop()
            self._subscribers.add(q)
        return q

    async def disconnect(self, q: asyncio.Queue[str]) -> None:
        async with self._lock:
            self._subscribers.discard(q)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, message: str) -> None:
        # Runs are executed in worker threads; queues belong to the event loop.
        loop = self._loop
        if not self._subscribers or loop is None or loop.is_closed():
            return
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(self._fanout, message)

    def _fanout(self, message: str) -> None:
        for q in tuple(self._subscribers):
            try:
                q.put_nowait(message)
            except asyncio.QueueFull:
                # Drop oldest-ish: try one get to make room; if still full, drop message.
                with contextlib.suppress(asyncio.QueueEmpty):
                    q.get_nowait()
                with contextlib.suppress(asyncio.QueueFull):
                    q.put_nowait(message)


class BrokerHandler(logging.Handler):
    """Logging handler that forwards formatted records to a :class:`LogBroker`."""

    def __init__(self, target: LogBroker, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.broker = target
        self.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"),
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.broker.publish(self.format(record))
        except Exception:  # noqa: BLE001 - logging handlers must never raise
            self.handleError(record)


def attach_broker_handler(target: LogBroker, logger_name: str = "poscraper") -> None:
    """Attach one :class:`BrokerHandler` for ``target`` to ``logger_name`` (idempotent)."""
    log = logging.getLogger(logger_name)
    for handler in log.handlers:
        if isinstance(handler, BrokerHandler) and handler.broker is target:
            return
    log.addHandler(BrokerHandler(target))


# Singleton broker
broker = LogBroker()
