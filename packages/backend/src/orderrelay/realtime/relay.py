"""Realtime relay — wires supervisor, decoder, registry and broadcaster.

Learn: asyncpg delivers notifications through a synchronous callback.
The relay's callback only drops the payload into an inbox queue; one
consumer task decodes and broadcasts each payload in arrival order.
That keeps the upstream path non-blocking and preserves source order
for every client within a single listening session.

Three background activities run independently:
1. Supervisor keep-alive / reconnect (owned by ConnectionSupervisor)
2. Inbox consumer → decode → broadcast
3. Client liveness sweep (owned by ClientRegistry)

Shutdown stops the sweep and the consumer first, then the supervisor,
which cancels its own timers before closing the upstream connection.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import asyncpg
import structlog

from orderrelay.config import Settings
from orderrelay.realtime.broadcaster import BroadcastReport, Broadcaster
from orderrelay.realtime.events import DecodeFailure, decode_notification
from orderrelay.realtime.registry import ClientRegistry
from orderrelay.realtime.supervisor import ConnectionSupervisor

logger = structlog.get_logger()


class RealtimeRelay:
    """Relays order change notifications to WebSocket clients."""

    def __init__(
        self,
        dsn: str,
        channel: str,
        keepalive_interval: float = 25.0,
        reconnect_delay: float = 5.0,
        query_timeout: float = 10.0,
        liveness_interval: float = 30.0,
        send_timeout: float = 5.0,
        broadcast_decode_failures: bool = True,
        connect_fn: Callable[..., Awaitable[Any]] = asyncpg.connect,
    ):
        self.liveness_interval = liveness_interval
        self.broadcast_decode_failures = broadcast_decode_failures
        self.registry = ClientRegistry(send_timeout=send_timeout)
        self.broadcaster = Broadcaster(self.registry, send_timeout=send_timeout)
        self.supervisor = ConnectionSupervisor(
            dsn=dsn,
            channel=channel,
            on_notification=self.enqueue,
            keepalive_interval=keepalive_interval,
            reconnect_delay=reconnect_delay,
            query_timeout=query_timeout,
            connect_fn=connect_fn,
        )
        self._inbox: asyncio.Queue[str] = asyncio.Queue()
        self._consumer_task: Optional[asyncio.Task] = None
        self._liveness_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "RealtimeRelay":
        options = dict(
            dsn=settings.listen_dsn,
            channel=settings.listen_channel,
            keepalive_interval=settings.keepalive_interval,
            reconnect_delay=settings.reconnect_delay,
            query_timeout=settings.query_timeout,
            liveness_interval=settings.liveness_interval,
            send_timeout=settings.send_timeout,
            broadcast_decode_failures=settings.broadcast_decode_failures,
        )
        options.update(overrides)
        return cls(**options)

    # ─── Lifecycle ───────────────────────────────────────

    async def start(self) -> None:
        self._consumer_task = asyncio.create_task(self._consume(), name="relay-consumer")
        self._liveness_task = asyncio.create_task(
            self.registry.run_liveness_loop(self.liveness_interval),
            name="relay-liveness",
        )
        await self.supervisor.start()
        logger.info("relay.started", **self.supervisor.get_stats())

    async def stop(self) -> None:
        tasks = [t for t in (self._liveness_task, self._consumer_task) if t is not None]
        self._liveness_task = None
        self._consumer_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.supervisor.stop()
        logger.info("relay.stopped", clients=len(self.registry))

    # ─── Event path ──────────────────────────────────────

    def enqueue(self, payload: str) -> None:
        """Notification callback target. Never blocks."""
        self._inbox.put_nowait(payload)

    async def drain(self) -> None:
        """Wait until every queued notification has been broadcast."""
        await self._inbox.join()

    async def _consume(self) -> None:
        while True:
            payload = await self._inbox.get()
            try:
                await self.relay(payload)
            except Exception:
                logger.exception("relay.dispatch_failed")
            finally:
                self._inbox.task_done()

    async def relay(self, payload: str) -> Optional[BroadcastReport]:
        """Decode one payload and broadcast the result."""
        logger.info(
            "relay.notification_received",
            payload_length=len(payload or ""),
            payload_preview=(payload or "")[:100],
        )
        result = decode_notification(payload)
        if isinstance(result, DecodeFailure) and not self.broadcast_decode_failures:
            return None
        return await self.broadcaster.broadcast(result)

    def get_status(self) -> dict:
        return {
            "upstream": self.supervisor.get_stats(),
            "clients": len(self.registry),
            "queued": self._inbox.qsize(),
        }
