"""Connection supervisor — the single upstream LISTEN connection.

Learn: PG NOTIFY is only delivered to a session that is LISTENing right
now, so the relay keeps one dedicated asyncpg connection open and
watches it closely:

  disconnected → connecting → connected
        ↑             │            │
        └─────────────┴────────────┘   (connect failure, keep-alive
                                        failure, transport termination)

- connect() is a no-op unless we're disconnected → never two connections
- A keep-alive task runs SELECT 1 every N seconds while connected
- Every failure funnels into _connection_lost(), which is idempotent:
  one transition, one keep-alive stop, one pending reconnect
- The reconnect task waits a fixed delay, then calls connect() again

There's no backoff. The relay is meant to run forever and self-heal;
a fixed 5s retry is cheap for a single connection.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import asyncpg
import structlog

logger = structlog.get_logger()

IDENTITY_SQL = """
    SELECT
        current_database() AS db,
        session_user AS user,
        version() AS version,
        now() AS connected_at
"""

LISTENING_SQL = "SELECT $1 = ANY(ARRAY(SELECT pg_listening_channels()))"

KEEPALIVE_SQL = "SELECT 1"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SubscriptionError(Exception):
    """Raised when LISTEN was issued but the session isn't listening."""
    pass


@dataclass
class SupervisorStats:
    """Runtime statistics for monitoring."""
    connects: int = 0
    disconnects: int = 0
    reconnect_attempts: int = 0
    keepalive_failures: int = 0
    notifications: int = 0
    last_connected_at: Optional[datetime] = None
    last_error: Optional[str] = None


class ConnectionSupervisor:
    """Owns the LISTEN connection, its keep-alive and its reconnects."""

    def __init__(
        self,
        dsn: str,
        channel: str,
        on_notification: Callable[[str], None],
        keepalive_interval: float = 25.0,
        reconnect_delay: float = 5.0,
        query_timeout: float = 10.0,
        connect_fn: Callable[..., Awaitable[Any]] = asyncpg.connect,
    ):
        self.dsn = dsn
        self.channel = channel
        self.keepalive_interval = keepalive_interval
        self.reconnect_delay = reconnect_delay
        self.query_timeout = query_timeout
        self.state = ConnectionState.DISCONNECTED
        self.stats = SupervisorStats()
        self._on_notification = on_notification
        self._connect_fn = connect_fn
        self._conn: Optional[Any] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def keepalive_active(self) -> bool:
        return self._keepalive_task is not None and not self._keepalive_task.done()

    def _set_state(self, new: ConnectionState, **context: Any) -> None:
        if new == self.state:
            return
        logger.info(
            "relay.state_changed",
            old=self.state.value,
            new=new.value,
            **context,
        )
        self.state = new

    # ─── Lifecycle ───────────────────────────────────────

    async def start(self) -> None:
        """Open the first connection. Failures schedule a retry, never raise."""
        self._stopping = False
        await self.connect()

    async def stop(self) -> None:
        """Cancel keep-alive and reconnect, then close the connection."""
        self._stopping = True
        current = asyncio.current_task()
        tasks = [
            t for t in (self._reconnect_task, self._keepalive_task)
            if t is not None and t is not current
        ]
        self._reconnect_task = None
        self._keepalive_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                await conn.close(timeout=self.query_timeout)
            except Exception as e:
                logger.warning("relay.close_failed", error=str(e))
                conn.terminate()
        self._set_state(ConnectionState.DISCONNECTED, reason="shutdown")
        logger.info("relay.supervisor_stopped", **self.get_stats())

    # ─── Connect ─────────────────────────────────────────

    async def connect(self) -> None:
        """Connect, LISTEN, verify, start keep-alive. Idempotent."""
        if self._stopping or self.state != ConnectionState.DISCONNECTED:
            return

        self._set_state(ConnectionState.CONNECTING)
        conn = None
        try:
            conn = await asyncio.wait_for(
                self._connect_fn(self.dsn), timeout=self.query_timeout
            )
            identity = await conn.fetchrow(IDENTITY_SQL, timeout=self.query_timeout)
            logger.info(
                "relay.upstream_identity",
                database=identity["db"],
                user=identity["user"],
                version=identity["version"],
            )

            await conn.add_listener(self.channel, self._on_notify)
            listening = await conn.fetchval(
                LISTENING_SQL, self.channel, timeout=self.query_timeout
            )
            if not listening:
                raise SubscriptionError(f"not listening on {self.channel!r}")
            conn.add_termination_listener(self._on_terminated)
        except asyncio.CancelledError:
            self._discard(conn)
            self._set_state(ConnectionState.DISCONNECTED, reason="cancelled")
            raise
        except Exception as e:
            logger.error("relay.connect_failed", error=str(e) or type(e).__name__)
            self.stats.last_error = str(e) or type(e).__name__
            self._discard(conn)
            self._set_state(ConnectionState.DISCONNECTED, reason="connect_failed")
            self._schedule_reconnect()
            return

        if self._stopping:
            self._discard(conn)
            self._set_state(ConnectionState.DISCONNECTED, reason="shutdown")
            return

        self._conn = conn
        self.stats.connects += 1
        self.stats.last_connected_at = datetime.now(timezone.utc)
        self._set_state(ConnectionState.CONNECTED, channel=self.channel)
        self._cancel_reconnect()
        self._start_keepalive()

    def _discard(self, conn: Optional[Any]) -> None:
        if conn is not None and not conn.is_closed():
            conn.terminate()

    # ─── Failure handling ────────────────────────────────

    def _connection_lost(self, reason: str, error: Optional[str] = None) -> None:
        """Mark disconnected, stop keep-alive, schedule one reconnect."""
        if self._stopping:
            return
        if self.state == ConnectionState.DISCONNECTED and self.reconnect_pending:
            return

        if self.state == ConnectionState.CONNECTED:
            self.stats.disconnects += 1
        if error:
            self.stats.last_error = error
        logger.error("relay.connection_lost", reason=reason, error=error)

        self._set_state(ConnectionState.DISCONNECTED, reason=reason)
        self._stop_keepalive()
        conn, self._conn = self._conn, None
        self._discard(conn)
        self._schedule_reconnect()

    def _on_terminated(self, conn: Any) -> None:
        # Our own close/terminate fires this too; only the live one matters
        if conn is not self._conn:
            return
        self._connection_lost("terminated", error="connection closed by server")

    # ─── Keep-alive ──────────────────────────────────────

    def _start_keepalive(self) -> None:
        self._stop_keepalive()
        self._keepalive_task = asyncio.create_task(
            self._keepalive_loop(), name="relay-keepalive"
        )

    def _stop_keepalive(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _keepalive_loop(self) -> None:
        while self.state == ConnectionState.CONNECTED:
            await asyncio.sleep(self.keepalive_interval)
            conn = self._conn
            if self.state != ConnectionState.CONNECTED or conn is None:
                return
            try:
                await conn.fetchval(KEEPALIVE_SQL, timeout=self.query_timeout)
            except Exception as e:
                self.stats.keepalive_failures += 1
                self._connection_lost("keepalive", error=str(e) or type(e).__name__)
                return
            logger.debug("relay.keepalive_ok")

    # ─── Reconnect ───────────────────────────────────────

    def _schedule_reconnect(self) -> None:
        if self._stopping:
            return
        # A failed attempt runs inside the reconnect task and may reschedule
        if self.reconnect_pending and self._reconnect_task is not asyncio.current_task():
            return
        logger.info("relay.reconnect_scheduled", delay=self.reconnect_delay)
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after_delay(), name="relay-reconnect"
        )

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self.stats.reconnect_attempts += 1
        logger.info("relay.reconnecting", attempt=self.stats.reconnect_attempts)
        await self.connect()

    # ─── Notifications ───────────────────────────────────

    def _on_notify(self, conn: Any, pid: int, channel: str, payload: str) -> None:
        """asyncpg listener callback — synchronous, must not block."""
        self.stats.notifications += 1
        try:
            self._on_notification(payload)
        except Exception:
            logger.exception("relay.notification_dropped", channel=channel)

    # ─── Stats ───────────────────────────────────────────

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "channel": self.channel,
            "connects": self.stats.connects,
            "disconnects": self.stats.disconnects,
            "reconnect_attempts": self.stats.reconnect_attempts,
            "keepalive_failures": self.stats.keepalive_failures,
            "notifications": self.stats.notifications,
            "reconnect_pending": self.reconnect_pending,
            "last_connected_at": (
                self.stats.last_connected_at.isoformat()
                if self.stats.last_connected_at
                else None
            ),
            "last_error": self.stats.last_error,
        }
