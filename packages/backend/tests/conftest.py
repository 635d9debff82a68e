"""Test fixtures — fake upstream connections, fake sockets, fake services.

Learn: The relay is tested without a database. Three fakes stand in for
the outside world:

1. FakeConnection — the slice of asyncpg.Connection the supervisor uses
   (fetchrow/fetchval, add_listener, termination listeners). Tests call
   notify() to emit a NOTIFY and drop() to simulate the server going away.
2. FakeConnector — replaces asyncpg.connect; hands out FakeConnections
   or raises scripted errors, and counts attempts.
3. FakeWebSocket — records every text frame sent to a client.

The HTTP client overrides the order service dependency with an
in-memory FakeOrderService, the same override pattern used for get_db.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketState

from orderrelay.api.orders import _order_svc
from orderrelay.db.models import Order
from orderrelay.main import app
from orderrelay.realtime.relay import RealtimeRelay
from orderrelay.realtime.supervisor import ConnectionSupervisor
from orderrelay.services.order_service import OrderNotFoundError

CHANNEL = "orders_changes"


# ═══════════════════════════════════════════════════════════
# Upstream fakes
# ═══════════════════════════════════════════════════════════


class FakeConnection:
    """In-memory stand-in for an asyncpg LISTEN connection."""

    def __init__(self, listening: bool = True, fail_keepalive: bool = False):
        self.listening = listening
        self.fail_keepalive = fail_keepalive
        self.listeners: dict[str, Callable] = {}
        self.termination_listeners: list[Callable] = []
        self.keepalive_calls = 0
        self.closed = False

    async def fetchrow(self, query: str, *args: Any, timeout: Optional[float] = None):
        return {
            "db": "orders",
            "user": "orders",
            "version": "PostgreSQL 16.2",
            "connected_at": datetime.now(timezone.utc),
        }

    async def fetchval(self, query: str, *args: Any, timeout: Optional[float] = None):
        if "pg_listening_channels" in query:
            return self.listening and args[0] in self.listeners
        self.keepalive_calls += 1
        if self.fail_keepalive or self.closed:
            raise ConnectionResetError("connection was closed in the middle of operation")
        return 1

    async def add_listener(self, channel: str, callback: Callable) -> None:
        self.listeners[channel] = callback

    def add_termination_listener(self, callback: Callable) -> None:
        self.termination_listeners.append(callback)

    def notify(self, payload: str, channel: str = CHANNEL) -> None:
        self.listeners[channel](self, 4242, channel, payload)

    def drop(self) -> None:
        """The server went away: fire termination listeners."""
        self.closed = True
        for callback in list(self.termination_listeners):
            callback(self)

    def is_closed(self) -> bool:
        return self.closed

    def terminate(self) -> None:
        self.closed = True

    async def close(self, timeout: Optional[float] = None) -> None:
        self.closed = True


class FakeConnector:
    """Replaces asyncpg.connect. Scripted outcomes first, then fresh connections.

    An asyncio.Event outcome holds that attempt open until the event is set,
    then hands out a fresh connection.
    """

    def __init__(self, *outcomes: Any):
        self.outcomes = list(outcomes)
        self.attempts = 0
        self.connections: list[FakeConnection] = []

    async def __call__(self, dsn: str) -> FakeConnection:
        self.attempts += 1
        outcome = self.outcomes.pop(0) if self.outcomes else FakeConnection()
        if isinstance(outcome, asyncio.Event):
            await outcome.wait()
            outcome = FakeConnection()
        if isinstance(outcome, BaseException):
            raise outcome
        self.connections.append(outcome)
        return outcome

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


# ═══════════════════════════════════════════════════════════
# Client fakes
# ═══════════════════════════════════════════════════════════


class FakeWebSocket:
    """Records frames sent to one client."""

    def __init__(self, ready: bool = True, fail_with: Optional[Exception] = None, delay: float = 0.0):
        state = WebSocketState.CONNECTED if ready else WebSocketState.CONNECTING
        self.client_state = state
        self.application_state = state
        self.fail_with = fail_with
        self.delay = delay
        self.sent: list[str] = []
        self.close_code: Optional[int] = None

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED
        self.client_state = WebSocketState.DISCONNECTED

    def messages(self) -> list[dict]:
        return [json.loads(frame) for frame in self.sent]


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll until predicate() is true, failing the test after `timeout`."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


# ═══════════════════════════════════════════════════════════
# Relay fixtures
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def connector():
    return FakeConnector()


@pytest_asyncio.fixture()
async def make_supervisor():
    """Factory for supervisors with fast timers; all are stopped after the test."""
    created: list[ConnectionSupervisor] = []

    def _make(connector: FakeConnector, on_notification=None, **kwargs) -> ConnectionSupervisor:
        options = dict(keepalive_interval=0.02, reconnect_delay=0.05, query_timeout=0.5)
        options.update(kwargs)
        supervisor = ConnectionSupervisor(
            dsn="postgresql://test/orders",
            channel=CHANNEL,
            on_notification=on_notification or (lambda payload: None),
            connect_fn=connector,
            **options,
        )
        created.append(supervisor)
        return supervisor

    yield _make
    for supervisor in created:
        await supervisor.stop()


def build_relay(connector: FakeConnector, **kwargs) -> RealtimeRelay:
    options = dict(
        dsn="postgresql://test/orders",
        channel=CHANNEL,
        keepalive_interval=0.02,
        reconnect_delay=0.05,
        query_timeout=0.5,
        liveness_interval=60.0,
        send_timeout=0.1,
        connect_fn=connector,
    )
    options.update(kwargs)
    return RealtimeRelay(**options)


@pytest_asyncio.fixture()
async def relay(connector):
    """A started relay wired to the fake connector."""
    relay = build_relay(connector)
    await relay.start()
    try:
        yield relay
    finally:
        await relay.stop()


# ═══════════════════════════════════════════════════════════
# HTTP fixtures
# ═══════════════════════════════════════════════════════════


def make_order(order_id: int, customer_name: str, product_name: str, status: str = "pending") -> Order:
    now = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)
    return Order(
        id=order_id,
        customer_name=customer_name,
        product_name=product_name,
        status=status,
        created_at=now,
        updated_at=now,
    )


class FakeOrderService:
    """In-memory OrderService with the same method surface."""

    def __init__(self):
        self.orders: dict[int, Order] = {}
        self._next_id = 1

    async def list_orders(self) -> list[Order]:
        return sorted(self.orders.values(), key=lambda o: o.id, reverse=True)

    async def create_order(self, customer_name: str, product_name: str, status: str = "pending") -> Order:
        order = make_order(self._next_id, customer_name, product_name, status)
        self.orders[order.id] = order
        self._next_id += 1
        return order

    async def update_status(self, order_id: int, status: str) -> Order:
        if order_id not in self.orders:
            raise OrderNotFoundError(f"Order {order_id} not found")
        self.orders[order_id].status = status
        return self.orders[order_id]

    async def delete_order(self, order_id: int) -> Order:
        if order_id not in self.orders:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return self.orders.pop(order_id)

    async def verify_triggers(self) -> dict:
        return {
            "triggers": [
                {
                    "trigger_name": "orders_change_notify",
                    "event_manipulation": event,
                    "action_timing": "AFTER",
                    "action_statement": "EXECUTE FUNCTION notify_orders_change()",
                }
                for event in ("DELETE", "INSERT", "UPDATE")
            ],
            "function_exists": True,
            "function_source": "\n        DECLARE\n            changed RECORD;...",
        }


@pytest.fixture
def order_svc():
    return FakeOrderService()


@pytest_asyncio.fixture()
async def client(order_svc):
    """HTTP client with the order service overridden for testing."""
    app.dependency_overrides[_order_svc] = lambda: order_svc

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
