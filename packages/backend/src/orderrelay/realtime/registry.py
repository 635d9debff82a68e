"""Client registry — the set of live WebSocket sessions.

Learn: The registry is owned by the event loop. Membership changes
(register, unregister, sweep pruning) are plain synchronous set
operations, so they can't interleave with each other. Anything that
iterates — broadcast, the liveness sweep — works on snapshot() copies
and awaits network sends only after the copy is taken. A session that
joins mid-broadcast just misses that one event.

Liveness works like the classic ws ping/pong heartbeat, but at the
application level because ASGI doesn't expose protocol pings:
1. Each sweep marks live sessions as not-alive and sends {"type": "ping"}
2. The client answers {"type": "pong"} → mark_alive()
3. A session still not-alive at the next sweep is closed and removed
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from starlette.websockets import WebSocket, WebSocketState

from orderrelay.realtime.events import iso_timestamp, utcnow

logger = structlog.get_logger()


@dataclass(eq=False)
class ClientSession:
    """One connected duplex client. Hashes by identity."""

    websocket: WebSocket
    alive: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    connected_at: datetime = field(default_factory=utcnow)

    def is_ready(self) -> bool:
        """True while both sides of the socket are open."""
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_alive(self) -> None:
        self.alive = True

    async def send(self, message: str, timeout: float) -> None:
        """Send one text frame, giving up after `timeout` seconds."""
        await asyncio.wait_for(self.websocket.send_text(message), timeout=timeout)

    async def terminate(self) -> None:
        """Close the socket. Best effort — the peer may already be gone."""
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=1001, reason="Liveness check failed")
        except Exception as e:
            logger.debug("relay.client_close_failed", session=self.id, error=str(e))


def connected_ack() -> dict[str, Any]:
    """First message every client receives."""
    now = utcnow()
    return {
        "info": "connected",
        "when": iso_timestamp(now),
        "server_time": now.astimezone().strftime("%c"),
    }


def liveness_probe() -> dict[str, Any]:
    return {"type": "ping", "when": iso_timestamp(utcnow())}


class ClientRegistry:
    """In-memory set of connected sessions with a liveness sweep."""

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self._sessions: set[ClientSession] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session: object) -> bool:
        return session in self._sessions

    def snapshot(self) -> list[ClientSession]:
        """Copy of the current membership, safe to iterate across awaits."""
        return list(self._sessions)

    # ─── Membership ──────────────────────────────────────

    async def register(self, websocket: WebSocket) -> ClientSession:
        """Add an accepted WebSocket and send the connected acknowledgment."""
        session = ClientSession(websocket=websocket)
        self._sessions.add(session)
        logger.info("relay.client_connected", session=session.id, clients=len(self))

        try:
            await session.send(json.dumps(connected_ack()), self.send_timeout)
        except Exception as e:
            # Leave it registered; the sweep or the close handler reaps it
            logger.warning("relay.client_ack_failed", session=session.id, error=str(e))
        return session

    def unregister(self, session: ClientSession, reason: str = "closed") -> bool:
        """Remove a session immediately. Returns False if it was already gone."""
        if session not in self._sessions:
            return False
        self._sessions.discard(session)
        logger.info(
            "relay.client_disconnected",
            session=session.id,
            reason=reason,
            clients=len(self),
        )
        return True

    # ─── Liveness ────────────────────────────────────────

    async def sweep(self) -> int:
        """Run one liveness pass. Returns how many sessions were pruned."""
        dead: list[ClientSession] = []
        probed: list[ClientSession] = []

        for session in self.snapshot():
            if not session.alive:
                self.unregister(session, reason="liveness")
                dead.append(session)
            else:
                session.alive = False
                probed.append(session)

        probe = json.dumps(liveness_probe())
        await asyncio.gather(
            *(session.terminate() for session in dead),
            *(self._probe(session, probe) for session in probed),
        )

        if dead:
            logger.info("relay.clients_pruned", pruned=len(dead), clients=len(self))
        return len(dead)

    async def _probe(self, session: ClientSession, probe: str) -> None:
        if not session.is_ready():
            return
        try:
            await session.send(probe, self.send_timeout)
        except Exception as e:
            # An unanswered probe is enough; the next sweep prunes it
            logger.debug("relay.probe_failed", session=session.id, error=str(e))

    async def run_liveness_loop(self, interval: float) -> None:
        """Sweep every `interval` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("relay.sweep_failed")
