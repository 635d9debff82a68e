"""WebSocket endpoint — real-time order change delivery.

Learn: Each browser tab opens one long-lived connection. The handler:
1. Accepts and registers the socket (registry sends {"info": "connected"})
2. Reads client frames — the only expected one is {"type": "pong"},
   the answer to the registry's liveness probe
3. Unregisters on disconnect or error

Outbound events are pushed by the relay's broadcaster, not by this
handler, so the receive loop is all that runs per connection.
"""

import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from orderrelay.config import settings
from orderrelay.realtime.relay import RealtimeRelay

logger = structlog.get_logger()
router = APIRouter()


@router.websocket(settings.ws_path)
async def orders_websocket(websocket: WebSocket):
    """WebSocket endpoint for real-time order events."""
    relay: RealtimeRelay = websocket.app.state.relay

    await websocket.accept()
    session = await relay.registry.register(websocket)
    reason = "closed"

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "pong":
                session.mark_alive()
    except WebSocketDisconnect:
        pass
    except Exception as e:
        reason = "error"
        logger.warning("relay.client_error", session=session.id, error=str(e))
    finally:
        relay.registry.unregister(session, reason=reason)
