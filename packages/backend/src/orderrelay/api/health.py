"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running, Postgres
is reachable, and reports the relay's upstream state and client count.
A relay that is reconnecting makes the service "degraded", not down:
the CRUD API still works, clients just miss events until it's back.
"""

from fastapi import APIRouter, Request

from orderrelay import __version__
from orderrelay.db.engine import ping_database

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check Postgres
    try:
        await ping_database()
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {str(e) or type(e).__name__}"

    # Check relay
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        checks["relay"] = "not started"
    else:
        status = relay.get_status()
        state = status["upstream"]["state"]
        checks["relay"] = "ok" if state == "connected" else state
        checks["realtime"] = status

    status = "healthy" if all(
        checks[k] == "ok" for k in ("server", "postgres", "relay")
    ) else "degraded"

    return {"status": status, **checks}
