"""
Shared helpers for Order Relay examples.

Checks the backend is up before an example starts talking to it.
"""

import sys

import httpx

BASE = "http://localhost:3000"
WS_URL = "ws://localhost:3000/ws"


def check_backend() -> None:
    """Verify the backend is reachable and the relay is listening."""
    try:
        resp = httpx.get(f"{BASE}/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Backend not reachable at {BASE}")
        print("Start it with:  orderrelay   (or: uvicorn orderrelay.main:app --port 3000)")
        sys.exit(1)

    if resp.status_code != 200:
        print(f"ERROR: Health check returned {resp.status_code}")
        sys.exit(1)

    health = resp.json()
    print("Backend health:")
    print(f"  Postgres: {'✓' if health['postgres'] == 'ok' else '✗'}")
    print(f"  Relay:    {'✓' if health['relay'] == 'ok' else health['relay']}")

    if health["postgres"] != "ok":
        print("\nERROR: Postgres is not connected. Check ORDERRELAY_DATABASE_URL.")
        sys.exit(1)
