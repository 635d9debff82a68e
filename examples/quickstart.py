#!/usr/bin/env python3
"""
Order Relay Quickstart — one order through its whole lifecycle.

Creates an order → updates its status twice → deletes it. Each step is
a committed mutation, so a client running examples/watch_orders.py
sees four change events arrive.

Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: http://localhost:3000
"""

import sys
import uuid

import httpx

from _common import BASE, check_backend


def main():
    check_backend()
    run_id = uuid.uuid4().hex[:6]
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Triggers installed? ───────────────────────────────────────
    resp = client.get("/verify-triggers")
    if resp.status_code != 200 or not resp.json()["function_exists"]:
        print("notify_orders_change() is missing. Run: cd packages/backend && alembic upgrade head")
        sys.exit(1)

    # ── Create ────────────────────────────────────────────────────
    print("\n1. Creating order...")
    resp = client.post(
        "/orders",
        json={"customer_name": f"Ann {run_id}", "product_name": "Desk lamp"},
    )
    assert resp.status_code == 201, f"Failed: {resp.text}"
    order = resp.json()
    print(f"   Order #{order['id']}: {order['customer_name']} → {order['product_name']} ({order['status']})")

    # ── Status transitions ────────────────────────────────────────
    for step, status in enumerate(("paid", "shipped"), start=2):
        print(f"\n{step}. Marking order {status}...")
        resp = client.put(f"/orders/{order['id']}", json={"status": status})
        assert resp.status_code == 200, f"Failed: {resp.text}"
        print(f"   Status: {resp.json()['status']}")

    # ── Delete ────────────────────────────────────────────────────
    print("\n4. Deleting order...")
    resp = client.delete(f"/orders/{order['id']}")
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   Deleted #{resp.json()['id']}")

    print("\nDone.")


if __name__ == "__main__":
    main()
