#!/usr/bin/env python3
"""
Watch order changes live over the relay's WebSocket.

Prints every event the server pushes and answers liveness probes with
{"type": "pong"} so the server keeps this session registered.

Run with: python examples/watch_orders.py

Requires: pip install websockets httpx
"""

import asyncio
import json

import websockets

from _common import WS_URL, check_backend


async def watch():
    async with websockets.connect(WS_URL) as ws:
        async for frame in ws:
            msg = json.loads(frame)

            if msg.get("type") == "ping":
                await ws.send(json.dumps({"type": "pong"}))
            elif msg.get("info") == "connected":
                print(f"Connected (server time {msg['server_time']})")
            elif "error" in msg:
                print(f"!! {msg['error']}: {msg['raw_payload']!r}")
            else:
                row = msg["row"]
                print(f"{msg['operation']:>6} {msg['table']} #{row.get('id')}: {row.get('status', '')}")


def main():
    check_backend()
    try:
        asyncio.run(watch())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
