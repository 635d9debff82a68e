"""Real-time infrastructure — PG LISTEN/NOTIFY → WebSocket.

Learn: Events flow through one path:
1. orders trigger → pg_notify('orders_changes', {...}) on commit
2. ConnectionSupervisor's LISTEN connection → RealtimeRelay inbox
3. decode_notification → Broadcaster → every ClientSession in the registry

PG NOTIFY is fire-and-forget. If the relay is disconnected, events are
lost; the frontend can always GET /orders to catch up.
"""
