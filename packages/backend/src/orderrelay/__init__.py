"""Order Relay — order management API with real-time change relay.

Orders live in PostgreSQL. A trigger on the orders table publishes every
committed insert, update and delete with pg_notify, and the relay pushes
those change events to every connected WebSocket client.
"""

__version__ = "0.1.0"
