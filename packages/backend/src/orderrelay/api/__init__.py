"""API route aggregation.

All routers registered here get mounted in main.py. There is no auth
layer: the order API and the WebSocket feed are open, like the demo
frontend that drives them.
"""

from fastapi import APIRouter

from orderrelay.api.health import router as health_router
from orderrelay.api.orders import router as orders_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(orders_router, tags=["orders"])
