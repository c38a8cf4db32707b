"""API route aggregation.

All routers registered here get mounted in main.py under /api/v1.

Learn: Authentication is out of scope for this service — identity only
exists on the WebSocket, via the authenticate handshake — so every router
is mounted open.
"""

from fastapi import APIRouter

from orderpulse.api.health import router as health_router
from orderpulse.api.orders import router as orders_router
from orderpulse.api.realtime import router as realtime_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(orders_router, tags=["orders"])
api_router.include_router(realtime_router, tags=["realtime"])
