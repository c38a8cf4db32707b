"""Real-time admin routes — connection stats and emergency broadcasts.

Learn: The WebSocket itself lives in orderpulse.realtime.websocket; these
are plain HTTP views onto the same registry and broadcaster.
"""

from fastapi import APIRouter, Request

from orderpulse.schemas.order import EmergencyBroadcast

router = APIRouter()


@router.get("/realtime/stats")
async def realtime_stats(request: Request):
    """Connected sessions, authenticated users and server uptime."""
    broadcaster = request.app.state.container.broadcaster
    return broadcaster.stats().model_dump(mode="json", by_alias=True)


@router.post("/realtime/emergency", status_code=202)
async def emergency(body: EmergencyBroadcast, request: Request):
    """Push a system alert to every open connection, authenticated or not."""
    broadcaster = request.app.state.container.broadcaster
    delivered = await broadcaster.emergency_broadcast(body.message, body.kind)
    return {"delivered": delivered}
