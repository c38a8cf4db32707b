"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and reports
the real-time layer's state. Redis is only checked when the relay is on.
"""

from fastapi import APIRouter, Request

from orderpulse import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    container = request.app.state.container
    checks = {
        "server": "ok",
        "version": __version__,
        "connections": len(container.registry),
    }

    if container.settings.redis_enabled:
        relay = container.relay
        if relay is None:
            checks["redis"] = "error: not connected"
        else:
            try:
                await relay.redis.ping()
                checks["redis"] = "ok"
            except Exception as e:
                checks["redis"] = f"error: {e}"
    else:
        checks["redis"] = "disabled"

    status = "degraded" if str(checks["redis"]).startswith("error") else "healthy"
    return {"status": status, **checks}
