"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with ORDERPULSE_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: The same Settings object configures both halves of the package.
Server keys drive the FastAPI app and the optional Redis relay; client keys
drive the reconnecting subscriber and its local caches.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via ORDERPULSE_* env vars."""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Redis relay (cross-process fan-out). Off by default: one process
    # with an in-memory registry is the normal deployment.
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_channel: str = "orderpulse:events"

    # Emit a metrics tick after every order mutation
    metrics_enabled: bool = True

    # Client: endpoints
    api_url: str = "http://localhost:8000"
    ws_url: str = "ws://localhost:8000/ws"

    # Client: reconnection + heartbeat
    reconnect_base_delay: float = 2.0  # seconds, doubled per attempt
    max_reconnect_attempts: int = 5
    heartbeat_interval: float = 30.0  # seconds between pings

    # Client: local caches
    cache_max_size: int = 100
    cache_ttl_seconds: float = 300.0
    notification_buffer: int = 100
    order_update_buffer: int = 50

    model_config = {"env_prefix": "ORDERPULSE_"}

    @model_validator(mode="after")
    def validate_client_limits(self):
        """Reject delays and buffer sizes that would break the client."""
        positive = {
            "reconnect_base_delay": self.reconnect_base_delay,
            "heartbeat_interval": self.heartbeat_interval,
            "cache_max_size": self.cache_max_size,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "notification_buffer": self.notification_buffer,
            "order_update_buffer": self.order_update_buffer,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"ORDERPULSE_{name.upper()} must be positive")
        if self.max_reconnect_attempts < 0:
            raise ValueError("ORDERPULSE_MAX_RECONNECT_ATTEMPTS must not be negative")
        return self


# Singleton: import this everywhere
settings = Settings()
