"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with ORDERNOTIFY_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: The real-time tunables live here too. The SSE mailbox is small
(browsers reconnect cheaply and the notification list is the source of
truth); the WebSocket mailbox is larger because socket clients tend to
be dashboards that receive bursts.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via ORDERNOTIFY_* env vars."""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # JSON lines instead of the dev console renderer

    # Real-time delivery
    sse_channel_capacity: int = 8
    ws_channel_capacity: int = 256
    sse_heartbeat_seconds: float = 25.0
    sse_retry_ms: int = 5000  # EventSource reconnect advisory

    # Role that receives order-created notifications
    admin_role: str = "admin"

    model_config = {"env_prefix": "ORDERNOTIFY_"}

    @model_validator(mode="after")
    def validate_realtime_settings(self):
        """Reject mailbox sizes and timers that would stall delivery."""
        if self.sse_channel_capacity < 1 or self.ws_channel_capacity < 1:
            raise ValueError("Channel capacities must be at least 1")
        if self.sse_heartbeat_seconds <= 0:
            raise ValueError("ORDERNOTIFY_SSE_HEARTBEAT_SECONDS must be positive")
        if self.sse_retry_ms < 0:
            raise ValueError("ORDERNOTIFY_SSE_RETRY_MS must not be negative")
        return self


# Process default; create_app() accepts an override
settings = Settings()
