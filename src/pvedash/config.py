"""Configuration via environment variables.

Uses pydantic-settings to load config from env vars with PVEDASH_ prefix.
No YAML files, no file-based config — just env vars (12-factor app style).

Learn: There is no module-level settings singleton. The CLI builds a
Settings() per invocation and the Dashboard hands each value to the
component that needs it, so library pieces (cache, orchestrator, live
client) can be constructed in isolation in tests.
"""

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All pvedash configuration. Set via PVEDASH_* env vars."""

    # Dashboard backend
    api_url: str = "http://localhost:8080"
    aggregator_path: str = "/api/v1/proxmox/fetch-data"
    alerts_stream_path: str = "/api/v1/alerts/stream"
    alerts_path: str = "/api/v1/alerts"
    login_path: str = "/api/v1/auth/login"
    http_timeout_seconds: float = 10.0

    # Dashboard session token (bearer JWT issued by the login endpoint)
    dashboard_token: Optional[str] = None

    # Cluster credentials forwarded to the aggregator
    cluster_url: str = ""
    cluster_api_token: str = ""  # PVEAPIToken=user@realm!tokenid=secret
    cluster_username: str = ""
    cluster_secret: str = ""
    cluster_node: str = "pve"

    # Snapshot cache + refresh
    cache_ttl_seconds: float = 300.0  # 5 min
    refresh_timeout_seconds: float = 15.0
    poll_interval_seconds: float = 30.0

    # Live alert channel
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    reconnect_max_attempts: int = 5
    idle_timeout_seconds: float = 90.0  # server pings every 30s

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_prefix": "PVEDASH_"}

    @model_validator(mode="after")
    def validate_timings(self):
        """Reject timing combinations the refresh and reconnect logic can't honour."""
        if self.reconnect_base_delay > self.reconnect_max_delay:
            raise ValueError(
                "PVEDASH_RECONNECT_BASE_DELAY must not exceed "
                "PVEDASH_RECONNECT_MAX_DELAY"
            )
        if self.reconnect_max_attempts < 0:
            raise ValueError("PVEDASH_RECONNECT_MAX_ATTEMPTS must be >= 0")
        if self.cache_ttl_seconds <= 0 or self.refresh_timeout_seconds <= 0:
            raise ValueError(
                "PVEDASH_CACHE_TTL_SECONDS and PVEDASH_REFRESH_TIMEOUT_SECONDS "
                "must be positive"
            )
        return self

    @property
    def stream_url(self) -> str:
        return f"{self.api_url.rstrip('/')}{self.alerts_stream_path}"

