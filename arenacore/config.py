"""Application configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Core settings."""

    # App
    app_env: str = "development"
    log_level: str = "INFO"
    json_logs: bool = False

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_max_connections: int = Field(
        default=100,
        description="Redis max connections",
    )
    redis_socket_timeout: float = Field(
        default=5.0,
        description="Redis socket timeout in seconds",
    )
    redis_socket_connect_timeout: float = Field(
        default=5.0,
        description="Redis socket connect timeout in seconds",
    )
    redis_health_check_interval: int = Field(
        default=30,
        description="Redis health check interval in seconds",
    )

    # Rating
    elo_k_factor: float = Field(
        default=32.0,
        description="K-factor applied to every rating update",
    )
    elo_scale_factor: float = Field(
        default=400.0,
        description="Rating difference that corresponds to 10:1 odds",
    )
    initial_rating: float = Field(
        default=1500.0,
        description="Rating assigned to participants with no history",
    )

    # Matchmaking
    matchmaking_base_radius: float = Field(
        default=100.0,
        description="Rating radius for a freshly queued entry",
    )
    matchmaking_growth_rate: float = Field(
        default=5.0,
        description="Radius growth per second of waiting",
    )
    matchmaking_max_radius: float = Field(
        default=800.0,
        description="Upper bound for the search radius",
    )
    matchmaking_tick_interval: float = Field(
        default=1.0,
        description="Seconds between matchmaking evaluation passes",
    )
    matchmaking_match_retention_seconds: float = Field(
        default=3600.0,
        description="How long committed queue matches stay in memory",
    )

    # Broadcast
    broadcast_replay_size: int = Field(
        default=256,
        description="Events retained per topic for replay",
    )
    broadcast_subscriber_buffer: int = Field(
        default=64,
        description="Undelivered events a subscriber may hold before disconnect",
    )
    broadcast_mirror_enabled: bool = Field(
        default=False,
        description="Mirror published events into a Redis Stream",
    )
    broadcast_stream_max_len: int = Field(
        default=10000,
        description="Approximate MAXLEN of the mirror stream",
    )

    # Locks
    lock_timeout_ms: int = Field(
        default=10000,
        description="Lock auto-expire time in milliseconds",
    )
    lock_acquire_timeout_ms: int = Field(
        default=5000,
        description="Max wait for a lock in milliseconds",
    )
    lock_retry_interval_ms: int = Field(
        default=20,
        description="Retry interval while waiting for a lock",
    )

    # Tournament
    tournament_retention_seconds: int = Field(
        default=86400 * 7,
        description="How long completed tournaments stay in memory",
    )

    # Game integration
    game_integration_url: Optional[str] = Field(
        default=None,
        description="Base URL of the game integration service (optional)",
    )
    game_integration_timeout: float = Field(
        default=5.0,
        description="Request timeout for result verification in seconds",
    )
    game_integration_api_key: Optional[str] = Field(
        default=None,
        description="Sent as X-API-Key to the game integration service",
    )

    @field_validator(
        "elo_k_factor",
        "elo_scale_factor",
        "matchmaking_base_radius",
        "matchmaking_tick_interval",
        "matchmaking_match_retention_seconds",
        "broadcast_replay_size",
        "broadcast_subscriber_buffer",
        "lock_timeout_ms",
        "lock_acquire_timeout_ms",
        "lock_retry_interval_ms",
    )
    @classmethod
    def validate_positive(cls, v):
        """Reject zero and negative tuning values."""
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("matchmaking_growth_rate")
    @classmethod
    def validate_growth_rate(cls, v: float) -> float:
        # Radius must never shrink with wait time
        if v < 0:
            raise ValueError("matchmaking_growth_rate must not be negative")
        return v

    @model_validator(mode="after")
    def validate_radius_bounds(self) -> "Settings":
        """Validate matchmaking radius bounds."""
        if self.matchmaking_max_radius < self.matchmaking_base_radius:
            raise ValueError(
                "matchmaking_max_radius must be >= matchmaking_base_radius"
            )
        if self.app_env == "production" and self.log_level == "DEBUG":
            import warnings
            warnings.warn(
                "DEBUG log level in production may expose participant data"
            )
        return self

    model_config = {
        "env_file": ".env",
        "env_prefix": "ARENA_",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
