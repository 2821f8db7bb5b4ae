"""Application configuration from environment variables."""
import os
import math
from typing import Annotated, Optional, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_TARGETS = (
    "google.com",
    "8.8.8.8",
    "1.1.1.1",
    "frontier.com",
    "192.168.2.1",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Loaded once at process start and read-only afterwards.
    """

    # Probe targets, in the order their timers are staggered
    targets: Annotated[Tuple[str, ...], NoDecode] = DEFAULT_TARGETS

    # Path for SQLite database storage (used if DATABASE_URL not set)
    data_path: str = "data"

    # Database URL (optional - overrides the default SQLite file)
    # Format: sqlite+aiosqlite:////abs/path/monitor.db
    database_url: Optional[str] = None

    # Web server
    web_host: str = "0.0.0.0"
    web_port: int = 3000

    # Optional directory holding the static dashboard
    static_dir: Optional[str] = None

    # Ping cadence
    ping_interval_ms: int = 1000
    ping_stagger_ms: int = 200
    ping_wait_seconds: int = 2
    ping_timeout_seconds: float = 5.0
    ping_max_output_bytes: int = 200 * 1024

    # Traceroute cadence
    trace_interval_seconds: int = 300
    trace_stagger_ms: int = 500
    trace_timeout_seconds: float = 120.0
    trace_max_hops: int = 30
    trace_max_output_bytes: int = 1024 * 1024

    # Upper bound on rows returned by raw queries and failure rows
    max_query_rows: int = 200_000
    # Upper bound on (target, bucket) pairs of one timeline request
    max_timeline_buckets: int = 100_000

    # Failure correlation
    correlation_primary: str = "1.1.1.1"
    correlation_tolerance_ms: int = 1500
    max_correlation_tolerance_ms: int = 60_000

    # Batch reports and retention
    reports_dir: str = "reports"
    ping_retention_days: int = 7
    trace_retention_days: int = 14

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("targets", mode="before")
    @classmethod
    def parse_targets(cls, v):
        """Accept TARGETS as "a,b,c" as well as a list."""
        if isinstance(v, str):
            v = [p.strip() for p in v.split(",") if p.strip()]
        targets = tuple(v)
        if not targets:
            raise ValueError("at least one target is required")
        if any(not t or t.startswith("-") for t in targets):
            raise ValueError("targets must be host names or addresses")
        if len(set(targets)) != len(targets):
            raise ValueError("targets must be unique")
        return targets

    @property
    def ping_max_instances(self) -> int:
        """How many runs of one target's ping may overlap."""
        interval = self.ping_interval_ms / 1000
        return math.ceil(self.ping_timeout_seconds / interval) + 1

    def other_targets(self, primary: str) -> Tuple[str, ...]:
        """All configured targets except `primary`, in configured order."""
        return tuple(t for t in self.targets if t != primary)


settings = Settings()


def get_settings() -> Settings:
    """Dependency returning the process-wide settings."""
    return settings


def get_database_url(cfg: Settings = settings) -> str:
    """Get the database URL.

    Priority:
    1. DATABASE_URL environment variable
    2. Default SQLite file in DATA_PATH
    """
    if cfg.database_url:
        url = cfg.database_url
        if url.startswith("sqlite://") and "+aiosqlite" not in url:
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    db_path = os.path.join(cfg.data_path, "monitor.db")
    return f"sqlite+aiosqlite:///{db_path}"
