"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is driven by environment variables."""

    # API
    hostpilot_api_key: str = ""
    hostpilot_log_level: str = "INFO"
    hostpilot_log_json: bool = False

    # SSH connections
    ssh_connect_timeout_seconds: float = 10.0
    ssh_connect_grace_seconds: float = 2.0
    ssh_default_port: int = 22
    ssh_default_username: str = "root"
    ssh_max_workers: int = 32

    # Terminal sessions
    terminal_term_type: str = "xterm-color"
    terminal_max_sessions: int = 64

    # Metrics collection
    metrics_poller_enabled: bool = True
    metrics_interval_seconds: float = 5.0
    metrics_cache_seconds: int = 120
    metrics_retention_days: int = 7
    metrics_cleanup_interval_seconds: int = 3600

    # File search
    search_max_results: int = 100
    search_max_depth: int = 10
    search_timeout_seconds: int = 30

    # Optional JSON list of servers registered at startup
    inventory_file: str = Field(default="")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton – import this from anywhere
settings = Settings()
