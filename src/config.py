"""
Configuration module for the Grafana Dashboard Loader.

Loads configuration from environment variables. Each component receives
its own configuration section at construction time.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class GrafanaConfig:
    """Grafana HTTP API configuration."""

    base_url: str = "http://127.0.0.1:3001"
    retry: int = 10  # attempts per request, including the first
    retry_delay: float = 10.0  # seconds between attempts
    timeout: int = 30  # seconds per attempt
    api_token: str = field(default="", repr=False)  # Never log token
    user: str = ""

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        retry = int(os.getenv("GRAFANA_RETRY", "10"))
        if retry < 1:
            raise ValueError("GRAFANA_RETRY must be at least 1.")

        return cls(
            base_url=os.getenv("GRAFANA_URL", "http://127.0.0.1:3001").rstrip("/"),
            retry=retry,
            retry_delay=float(os.getenv("GRAFANA_RETRY_DELAY", "10")),
            timeout=int(os.getenv("GRAFANA_TIMEOUT", "30")),
            api_token=os.getenv("GRAFANA_API_TOKEN", ""),
            user=os.getenv("GRAFANA_USER", ""),
        )


@dataclass
class WatchConfig:
    """ConfigMap watch configuration."""

    namespace: str = ""  # empty watches all namespaces
    timeout_seconds: int = 300  # server-side watch timeout before reconnect
    backoff_max_delay: int = 30  # max delay in seconds between reconnects

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            namespace=os.getenv("POD_NAMESPACE", ""),
            timeout_seconds=int(os.getenv("WATCH_TIMEOUT", "300")),
            backoff_max_delay=int(os.getenv("WATCH_BACKOFF_MAX_DELAY", "30")),
        )


@dataclass
class LoggingConfig:
    """Process logging configuration."""

    level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    grafana: GrafanaConfig
    watch: WatchConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            grafana=GrafanaConfig.from_env(),
            watch=WatchConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            grafana=GrafanaConfig(),
            watch=WatchConfig(),
            logging=LoggingConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
