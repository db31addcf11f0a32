"""Configuration management for multiflow-sync."""

from __future__ import annotations

import os
from dataclasses import dataclass

from multiflow_sync.sync.retry_policy import Backoff, RetryPolicy


@dataclass
class Config:
    """
    Application configuration.

    Loaded from environment variables with sensible defaults.
    """

    # Remote service
    api_url: str = "http://localhost:3000/api"
    api_key: str = ""
    ws_url: str | None = None
    request_timeout: float = 30.0

    # Connection monitor
    health_timeout: float = 5.0
    probe_interval: float = 300.0

    # Background queue
    sync_max_attempts: int = 3
    sync_base_delay: float = 1.0
    sync_max_delay: float = 30.0
    sync_jitter: float = 0.3

    # Foreground actions
    action_max_attempts: int = 3
    action_delay: float = 1.0

    # Conversation reconciler
    poll_interval: float = 30.0
    debounce_delay: float = 0.3
    not_found_threshold: int = 3

    @property
    def realtime_url(self) -> str:
        """WebSocket URL, derived from the API URL when not set explicitly."""
        if self.ws_url:
            return self.ws_url
        base = self.api_url.rstrip("/")
        if base.endswith("/api"):
            base = base[: -len("/api")]
        if base.startswith("https://"):
            return "wss://" + base[len("https://") :]
        if base.startswith("http://"):
            return "ws://" + base[len("http://") :]
        return base

    def sync_policy(self) -> RetryPolicy:
        """Retry policy for the background sync queue."""
        return RetryPolicy(
            max_attempts=self.sync_max_attempts,
            base_delay=self.sync_base_delay,
            max_delay=self.sync_max_delay,
            jitter_fraction=self.sync_jitter,
        )

    def action_policy(self) -> RetryPolicy:
        """Retry policy for user-initiated foreground actions."""
        return RetryPolicy(
            max_attempts=self.action_max_attempts,
            base_delay=self.action_delay,
            max_delay=self.action_delay * self.action_max_attempts,
            jitter_fraction=0.0,
            backoff=Backoff.LINEAR,
            retry_auth_failures=False,
        )

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""

        def get_int(key: str, default: int) -> int:
            value = os.getenv(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                return default

        def get_float(key: str, default: float) -> float:
            value = os.getenv(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError:
                return default

        return cls(
            api_url=os.getenv("MULTIFLOW_API_URL", "http://localhost:3000/api"),
            api_key=os.getenv("MULTIFLOW_API_KEY", ""),
            ws_url=os.getenv("MULTIFLOW_WS_URL"),
            request_timeout=get_float("MULTIFLOW_REQUEST_TIMEOUT", 30.0),
            health_timeout=get_float("MULTIFLOW_HEALTH_TIMEOUT", 5.0),
            probe_interval=get_float("MULTIFLOW_PROBE_INTERVAL", 300.0),
            sync_max_attempts=get_int("MULTIFLOW_SYNC_MAX_ATTEMPTS", 3),
            sync_base_delay=get_float("MULTIFLOW_SYNC_BASE_DELAY", 1.0),
            sync_max_delay=get_float("MULTIFLOW_SYNC_MAX_DELAY", 30.0),
            sync_jitter=get_float("MULTIFLOW_SYNC_JITTER", 0.3),
            action_max_attempts=get_int("MULTIFLOW_ACTION_MAX_ATTEMPTS", 3),
            action_delay=get_float("MULTIFLOW_ACTION_DELAY", 1.0),
            poll_interval=get_float("MULTIFLOW_POLL_INTERVAL", 30.0),
            debounce_delay=get_float("MULTIFLOW_DEBOUNCE", 0.3),
            not_found_threshold=get_int("MULTIFLOW_NOT_FOUND_THRESHOLD", 3),
        )


# Singleton config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None
