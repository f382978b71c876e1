"""Runtime settings for the aggregation API and the jobs that share it."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from freshness.core.config import Config
from freshness.core.errors import ConfigError


class ApiSettings:
    """Container for environment-provided endpoints and secrets."""

    def __init__(self) -> None:
        self.status_provider_url: str = os.getenv("STATUS_PROVIDER_URL", "").rstrip("/")
        self.status_provider_api_key: Optional[str] = os.getenv("STATUS_PROVIDER_API_KEY") or None
        self.admin_api_key: Optional[str] = os.getenv("ADMIN_API_KEY") or None
        self.aggregation_cooldown_seconds: float = max(
            float(
                os.getenv(
                    "AGGREGATION_COOLDOWN_SECONDS",
                    str(Config.get("aggregation", "cooldown_seconds", default=120)),
                )
            ),
            0.0,
        )
        self.aggregate_rate_limit: str = os.getenv("AGGREGATE_RATE_LIMIT", "30/minute")
        self.push_api_url: str = os.getenv("PUSH_API_URL") or str(
            Config.get("notifications", "push_url", default="https://exp.host/--/api/v2/push/send")
        )
        self.push_access_token: Optional[str] = os.getenv("EXPO_ACCESS_TOKEN") or None
        self.push_enabled: bool = os.getenv("PUSH_NOTIFICATIONS_ENABLED", "true").lower() == "true"

    @property
    def admin_key_configured(self) -> bool:
        return bool(self.admin_api_key)

    def require_provider(self) -> str:
        if not self.status_provider_url:
            raise ConfigError("STATUS_PROVIDER_URL is not configured", key="STATUS_PROVIDER_URL")
        return self.status_provider_url


@lru_cache(maxsize=1)
def get_api_settings() -> ApiSettings:
    """Return cached API settings instance."""

    return ApiSettings()


__all__ = ["ApiSettings", "get_api_settings"]
