"""Pydantic-based configuration helpers for the access request plugins."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Iterable, List

from pydantic import BaseModel, Field, ValidationError, field_validator

from .job import WatcherJobConfig


class AppSettings(BaseModel):
    """Settings required to run a plugin against an access request authority."""

    plugin_name: str = Field("slack", alias="PLUGIN_NAME")
    bot_token: str = Field(..., alias="SLACK_BOT_TOKEN")
    signing_secret: str = Field(..., alias="SLACK_SIGNING_SECRET")
    notify_channels: List[str] = Field(..., alias="NOTIFY_CHANNELS")
    database_url: str = Field(..., alias="DATABASE_URL")
    cluster_name: str = Field("local", alias="CLUSTER_NAME")
    min_server_version: str = Field("6.1.0", alias="MIN_SERVER_VERSION")
    watch_init_timeout: float = Field(5.0, alias="WATCH_INIT_TIMEOUT")
    event_func_timeout: float = Field(5.0, alias="EVENT_FUNC_TIMEOUT")
    reconnect_base_delay: float = Field(0.2, alias="RECONNECT_BASE_DELAY")
    reconnect_max_delay: float = Field(2.0, alias="RECONNECT_MAX_DELAY")
    cache_ttl: int = Field(60 * 60, alias="CACHE_TTL")
    http_host: str = Field("0.0.0.0", alias="HTTP_HOST")
    http_port: int = Field(3000, alias="HTTP_PORT")

    @field_validator("notify_channels", mode="before")
    @classmethod
    def _split_channels(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, list):
            items = [item.strip() for item in value if item.strip()]
        else:
            items = [item.strip() for item in value.split(",") if item.strip()]
        if not items:
            raise ValueError("At least one notification channel is required")
        return items

    @field_validator(
        "watch_init_timeout",
        "event_func_timeout",
        "reconnect_base_delay",
        "reconnect_max_delay",
        "cache_ttl",
    )
    @classmethod
    def _ensure_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts and delays must be greater than zero")
        return value

    def watcher_job_config(self) -> WatcherJobConfig:
        return WatcherJobConfig(
            init_timeout=self.watch_init_timeout,
            event_func_timeout=self.event_func_timeout,
            reconnect_base_delay=self.reconnect_base_delay,
            reconnect_max_delay=max(self.reconnect_max_delay, self.reconnect_base_delay),
        )


def _format_missing(fields: Iterable[str]) -> str:
    """Return a human-friendly comma-separated list of missing env vars."""

    unique: List[str] = []
    for field in fields:
        if field not in unique:
            unique.append(field)
    return ", ".join(unique)


@lru_cache()
def get_settings() -> AppSettings:
    """Fetch and cache settings from environment variables."""

    try:
        return AppSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [str(error["loc"][0]) for error in exc.errors() if error["type"] == "missing"]
        if missing:
            message = f"Missing required environment variables: {_format_missing(missing)}"
        else:
            invalid = [str(error["loc"][0]) for error in exc.errors()]
            message = f"Invalid environment variables: {_format_missing(invalid)}"
        raise RuntimeError(message) from exc
