import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Ephemeral (in-process) cache
    memory_cache_ttl_seconds: float = Field(default=300.0, alias="MEMORY_CACHE_TTL")
    memory_cache_max_size: int = Field(default=100, alias="MEMORY_CACHE_MAX_SIZE")
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")

    # Durable cache
    durable_cache_ttl_seconds: float = Field(
        default=24 * 60 * 60.0, alias="DURABLE_CACHE_TTL"
    )
    durable_cache_prefix: str = Field(
        default="storefront_cache_", alias="DURABLE_CACHE_PREFIX"
    )
    # Empty means page-lifetime in-memory storage
    durable_cache_url: str = Field(default="", alias="DURABLE_CACHE_URL")

    # Retry manager
    retry_max_retries: int = Field(default=3, alias="RETRY_MAX_RETRIES")
    retry_initial_delay: float = Field(default=0.1, alias="RETRY_INITIAL_DELAY")
    retry_backoff_multiplier: float = Field(
        default=2.0, alias="RETRY_BACKOFF_MULTIPLIER"
    )
    retry_timeout: float = Field(default=10.0, alias="RETRY_TIMEOUT")
    retry_queue_max_attempts: int = Field(default=3, alias="RETRY_QUEUE_MAX_ATTEMPTS")

    # Notifications
    notification_dedup_window: float = Field(
        default=2.0, alias="NOTIFICATION_DEDUP_WINDOW"
    )
    notification_dismiss_delay: float = Field(
        default=0.3, alias="NOTIFICATION_DISMISS_DELAY"
    )
    notification_success_duration: float = Field(
        default=4.0, alias="NOTIFICATION_SUCCESS_DURATION"
    )
    notification_info_duration: float = Field(
        default=5.0, alias="NOTIFICATION_INFO_DURATION"
    )
    notification_warning_duration: float = Field(
        default=6.0, alias="NOTIFICATION_WARNING_DURATION"
    )
    notification_error_duration: float = Field(
        default=7.0, alias="NOTIFICATION_ERROR_DURATION"
    )

    # Periodic sweep
    cache_sweep_interval_seconds: float = Field(
        default=60.0, alias="CACHE_SWEEP_INTERVAL"
    )
    cache_cleanup_interval_seconds: float = Field(
        default=5 * 60.0, alias="CACHE_CLEANUP_INTERVAL"
    )

    # Connectivity probe (empty URL disables it)
    connectivity_probe_url: str = Field(default="", alias="CONNECTIVITY_PROBE_URL")
    connectivity_probe_interval_seconds: float = Field(
        default=30.0, alias="CONNECTIVITY_PROBE_INTERVAL"
    )
    connectivity_timeout: float = Field(default=5.0, alias="CONNECTIVITY_TIMEOUT")
    slow_connection_threshold: float = Field(
        default=1.5, alias="SLOW_CONNECTION_THRESHOLD"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {"populate_by_name": True}


global_settings = Settings.model_validate(dict(os.environ))
