from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://localhost:5432/sensorkernel"
    default_tz: str = "UTC"
    api_key: str | None = None
    log_level: str = "INFO"

    # Single-tenant deployment: endpoints and jobs act on this user unless told otherwise.
    default_user_id: str = "default"

    # Aggregation
    aggregation_start_year: int = 2017
    aggregation_prune_stale: bool = False  # Delete aggregates whose bucket no longer has events

    # Withings API
    withings_client_id: str = ""
    withings_client_secret: str = ""
    withings_api_url: str = "https://wbsapi.withings.net"
    withings_timeout_seconds: float = 30.0
    withings_max_pages: int = 100
    withings_token_refresh_margin: int = 300  # seconds before expiry
    withings_full_sync_start: str = "2017-09-01"  # ISO date
    withings_activity_start: str = "2020-01-01"  # First sync without last_sync

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_sync_interval_minutes: int = 5
    scheduler_aggregate_hour: int = 3
    scheduler_aggregate_minute: int = 0

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
