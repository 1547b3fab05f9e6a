from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    api_base_url: str = "http://localhost:8000"
    module_id: str = "notification-worker"
    api_key: str = "local-notification-key"
    poll_interval_seconds: float = 5.0
    max_backoff_seconds: float = 60.0
    batch_size: int = 25
    http_timeout_seconds: float = 10.0
    resend_api_key: str | None = None
    resend_api_base_url: str = "https://api.resend.com"
    email_from: str = "FindConstructionStaffing <noreply@findconstructionstaffing.com>"
    site_url: str = "http://localhost:3000"
    otel_enabled: bool = True
    otel_service_name: str = "staffing-directory-workers"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="SD_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
