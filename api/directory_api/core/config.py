from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "staffing-directory-api"
    environment: str = "dev"
    host: str = "0.0.0.0"
    port: int = 8000
    api_key_header: str = "X-API-Key"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    resend_api_key: str | None = None
    resend_api_base_url: str = "https://api.resend.com"
    email_from: str = "FindConstructionStaffing <noreply@findconstructionstaffing.com>"
    email_timeout_seconds: float = 10.0
    site_url: str = "http://localhost:3000"
    labor_request_token_ttl_hours: int = 24
    agencies_cache_max_age_seconds: int = 300
    otel_enabled: bool = True
    otel_service_name: str = "staffing-directory-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="SD_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
