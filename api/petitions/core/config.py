from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "petition-signatures-api"
    environment: str = "dev"
    database_url: str | None = None
    database_replica_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    legacy_store_url: str | None = None
    legacy_store_api_key: str | None = None
    legacy_store_timeout_seconds: float = 5.0
    zip_lookup_url: str | None = None
    zip_lookup_country: str = "us"
    zip_lookup_timeout_seconds: float = 2.0
    write_legacy_store: bool = True
    write_primary_store: bool = True
    read_petitions_from_legacy: bool = False
    otel_enabled: bool = True
    otel_service_name: str = "petition-signatures-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="PS_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
