from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "scan_user"
    postgres_password: str = "changeme"
    postgres_db: str = "llm_visibility"

    @property
    def postgres_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Encryption for tenant provider keys
    fernet_key: str = ""
    fernet_previous_keys: str = ""  # comma-separated retired keys, decrypt only

    # Global provider keys, used when a tenant has no key of its own
    openai_api_key: str = ""
    perplexity_api_key: str = ""
    gemini_api_key: str = ""

    # Daily scan window, in the tenant's timezone (tenant.timezone overrides the default)
    scan_timezone: str = "America/New_York"
    scan_window_start_hour: int = 3
    scan_window_end_hour: int = 6

    # Batch execution
    scan_stale_after_minutes: int = 5
    scan_concurrency: int = 6  # clamped to 1..10 by the fan-out
    provider_timeout_seconds: float = 60.0
    provider_max_attempts: int = 3
    provider_retry_base_delay: float = 1.0

    # Extraction
    max_citations: int = 20

    # Health monitor
    health_window_hours: int = 24
    health_min_sample: int = 10

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if not settings.fernet_key:
        errors.append(
            'FERNET_KEY must be set (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")'
        )

    if settings.scan_window_start_hour >= settings.scan_window_end_hour:
        errors.append("SCAN_WINDOW_START_HOUR must be earlier than SCAN_WINDOW_END_HOUR")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
