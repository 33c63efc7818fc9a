from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via .env file or environment variables.
    """

    # Database (catalog and tenant schemas share one instance)
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Bearer tokens carrying tenant/admin claims
    SECRET_KEY: str

    # Application
    APP_NAME: str = "SchemaGate API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # CORS
    CORS_ORIGINS: str = ""
    CORS_ALLOW_CREDENTIALS: bool = True

    # Tenant routing
    TENANT_HEADER: str = "X-Tenant-ID"
    TENANT_SCHEMA_PREFIX: str = "tenant_"
    TENANT_PROVISION_ON_FIRST_USE: bool = True
    SCHEMA_CACHE_MAX_ENTRIES: int = 0  # 0 = unbounded

    # Quota defaults for new tenants
    DEFAULT_MAX_USERS: int = 10
    DEFAULT_MAX_OBJECTS: int = 100
    DEFAULT_STORAGE_QUOTA_MB: int = 1024

    # Integration error tracking
    INTEGRATION_MAX_RETRIES: int = 3
    INTEGRATION_RETRY_BASE_SECONDS: int = 60
    INTEGRATION_RETRY_MAX_SECONDS: int = 3600
    INTEGRATION_SYNC_TIMEOUT_SECONDS: float = 30.0
    INTEGRATION_PROCESSING_TIMEOUT_SECONDS: int = 900
    INTEGRATION_WORKER_ENABLED: bool = False
    INTEGRATION_WORKER_INTERVAL_SECONDS: float = 30.0
    INTEGRATION_WORKER_BATCH_SIZE: int = 50
    INTEGRATION_WORKER_THREADS: int = 4

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS from comma-separated string"""
        if not self.CORS_ORIGINS:
            return []
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
