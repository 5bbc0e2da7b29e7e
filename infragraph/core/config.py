from typing import Annotated, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    SLACK_WEBHOOK_URL: str | None = None

    # Providers (comma separated in env: PROVIDERS=peeringdb,telegeography)
    PROVIDERS: Annotated[list[str], NoDecode] = ["peeringdb", "cloudflare_radar", "telegeography"]
    PROVIDER_PRECEDENCE: Annotated[list[str], NoDecode] = ["peeringdb", "telegeography", "cloudflare_radar"]

    # API credentials
    CLOUDFLARE_RADAR_TOKEN: str | None = None
    PEERINGDB_API_KEY: str | None = None

    # Cache TTLs
    PEERINGDB_CACHE_TTL_SECONDS: float = 7 * 24 * 3600
    TELEGEOGRAPHY_CACHE_TTL_SECONDS: float = 30 * 24 * 3600
    CLOUDFLARE_RADAR_CACHE_TTL_SECONDS: float = 5 * 60
    CACHE_DB_URL: str | None = None  # e.g. sqlite:///cache.db; unset = in-memory only
    CACHE_SWEEP_INTERVAL_SECONDS: float = 10 * 60
    CACHE_MAX_ENTRIES: int = 1024  # in-memory entries; least recently used go first
    SERVE_STALE_ON_ERROR: bool = True

    # Merge
    MERGE_RADIUS_KM: float = 50.0

    # HTTP / retries
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    BACKOFF_BASE_SECONDS: float = 1.0
    BACKOFF_MAX_SECONDS: float = 30.0
    BACKOFF_JITTER: float = 0.5
    BACKOFF_MAX_RETRIES: int = 3
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RESET_SECONDS: float = 60.0
    CIRCUIT_SUCCESS_THRESHOLD: int = 3
    PAGE_SIZE: int = 250
    MAX_PAGES: int = 20
    TELEGEOGRAPHY_CABLE_DETAILS: bool = False

    # Scheduled aggregation
    AGGREGATION_INTERVAL_SECONDS: int = 30 * 60
    AGGREGATION_ENABLED: bool = True

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @field_validator("PROVIDERS", "PROVIDER_PRECEDENCE", mode="before")
    @classmethod
    def _split_csv(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def effective_log_level(self) -> str:
        """Return appropriate log level based on environment."""
        if self.is_production:
            # In production, minimum INFO level (ignore DEBUG)
            return self.LOG_LEVEL if self.LOG_LEVEL.upper() != "DEBUG" else "INFO"
        return self.LOG_LEVEL

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development


settings = Settings()
