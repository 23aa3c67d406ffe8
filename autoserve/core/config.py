"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: major.minor.patch)
    VERSION: str = "0.1.0"

    # Database
    DATABASE_URL: str = "sqlite:///./autoserve.db"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Internal scheduled endpoints and payment callbacks
    INTERNAL_SECRET: str = ""

    # Diagnostic engine (AI analysis provider)
    DIAGNOSTIC_ENGINE_URL: str = ""
    DIAGNOSTIC_ENGINE_API_KEY: str = ""
    DIAGNOSTIC_ENGINE_TIMEOUT_SECONDS: float = 60.0

    # Engagement policy defaults (overridable at runtime via app_settings)
    COMPLIMENTARY_DIAGNOSES: int = 3
    COMPLIMENTARY_LEADS: int = 5
    MAX_MATCHED_PROVIDERS: int = 10
    ALLOW_LIMITED_PREVIEW_LEADS: bool = True
    DEFAULT_APPOINTMENT_DURATION_MINUTES: int = 60
    DEFAULT_CURRENCY: str = "GHS"
    AUTO_DISPATCH_LEADS: bool = True

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
