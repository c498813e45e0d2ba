from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import os


def _get_secret_key() -> str:
    key = os.getenv("SECRET_KEY")
    if not key:
        raise ValueError("SECRET_KEY environment variable is required")
    return key


def _get_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")
    return url


class Settings(BaseSettings):
    APP_NAME: str = "Help Exchange API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    SECRET_KEY: str = Field(
        default_factory=_get_secret_key, description="Secret key for JWT tokens"
    )
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    DATABASE_URL: str = Field(
        default_factory=_get_database_url, description="Database connection URL"
    )

    CORS_ORIGINS: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated list of allowed origins",
    )

    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: str | None = None

    MESSAGE_PAGE_SIZE: int = 50
    MESSAGE_PAGE_SIZE_MAX: int = 100
    MARK_READ_BATCH_MAX: int = 50
    CONVERSATION_PAGE_SIZE: int = 20
    OFFER_SEARCH_PAGE_SIZE: int = 20

    DB_ECHO: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("CORS_ORIGINS")
    @classmethod
    def validate_cors_origins(cls, v: str) -> str:
        if not v:
            raise ValueError("CORS_ORIGINS cannot be empty")

        origins = [origin.strip() for origin in v.split(",")]
        for origin in origins:
            if not origin.startswith(("http://", "https://")):
                raise ValueError(
                    f"Invalid CORS origin format: {origin}. Must start with http:// or https://"
                )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins_list(self) -> list[str]:
        return [
            origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()
        ]


settings = Settings()  # type: ignore[call-arg]
