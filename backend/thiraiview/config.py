"""Application configuration."""
import re
from functools import lru_cache

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings


DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")


class MalformedConfigurationError(RuntimeError):
    """Raised at startup when required settings are missing or unusable."""


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "ThiraiView"
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:5173"

    # Database
    DATABASE_URL: str = "sqlite:///./thiraiview.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis (login rate limiting). Unset disables rate limiting.
    REDIS_URL: str | None = None
    AUTH_LOGIN_IP_LIMIT_PER_MINUTE: int = 20

    # Proxy / client IP handling
    TRUST_PROXY_HEADERS: bool = False

    # JWT. Both secrets are required and must differ.
    JWT_SECRET: str
    REFRESH_TOKEN_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY: str = "1h"
    REFRESH_TOKEN_EXPIRY: str = "30d"

    # Password hashing (bcrypt cost factor)
    PASSWORD_BCRYPT_ROUNDS: int = 12

    # Auth cookies (refresh token)
    AUTH_REFRESH_COOKIE_NAME: str = "refresh_token"
    AUTH_REFRESH_COOKIE_PATH: str = "/"
    AUTH_REFRESH_COOKIE_SAMESITE: str = "lax"

    # Superuser bootstrap (scripts/create_superuser.py)
    SUPERUSER_EMAIL: str = "admin@thiraiview.com"
    SUPERUSER_USERNAME: str = "superadmin"
    SUPERUSER_NAME: str = "Super Administrator"
    SUPERUSER_PASSWORD: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @field_validator("JWT_SECRET", "REFRESH_TOKEN_SECRET")
    @classmethod
    def _secret_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("signing secret must not be empty")
        return value

    @field_validator("JWT_EXPIRY", "REFRESH_TOKEN_EXPIRY")
    @classmethod
    def _duration_is_parseable(cls, value: str) -> str:
        match = DURATION_PATTERN.match(str(value))
        if not match or int(match.group(1)) <= 0:
            raise ValueError(f"invalid duration {value!r}; expected e.g. '900', '15m', '1h' or '30d'")
        return value

    @field_validator("PASSWORD_BCRYPT_ROUNDS")
    @classmethod
    def _bcrypt_cost_floor(cls, value: int) -> int:
        if value < 10:
            raise ValueError("PASSWORD_BCRYPT_ROUNDS must be at least 10")
        return value

    @model_validator(mode="after")
    def _distinct_secrets(self) -> "Settings":
        if self.JWT_SECRET == self.REFRESH_TOKEN_SECRET:
            raise ValueError("JWT_SECRET and REFRESH_TOKEN_SECRET must be different")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance. Fails fast on missing or malformed values."""
    try:
        return Settings()
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}"
            for error in exc.errors()
        )
        raise MalformedConfigurationError(f"Invalid configuration: {problems}") from exc


settings = get_settings()
