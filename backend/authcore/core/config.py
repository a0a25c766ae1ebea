import json
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import SecretStr, field_validator, Field

from authcore.core.errors import ConfigError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API
    API_STR: str = "/api"

    # Security - no defaults for the signing secrets, startup fails without them
    ACCESS_TOKEN_SECRET: Optional[SecretStr] = None
    REFRESH_TOKEN_SECRET: Optional[SecretStr] = None
    JWT_ALGORITHM: str = "HS256"
    BCRYPT_ROUNDS: int = Field(12, ge=4, le=31)

    # Sessions
    MAX_SESSIONS_PER_USER: int = Field(10, ge=1, le=1000)
    REFRESH_TOKEN_ROTATION: bool = False

    # Cookies
    COOKIE_DOMAIN: Optional[str] = None

    # Database
    DATABASE_URL: str

    # Expiry sweeper
    SWEEP_ENABLED: bool = True
    SWEEP_ON_STARTUP: bool = True
    SWEEP_INTERVAL_SECONDS: int = Field(3600, ge=60, le=86400)

    # CORS, comma separated or a JSON list
    BACKEND_CORS_ORIGINS: str = ""

    # Environment
    LOG_LEVEL: str = "info"
    LOG_DIR: str = "/tmp/logs"
    ENVIRONMENT: str = "production"

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("DATABASE_URL must be set and non-empty")
        return v.strip()

    @property
    def cors_origins(self) -> List[str]:
        v = self.BACKEND_CORS_ORIGINS.strip()
        if v.startswith("["):
            return [str(i) for i in json.loads(v)]
        return [i.strip() for i in v.split(",") if i.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def require_signing_secrets(self) -> None:
        """Refuse to run without two distinct, non-empty signing secrets."""
        access = self.ACCESS_TOKEN_SECRET.get_secret_value() if self.ACCESS_TOKEN_SECRET else ""
        refresh = self.REFRESH_TOKEN_SECRET.get_secret_value() if self.REFRESH_TOKEN_SECRET else ""
        if not access.strip():
            raise ConfigError("ACCESS_TOKEN_SECRET is not set")
        if not refresh.strip():
            raise ConfigError("REFRESH_TOKEN_SECRET is not set")
        if access == refresh:
            raise ConfigError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")


# Pydantic reads the environment itself
settings = Settings()
