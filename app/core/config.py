# top2000_auth/app/core/config.py
from typing import List
from pathlib import Path

from loguru import logger
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.exceptions import ConfigurationError

BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE_PATH = BASE_DIR / ".env"

MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=ENV_FILE_PATH,
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # Refresh Token
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    # Presenting an already rotated token revokes every session of its owner
    REFRESH_REUSE_REVOKES_ALL: bool = False
    REFRESH_TOKEN_RETENTION_DAYS: int = 30

    # JWT claims
    JWT_ISSUER: str = "urn:top2000:api"
    JWT_AUDIENCE: str = "urn:top2000:client"

    # Roles
    DEFAULT_ROLES: List[str] = ["User"]
    ADMIN_ROLE: str = "Admin"
    KNOWN_ROLES: List[str] = ["Admin", "User"]

    # Initial admin (optional, used by app.db.initial_data)
    FIRST_ADMIN_EMAIL: str | None = None
    FIRST_ADMIN_PASSWORD: str | None = None

    # HTTP
    CORS_ORIGINS: List[str] = [
        "http://localhost:1234",
        "http://localhost:3000",
        "http://localhost:8000",
    ]
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "30/minute"

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if len(v.strip()) < MIN_SECRET_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {MIN_SECRET_LENGTH} characters long")
        return v

    @field_validator("ACCESS_TOKEN_EXPIRE_MINUTES", "REFRESH_TOKEN_EXPIRE_DAYS")
    @classmethod
    def validate_positive_lifetime(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("token lifetimes must be positive")
        return v


def load_settings(**overrides) -> Settings:
    """Carrega as configurações; qualquer erro aqui impede o processo de subir."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        logger.error(f"FATAL: Erro ao carregar 'settings' a partir do .env em {ENV_FILE_PATH}: {e}")
        raise ConfigurationError(str(e)) from e


settings = load_settings()
