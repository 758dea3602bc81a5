"""Configuration module for FaceTime Attendance.

Config discovery order:
  1. The file named by the `FACETIME_ATTENDANCE_CONFIG_PATH` environment variable.
  2. `.fta` in the project root.
  3. `.env` in the project root.
  4. Environment variables only.

The `Settings` class uses Pydantic's `BaseSettings`, so every field can be
overridden from the environment. Extra environment variables are allowed.

How to extend/maintain:
-----------------------
- Add new config fields to the `Settings` class, and document them.
- If you change the config discovery logic, update this docstring.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
FTA_FILENAME: str = ".fta"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "FACETIME_ATTENDANCE_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parents[2]

CHALLENGE_BACKENDS = ("memory", "redis")


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """Determine the config file path to use, in order of precedence:
    1. Environment variable FACETIME_ATTENDANCE_CONFIG_PATH
    2. .fta in project root
    3. .env in project root
    4. None (fallback to environment variables only)

    Returns:
        Optional[str]: Path to config file, or None if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    fta_path: Path = PROJECT_ROOT / FTA_FILENAME
    if fta_path.exists():
        return str(fta_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=True)


class Settings(BaseSettings):
    """Application settings with environment variable support.
    All fields are loaded from the environment or the .fta/.env file.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # Server configuration
    HOST: str = "127.0.0.1"
    PORT: int = 9002
    DEBUG: bool = True
    APP_NAME: str = "FaceTime_Attendance-app"
    ENV: str = "dev"

    # MongoDB configuration
    MONGODB_URL: str = "mongodb://127.0.0.1:27017"
    MONGODB_DATABASE: str = "facetime_attendance"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None
    USERS_COLLECTION: str = "registered_users"

    # Redis configuration
    # REDIS_URL is the effective URL; when unset it is built from host/port/db below.
    REDIS_URL: Optional[str] = None
    REDIS_HOST: str = "127.0.0.1"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[SecretStr] = None

    # WebAuthn relying party
    WEBAUTHN_RP_ID: str = "localhost"
    WEBAUTHN_RP_NAME: str = "FaceTime Attendance"
    WEBAUTHN_ORIGIN: Optional[str] = None  # Derived from RP ID when unset
    WEBAUTHN_TIMEOUT_MS: int = 60000
    WEBAUTHN_REQUIRE_USER_VERIFICATION: bool = True
    WEBAUTHN_REJECT_COUNTER_REGRESSION: bool = True

    # Challenge cache
    CHALLENGE_BACKEND: str = "memory"  # memory | redis
    CHALLENGE_TTL_SECONDS: int = 300
    CHALLENGE_CLEANUP_INTERVAL: int = 60  # seconds between purges of expired challenges

    # Logging configuration
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: str = "logs"
    LOKI_ENABLED: bool = False
    LOKI_URL: str = "http://localhost:3100/loki/api/v1/push"
    LOKI_COMPRESS: bool = True

    @field_validator("MONGODB_URL", "WEBAUTHN_RP_ID", mode="before")
    @classmethod
    def no_empty_values(cls, v, info):
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .fta and not empty!")
        return v

    @field_validator("CHALLENGE_BACKEND", mode="before")
    @classmethod
    def validate_challenge_backend(cls, v):
        """Only the in-memory and Redis challenge stores exist."""
        backend = str(v).strip().lower()
        if backend not in CHALLENGE_BACKENDS:
            raise ValueError(f"CHALLENGE_BACKEND must be one of {', '.join(CHALLENGE_BACKENDS)}")
        return backend

    @field_validator("CHALLENGE_TTL_SECONDS", mode="before")
    @classmethod
    def validate_challenge_ttl(cls, v, info):
        """Challenges live between 30 seconds and 15 minutes."""
        ttl = int(v)
        if ttl < 30 or ttl > 900:
            raise ValueError(f"{info.field_name} must be between 30 and 900 seconds")
        return ttl

    @field_validator("CHALLENGE_CLEANUP_INTERVAL", "WEBAUTHN_TIMEOUT_MS", mode="before")
    @classmethod
    def validate_positive_integers(cls, v, info):
        value = int(v)
        if value <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer")
        return value

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return not self.DEBUG

    @property
    def webauthn_expected_origin(self) -> str:
        """Origin the browser reports in clientDataJSON for this relying party."""
        if self.WEBAUTHN_ORIGIN:
            return self.WEBAUTHN_ORIGIN.rstrip("/")
        if self.is_production:
            return f"https://{self.WEBAUTHN_RP_ID}"
        return f"http://{self.WEBAUTHN_RP_ID}:9002"


# Global settings instance
settings: Settings = Settings()

# Precedence: explicit REDIS_URL -> constructed from host/port/db and optional password.
if not settings.REDIS_URL:
    creds = ""
    if settings.REDIS_PASSWORD:
        creds = f":{settings.REDIS_PASSWORD.get_secret_value()}@"
    settings.REDIS_URL = f"redis://{creds}{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
