"""Application settings and environment loading utilities."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

DEVELOPMENT = "development"
PRODUCTION = "production"

DEFAULT_ALLOWED_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:8080",
)


def _load_dotenv() -> None:
    env_path = Path(".env")
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


_load_dotenv()


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value or None


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer for environment variable: {name}") from exc
    if value <= 0:
        raise RuntimeError(f"Environment variable must be positive: {name}")
    return value


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _origins(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return DEFAULT_ALLOWED_ORIGINS
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


@dataclass(frozen=True)
class Settings:
    """Runtime configuration derived from environment variables."""

    admin_username: str = "admin"
    admin_password: Optional[str] = None
    seed_secret_token: Optional[str] = None
    api_secret_key: Optional[str] = None
    environment: str = PRODUCTION
    cors_allowed_origins: Tuple[str, ...] = field(default=DEFAULT_ALLOWED_ORIGINS)
    cors_allow_all_origins: bool = False
    rate_limit_default_requests: int = 60
    rate_limit_strict_requests: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_sweep_interval_seconds: int = 300

    @property
    def is_development(self) -> bool:
        return self.environment == DEVELOPMENT

    @property
    def admin_auth_configured(self) -> bool:
        return bool(self.admin_password)

    @property
    def seed_auth_configured(self) -> bool:
        return bool(self.seed_secret_token)

    @classmethod
    def from_env(cls) -> "Settings":
        environment = (os.getenv("APP_ENV") or PRODUCTION).strip().lower()

        return cls(
            admin_username=_optional("ADMIN_USERNAME") or "admin",
            admin_password=_optional("ADMIN_PASSWORD"),
            seed_secret_token=_optional("SEED_SECRET_TOKEN"),
            api_secret_key=_optional("API_SECRET_KEY"),
            environment=environment,
            cors_allowed_origins=_origins("CORS_ALLOWED_ORIGINS"),
            cors_allow_all_origins=_bool(
                "CORS_ALLOW_ALL_ORIGINS", environment == PRODUCTION
            ),
            rate_limit_default_requests=_int("RATE_LIMIT_DEFAULT_REQUESTS", 60),
            rate_limit_strict_requests=_int("RATE_LIMIT_STRICT_REQUESTS", 10),
            rate_limit_window_seconds=_int("RATE_LIMIT_WINDOW_SECONDS", 60),
            rate_limit_sweep_interval_seconds=_int("RATE_LIMIT_SWEEP_INTERVAL_SECONDS", 300),
        )


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings.from_env()
