"""Runtime configuration for the app (read from the environment, overridable in tests)."""
import os
from typing import NamedTuple


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings(NamedTuple):
    app_env: str
    database_url: str
    db_pool_size: int
    db_max_overflow: int
    db_pool_timeout: float
    redis_url: str
    cache_ttl_seconds: int
    jwt_secret: str
    jwt_expires_seconds: int
    rate_limit_enabled: bool
    trust_proxy: bool
    frontend_url: str
    log_level: str


def load_settings() -> Settings:
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./finance.db"),
        db_pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
        db_max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
        db_pool_timeout=float(os.getenv("DB_POOL_TIMEOUT", "2")),
        redis_url=os.getenv("REDIS_URL", ""),
        cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", "900")),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
        jwt_expires_seconds=int(os.getenv("JWT_EXPIRES_SECONDS", str(60 * 60 * 24 * 7))),
        rate_limit_enabled=_get_bool(os.getenv("RATE_LIMIT_ENABLED"), default=True),
        trust_proxy=_get_bool(os.getenv("TRUST_PROXY"), default=False),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


state = load_settings()


def get_settings() -> Settings:
    return state


def configure(**overrides) -> Settings:
    """Replace individual settings at runtime and return the new state."""
    global state
    state = state._replace(**overrides)
    return state


def reset():
    global state
    state = load_settings()


def validate_runtime_config() -> None:
    if state.app_env.lower() == "production" and state.jwt_secret == "dev-secret":
        raise RuntimeError("JWT_SECRET must be set in production.")
