"""Runtime settings.

Everything is read from the environment exactly once (see `get_settings`)
and frozen. Token code receives an `AuthPolicy` explicitly instead of
reaching for os.environ on every call.
"""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Mapping, Optional

from errors import ConfigurationError

MIN_SECRET_BYTES = 32
ALGORITHM = "HS256"


@dataclass(frozen=True)
class AuthPolicy:
    """Signing material and token lifetimes shared by the issuer and validator."""
    secret_key: str
    refresh_token_secret: str
    issuer: str = "task-management-api"
    audience: str = "task-management-client"
    access_expire_minutes: int = 60
    refresh_expire_days: int = 7
    algorithm: str = field(default=ALGORITHM, init=False)

    def __post_init__(self):
        if not self.secret_key:
            raise ConfigurationError("SECRET_KEY is not configured")
        if len(self.secret_key.encode()) < MIN_SECRET_BYTES:
            raise ConfigurationError(f"SECRET_KEY must be at least {MIN_SECRET_BYTES} bytes long")
        if not self.refresh_token_secret:
            raise ConfigurationError("REFRESH_TOKEN_SECRET is empty")
        if self.access_expire_minutes <= 0 or self.refresh_expire_days <= 0:
            raise ConfigurationError("token lifetimes must be positive")


@dataclass(frozen=True)
class Settings:
    policy: AuthPolicy
    default_page_size: int = 10
    max_page_size: int = 100
    cache_ttl_seconds: int = 60
    images_dir: str = "images"
    auto_create_tables: bool = True
    admin_username: Optional[str] = None
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    log_level: str = "INFO"


def _int(environ: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}")
    return value


def _bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_policy(environ: Mapping[str, str] = os.environ) -> AuthPolicy:
    secret = environ.get("SECRET_KEY", "")
    return AuthPolicy(
        secret_key=secret,
        refresh_token_secret=environ.get("REFRESH_TOKEN_SECRET") or secret,
        issuer=environ.get("JWT_ISSUER", "task-management-api"),
        audience=environ.get("JWT_AUDIENCE", "task-management-client"),
        access_expire_minutes=_int(environ, "ACCESS_EXPIRE_MINUTES", 60),
        refresh_expire_days=_int(environ, "REFRESH_EXPIRE_DAYS", 7),
    )


def load_settings(environ: Mapping[str, str] = os.environ) -> Settings:
    max_page_size = _int(environ, "MAX_PAGE_SIZE", 100)
    default_page_size = _int(environ, "DEFAULT_PAGE_SIZE", 10)
    if default_page_size > max_page_size:
        raise ConfigurationError("DEFAULT_PAGE_SIZE cannot exceed MAX_PAGE_SIZE")
    return Settings(
        policy=load_policy(environ),
        default_page_size=default_page_size,
        max_page_size=max_page_size,
        cache_ttl_seconds=_int(environ, "CACHE_TTL_SECONDS", 60, minimum=0),
        images_dir=environ.get("IMAGES_DIR", "images"),
        auto_create_tables=_bool(environ, "AUTO_CREATE_TABLES", True),
        admin_username=environ.get("ADMIN_USERNAME") or None,
        admin_email=environ.get("ADMIN_EMAIL") or None,
        admin_password=environ.get("ADMIN_PASSWORD") or None,
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings; raises ConfigurationError on first use if invalid."""
    return load_settings()


def get_policy() -> AuthPolicy:
    return get_settings().policy
