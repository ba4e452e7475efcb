import os
from typing import List, Optional

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime configuration, read from the environment by `from_env`."""

    jwt_secret: str = "dev-secret-change-me"
    refresh_token_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days
    refresh_token_expire_minutes: int = 60 * 24 * 30  # 30 days

    database_url: str = "mongodb://localhost:27017"
    database_name: str = "vireon"

    redis_enabled: bool = False
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    product_cache_ttl: int = 300

    auth_debug_bypass: bool = False
    bcrypt_rounds: int = Field(10, ge=4, le=31)

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    environment: str = "development"

    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    low_stock_threshold: int = 5

    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    api_rate_limit: str = "100 per 15 minutes"
    auth_rate_limit: str = "10 per hour"

    @property
    def refresh_secret(self) -> str:
        return self.refresh_token_secret or self.jwt_secret

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
            refresh_token_secret=os.getenv("REFRESH_TOKEN_SECRET") or None,
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)),
            refresh_token_expire_minutes=int(os.getenv("REFRESH_TOKEN_EXPIRE_MINUTES", 60 * 24 * 30)),
            database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
            database_name=os.getenv("DATABASE_NAME", "vireon"),
            redis_enabled=_env_bool("REDIS_ENABLED"),
            redis_host=os.getenv("REDIS_HOST", "localhost"),
            redis_port=int(os.getenv("REDIS_PORT", 6379)),
            redis_password=os.getenv("REDIS_PASSWORD") or None,
            product_cache_ttl=int(os.getenv("PRODUCT_CACHE_TTL", 300)),
            auth_debug_bypass=_env_bool("AUTH_DEBUG_BYPASS"),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", 10)),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            environment=os.getenv("ENVIRONMENT", "development").lower(),
            admin_email=os.getenv("ADMIN_EMAIL") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
            low_stock_threshold=int(os.getenv("LOW_STOCK_THRESHOLD", 5)),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", True),
            rate_limit_storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
            api_rate_limit=os.getenv("API_RATE_LIMIT", "100 per 15 minutes"),
            auth_rate_limit=os.getenv("AUTH_RATE_LIMIT", "10 per hour"),
        )
