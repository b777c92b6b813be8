import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "auto"  # "auto" | "json" | "pretty"

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Auth (HS256 bearer tokens; X-User-Id header accepted as fallback)
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"

    # Admin access (hybrid auth)
    ADMIN_KEY: Optional[str] = None  # Legacy shared key
    ADMIN_AUTH_MODE: str = "hybrid"  # "user" | "legacy" | "hybrid"
    ENVIRONMENT: str = "dev"  # "dev" | "test" | "prod"

    # App
    BASE_URL: str = "http://localhost:8000"
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # Audit logging
    AUDIT_ENABLED: bool = True

    # Recommendations
    RECOMMENDATION_WINDOW_DAYS: int = 30
    CHURN_WINDOW_DAYS: int = 30

    # Notifications (in-memory store)
    NOTIFICATIONS_PER_USER: int = 100

    # Subscriptions
    DEFAULT_CONTRACT_MONTHS: int = 12

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("subtrack")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
