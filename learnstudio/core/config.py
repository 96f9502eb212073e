import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Stripe (payments provider)
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    # Billing
    INVOICE_DUE_DAYS: int = 30
    DEFAULT_CURRENCY: str = "usd"

    # Admin access (hybrid auth)
    ADMIN_KEY: Optional[str] = None  # Legacy shared key
    ADMIN_AUTH_MODE: str = "hybrid"  # "clerk" | "legacy" | "hybrid"
    ENVIRONMENT: str = "dev"  # "dev" | "test" | "prod"

    # Clerk JWT verification
    CLERK_SECRET_KEY: Optional[str] = None
    CLERK_ISSUER: Optional[str] = None
    CLERK_AUDIENCE: Optional[str] = None
    CLERK_JWKS_URL: Optional[str] = None

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
    log = logger or logging.getLogger("learnstudio")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if not (getattr(cfg, "CLERK_SECRET_KEY", None) or getattr(cfg, "CLERK_JWKS_URL", None) or getattr(cfg, "ADMIN_KEY", None)):
        missing.append("CLERK_SECRET_KEY|CLERK_JWKS_URL|ADMIN_KEY")
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
