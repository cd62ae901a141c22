"""Application configuration with security-first defaults.

Environment variables override all defaults.
CRITICAL: SECRET_KEY must be set in .env - will fail fast if missing in production.
"""

import os
from pathlib import Path
from typing import List


# Load .env for local development (safe no-op if not installed)
try:
    from dotenv import load_dotenv  # type: ignore

    _BACKEND_DIR = Path(__file__).resolve().parents[2]
    load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)
except ImportError:
    pass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./edsupply.db")

    # JWT Security - CRITICAL
    SECRET_KEY: str = os.getenv("SECRET_KEY", None)
    if not SECRET_KEY:
        # In production, this will fail immediately (no weak defaults)
        if os.getenv("ENVIRONMENT", "development") == "production":
            raise ValueError(
                "CRITICAL: SECRET_KEY must be set in production environment. "
                "Generate with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
            )
        import warnings
        warnings.warn(
            "SECRET_KEY not set in environment. Using development default. "
            "Set SECRET_KEY in .env to a strong random value before production.",
            RuntimeWarning
        )
        SECRET_KEY = "development-only-weak-default-change-in-production"

    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))

    # CORS (Restrictive - specific origins only, no wildcards)
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv(
            "CORS_ORIGINS", "http://localhost:8080,http://127.0.0.1:8080"
        ).split(",")
        if origin.strip()
    ]

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Actor used by scheduled jobs (expiration sweep). Seeded by init_db.
    SYSTEM_ACTOR_ID: str = os.getenv("SYSTEM_ACTOR_ID", "system")

    # Daily expiration sweep
    EXPIRATION_SWEEP_ENABLED: bool = _env_bool("EXPIRATION_SWEEP_ENABLED", True)
    EXPIRATION_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("EXPIRATION_SWEEP_INTERVAL_SECONDS", "86400"))

    # Audit side channel
    AUDIT_QUEUE_SIZE: int = int(os.getenv("AUDIT_QUEUE_SIZE", "1000"))
    AUDIT_RETENTION_DAYS_INFO: int = int(os.getenv("AUDIT_RETENTION_DAYS_INFO", "90"))
    AUDIT_RETENTION_DAYS_WARNING: int = int(os.getenv("AUDIT_RETENTION_DAYS_WARNING", "180"))
    AUDIT_RETENTION_DAYS_CRITICAL: int = int(os.getenv("AUDIT_RETENTION_DAYS_CRITICAL", "365"))

    # Optimistic transaction retries
    TRANSACTION_MAX_ATTEMPTS: int = int(os.getenv("TRANSACTION_MAX_ATTEMPTS", "5"))
    TRANSACTION_BACKOFF_SECONDS: float = float(os.getenv("TRANSACTION_BACKOFF_SECONDS", "0.05"))
    TRANSACTION_MAX_BACKOFF_SECONDS: float = float(os.getenv("TRANSACTION_MAX_BACKOFF_SECONDS", "1.0"))


settings = Settings()
