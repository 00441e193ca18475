"""Configuration management for the Escrow Hold Coordinator"""

import os
import logging

logger = logging.getLogger(__name__)

_DEFAULT_SESSION_SECRET = "dev_fallback_session_secret_32chars_min"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ CONFIG: {name}={raw!r} is not an integer, using default {default}")
        return default


class Config:
    """Application configuration"""

    # Environment detection: ENVIRONMENT takes absolute priority
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # HTTP server
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = _env_int("PORT", 4000)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Storage: memory | json | sql
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "json").lower().strip()
    DATA_STORE_PATH = os.getenv("DATA_STORE_PATH", "dataStore.json")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///escrow.db")

    # Role login (operator credentials for this service only)
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
    CLIENT_PASSWORD = os.getenv("CLIENT_PASSWORD", "client123")
    SESSION_SECRET = os.getenv("SESSION_SECRET", _DEFAULT_SESSION_SECRET)
    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 8)

    # Retention caps for the bounded logs
    ACTIVITY_LOG_LIMIT = _env_int("ACTIVITY_LOG_LIMIT", 100)
    NOTIFICATION_LIMIT = _env_int("NOTIFICATION_LIMIT", 200)
    NOTIFICATION_PAGE_SIZE = _env_int("NOTIFICATION_PAGE_SIZE", 20)
    HISTORY_LIMIT = _env_int("HISTORY_LIMIT", 50)

    # Request protection
    RATE_LIMIT_MAX_REQUESTS = _env_int("RATE_LIMIT_MAX_REQUESTS", 60)
    RATE_LIMIT_WINDOW_SECONDS = _env_int("RATE_LIMIT_WINDOW_SECONDS", 60)
    IDEMPOTENCY_TTL_SECONDS = _env_int("IDEMPOTENCY_TTL_SECONDS", 24 * 3600)
    # Peers allowed to set X-Forwarded-For (comma separated IPs); empty trusts nobody
    TRUSTED_PROXIES = frozenset(
        ip.strip() for ip in os.getenv("TRUSTED_PROXIES", "").split(",") if ip.strip()
    )

    # Audit trail file (empty disables the file handler)
    AUDIT_LOG_FILE = os.getenv("AUDIT_LOG_FILE", "")

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Escrow Coordinator Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Storage Backend: {Config.STORAGE_BACKEND}")
        if Config.STORAGE_BACKEND == "json":
            logger.info(f"   Data Store Path: {Config.DATA_STORE_PATH}")
        elif Config.STORAGE_BACKEND == "sql":
            # Never log credentials embedded in the URL
            logger.info(f"   Database: {Config.DATABASE_URL.split('@')[-1]}")
        logger.info(f"   Session TTL: {Config.SESSION_TTL_HOURS}h")

    @classmethod
    def validate(cls) -> bool:
        """Check settings; in production default secrets are fatal, elsewhere they warn"""
        problems = []
        if cls.STORAGE_BACKEND not in ("memory", "json", "sql"):
            problems.append(f"STORAGE_BACKEND must be memory, json or sql (got {cls.STORAGE_BACKEND!r})")
        if cls.SESSION_SECRET == _DEFAULT_SESSION_SECRET:
            problems.append("SESSION_SECRET is using the development fallback")
        if cls.ADMIN_PASSWORD == "admin123" or cls.CLIENT_PASSWORD == "client123":
            problems.append("ADMIN_PASSWORD/CLIENT_PASSWORD are using development defaults")
        if len(cls.SESSION_SECRET) < 32:
            problems.append("SESSION_SECRET must be at least 32 characters")

        for problem in problems:
            if cls.IS_PRODUCTION:
                logger.error(f"❌ CONFIG: {problem}")
            else:
                logger.warning(f"⚠️ CONFIG: {problem}")

        if cls.IS_PRODUCTION and problems:
            raise ValueError("Invalid production configuration: " + "; ".join(problems))
        return not problems
