"""Application configuration with security-first defaults.

Environment variables override all defaults.
CRITICAL: SECRET_KEY must be set in .env - will fail fast if missing in production.
"""

import os
import warnings
from pathlib import Path
from typing import List

from dotenv import load_dotenv

_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


class Settings:
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Pharmacy POS API")

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./pharmacy.db")

    # JWT Security - CRITICAL
    SECRET_KEY: str = os.getenv("SECRET_KEY", None)
    if not SECRET_KEY:
        if os.getenv("ENVIRONMENT", "development") == "production":
            raise ValueError(
                "CRITICAL: SECRET_KEY must be set in production environment. "
                "Generate with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
            )
        warnings.warn(
            "SECRET_KEY not set in environment. Using development default. "
            "Set SECRET_KEY in .env to a strong random value.",
            RuntimeWarning
        )
        SECRET_KEY = "development-only-weak-default-change-in-production"

    ALGORITHM: str = "HS256"
    # One till shift
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "480"))
    BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # CORS (Restrictive - specific origins only, no wildcards)
    CORS_ORIGINS: List[str] = _split_csv(
        os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    )
    ALLOWED_HOSTS: List[str] = _split_csv(os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1"))

    # Auth cookie for the web frontend
    AUTH_COOKIE_NAME: str = "pharmacy_token"
    SECURE_COOKIES: bool = os.getenv("ENVIRONMENT", "development") == "production"
    SAME_SITE_COOKIE: str = "strict"

    # Password Policy
    MIN_PASSWORD_LENGTH: int = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

    # Calendar used for expiry checks and sale analytics fields
    TIMEZONE: str = os.getenv("TIMEZONE", "UTC")
    DATE_FORMAT: str = os.getenv("DATE_FORMAT", "%d %b %Y")
    TIME_FORMAT: str = os.getenv("TIME_FORMAT", "%I:%M:%S %p")

    # Inventory rules
    NEAR_EXPIRY_DAYS: int = 30
    DEFAULT_MIN_STOCK_LEVEL: int = 10

    # Sale numbering: SL0001, SL0002, ...
    SALE_NUMBER_PREFIX: str = os.getenv("SALE_NUMBER_PREFIX", "SL")
    SALE_NUMBER_DIGITS: int = int(os.getenv("SALE_NUMBER_DIGITS", "4"))

    # Used on receipts when the account has no pharmacy name
    PHARMACY_FALLBACK_NAME: str = os.getenv("PHARMACY_FALLBACK_NAME", "Community Pharmacy")

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"


settings = Settings()
