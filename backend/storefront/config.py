# backend/storefront/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = [
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if o.strip()
    ]

    # Payment gateway (PhonePe standard checkout)
    PAYMENT_CLIENT_ID = os.environ.get("PAYMENT_CLIENT_ID", "")
    PAYMENT_CLIENT_SECRET = os.environ.get("PAYMENT_CLIENT_SECRET", "")
    PAYMENT_CLIENT_VERSION = _env_int("PAYMENT_CLIENT_VERSION", 1)
    PAYMENT_AUTH_URL = os.environ.get(
        "PAYMENT_AUTH_URL",
        "https://api-preprod.phonepe.com/apis/pg-sandbox/v1/oauth/token",
    )
    PAYMENT_BASE_URL = os.environ.get(
        "PAYMENT_BASE_URL",
        "https://api-preprod.phonepe.com/apis/pg-sandbox",
    )
    PAYMENT_REDIRECT_URL = os.environ.get(
        "PAYMENT_REDIRECT_URL",
        "http://localhost:5000/api/phonepe/webhook",
    )

    # Webhook basic credentials; the gateway sends sha256("user:pass")
    WEBHOOK_USER = os.environ.get("WEBHOOK_USER", "")
    WEBHOOK_PASS = os.environ.get("WEBHOOK_PASS", "")

    # SMS provider (msg91 flow API)
    SMS_URL = os.environ.get("SMS_URL", "")
    SMS_AUTH_KEY = os.environ.get("SMS_AUTH_KEY", "")
    SMS_ORDER_TEMPLATE_ID = os.environ.get("SMS_ORDER_TEMPLATE_ID", "")

    # Maps provider (distance matrix)
    MAPS_API_KEY = os.environ.get("MAPS_API_KEY", "")
    MAPS_BASE_URL = os.environ.get(
        "MAPS_BASE_URL",
        "https://maps.googleapis.com/maps/api/distancematrix/json",
    )

    # Bound applied to every outbound HTTP call
    HTTP_TIMEOUT_SECONDS = _env_float("HTTP_TIMEOUT_SECONDS", 15.0)

    # Pagination totals are cached per process for this long
    COUNT_CACHE_TTL_SECONDS = _env_int("COUNT_CACHE_TTL_SECONDS", 300)

    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)

    # Optimistic-concurrency retries for counter/inventory/order writes
    WRITE_RETRY_ATTEMPTS = _env_int("WRITE_RETRY_ATTEMPTS", 5)
