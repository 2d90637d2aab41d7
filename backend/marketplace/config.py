# backend/marketplace/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
    APP_ENV = os.environ.get("APP_ENV", "development")

    # Hosted Postgres in production; local SQLite file otherwise
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #hosted database connection string
        "sqlite:///marketplace.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Hosted auth + storage service (service key for server-side calls)
    AUTH_SERVICE_URL = os.environ.get("AUTH_SERVICE_URL", "")
    STORAGE_URL = os.environ.get("STORAGE_URL", "")
    STORAGE_BUCKET = os.environ.get("STORAGE_BUCKET", "product-images")
    SERVICE_ROLE_KEY = os.environ.get("SERVICE_ROLE_KEY", "")
    ANON_KEY = os.environ.get("ANON_KEY", "")

    # Admin access
    ADMIN_EMAILS = os.environ.get("ADMIN_EMAILS", "")
    DISABLE_AUTH_IN_DEV = _env_bool("DISABLE_AUTH_IN_DEV")
    ADMIN_COOKIE_NAME = "admin_token"
    ADMIN_COOKIE_MAX_AGE = 60 * 60 * 24 * 7
    CRON_SECRET = os.environ.get("CRON_SECRET", "")

    # Outbound mail
    SMTP_HOST = os.environ.get("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME", "")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD", "")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")
    SMTP_TIMEOUT = float(os.environ.get("SMTP_TIMEOUT", "10"))
    ORDER_NOTIFICATION_EMAIL = os.environ.get("ORDER_NOTIFICATION_EMAIL", "")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "https://revibee.com")

    # Visit notifications (Telegram); skipped when token or chat id is unset
    TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID", "")
    TELEGRAM_API_URL = os.environ.get("TELEGRAM_API_URL", "https://api.telegram.org")
    GEO_LOOKUP_URL = os.environ.get("GEO_LOOKUP_URL", "https://ipwho.is")
    NOTIFY_TIMEOUT = 5.0

    # Order email delivery
    MAX_EMAIL_RETRIES = 5
    CHECKOUT_EMAIL_TIMEOUT = 5.0
    RETRY_BATCH_SIZE = 10
    RETRY_BATCH_DELAY = 1.0
    RETRY_SWEEP_LIMIT = 50
    RETRY_BACKOFF_MINUTES = (5, 15, 30, 60, 120)
    RETRY_CLAIM_MINUTES = 10
    EMAIL_WORKERS = 10

    # Catalog
    FEATURED_PRODUCT_LIMIT = 6
    MAX_IMPORT_ZIP_BYTES = 8 * 1024 * 1024
    MAX_UPLOAD_IMAGE_BYTES = 10 * 1024 * 1024
    IMAGE_FETCH_TIMEOUT = 30.0
    STORAGE_UPLOAD_TIMEOUT = 100.0
