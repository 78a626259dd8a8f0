import os
from datetime import timedelta

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

APP_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Longest lifetime the signed download links are allowed to have
MAX_SIGNED_URL_TTL = timedelta(days=7)


def _env_bool(name, default="false"):
    return os.getenv(name, default).lower() == "true"


def _env_list(name):
    return [value.strip() for value in os.getenv(name, "").split(",") if value.strip()]


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "default-secret-key")

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", 300))
    CHECKOUT_CURRENCY = os.getenv("CHECKOUT_CURRENCY", "eur")

    # OpenAI
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-2024-08-06")
    OPENAI_TIMEOUT = float(os.getenv("OPENAI_TIMEOUT", 120))
    OPENAI_MAX_ATTEMPTS = int(os.getenv("OPENAI_MAX_ATTEMPTS", 3))
    OPENAI_RETRY_DELAY = float(os.getenv("OPENAI_RETRY_DELAY", 1))
    OPENAI_STUB_FALLBACK = _env_bool("OPENAI_STUB_FALLBACK")

    # MongoDB
    MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    MONGODB_DB = os.getenv("MONGODB_DB", "avocat")

    # Artifact storage
    STORAGE_ROOT = os.getenv("STORAGE_ROOT", os.path.join(APP_ROOT, "storage"))
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000")
    SIGNED_URL_TTL_SECONDS = int(os.getenv("SIGNED_URL_TTL_SECONDS", MAX_SIGNED_URL_TTL.total_seconds()))

    # Only used until the admin role is recorded in the user directory
    ADMIN_BOOTSTRAP_UIDS = _env_list("ADMIN_BOOTSTRAP_UIDS")

    # Notifications
    GOOGLE_CHAT_WEBHOOK_URL = os.getenv("GOOGLE_CHAT_WEBHOOK_URL")
    SMTP_SERVER = os.getenv("SMTP_SERVER")
    SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASS = os.getenv("SMTP_PASS")
    EMAIL_FROM = os.getenv("EMAIL_FROM", SMTP_USER)

    # Flask-Limiter
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "200 per day;50 per hour")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_ENABLED = _env_bool("RATELIMIT_ENABLED", "true")
