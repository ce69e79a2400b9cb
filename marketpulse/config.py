import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    # --- Store ---
    MONGO_URI = (
        os.getenv("MONGO_URI")
        or os.getenv("MONGODB_URI")
        or "mongodb://localhost:27017/marketpulse"
    )

    # --- Tokens ---
    JWT_SECRET_KEY = (
        os.getenv("JWT_SECRET_KEY")
        or os.getenv("ACCESS_TOKEN_SECRET")
        or "change-me-in-production"
    )
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=max(_env_int("JWT_EXPIRES_HOURS", 1), 1))

    # --- CORS ---
    CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "")
    FRONTEND_URL = os.getenv("FRONTEND_URL", "").strip()

    # --- Payments ---
    STRIPE_SECRET_KEY = (os.getenv("STRIPE_SECRET_KEY") or "").strip()
    STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com").rstrip("/")
    PAYMENT_CURRENCY = (os.getenv("PAYMENT_CURRENCY") or "usd").strip().lower()
    MIN_CHARGE_CENTS = _env_int("MIN_CHARGE_CENTS", 50)
    VERIFY_PAYMENT_INTENTS = _env_flag("VERIFY_PAYMENT_INTENTS", True)

    # --- Email ---
    RESEND_API_KEY = (os.getenv("RESEND_API_KEY") or "").strip()
    MAIL_SENDER = (
        os.getenv("MAIL_SENDER") or "Market Pulse <no-reply@marketpulse.app>"
    ).strip()
    CONTACT_RECIPIENT = (os.getenv("CONTACT_RECIPIENT") or "").strip()

    # --- Directory ---
    DEFAULT_ADMIN_EMAIL = (os.getenv("DEFAULT_ADMIN_EMAIL") or "").strip().lower()

    # --- Pagination ---
    PRODUCTS_PAGE_SIZE = 9
    ORDERS_PAGE_SIZE = 7
    MAX_PAGE_SIZE = 100
