import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def get_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set. Check your .env file.")
    return url


def jwt_secret():
    return os.getenv("JWT_SECRET")


def jwt_algorithm() -> str:
    return os.getenv("JWT_ALGORITHM", "HS256")


def stripe_secret_key():
    return os.getenv("STRIPE_SECRET_KEY")


def stripe_webhook_secret():
    return os.getenv("STRIPE_WEBHOOK_SECRET")


def stripe_webhook_tolerance() -> int:
    return int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))


def payment_currency() -> str:
    return os.getenv("PAYMENT_CURRENCY", "usd")


def frontend_url() -> str:
    return os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


def allow_cancel_after_payment() -> bool:
    return env_flag("ALLOW_CANCEL_AFTER_PAYMENT")


def cancel_on_payment_failure() -> bool:
    return env_flag("CANCEL_ON_PAYMENT_FAILURE")


def order_number_attempts() -> int:
    return int(os.getenv("ORDER_NUMBER_ATTEMPTS", "5"))
