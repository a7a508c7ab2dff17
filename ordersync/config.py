import os
from dataclasses import dataclass
from pathlib import Path
import json
from typing import Optional

from dotenv import load_dotenv


@dataclass
class AppConfig:
    database_url: str
    secret_key: str
    log_level: str
    provider_api_url: str
    provider_email: str
    provider_password: str
    provider_user_id: str
    provider_key: str
    provider_secret: str
    provider_timeout: int
    provider_currency: str
    store_base_url: str
    store_currency: str
    order_status_email_secret: str
    auth_url: str
    auth_service_key: str
    cron_secret: str
    stale_order_minutes: int = 15
    tracking_batch_size: int = 50
    tracking_workers: int = 4
    exchange_rate_url: str = "https://api.exchangerate-api.com/v4/latest/USD"
    exchange_rate_ttl_seconds: int = 3600
    exchange_rate_fallback: float = 18.5


def validate_currency(value: Optional[str], default: str) -> str:
    v = (value or default).strip().upper()
    if len(v) != 3:
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def validate_positive_int(value, field: str, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer") from None
    if number <= 0:
        raise ValueError(f"{field} must be > 0")
    return number


def _load_settings_file(path: Optional[Path] = None) -> dict:
    path = path or Path(__file__).resolve().parents[1] / "data" / "settings.json"
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ValueError(f"Unreadable settings file {path}: {exc}") from exc
    return data if isinstance(data, dict) else {}


def load_env(settings_path: Optional[Path] = None) -> AppConfig:
    # data/settings.json wins, environment (.env included) is the fallback
    load_dotenv()
    s = _load_settings_file(settings_path)

    def get(key: str, default: str = "") -> str:
        value = s.get(key)
        if value is None or value == "":
            value = os.getenv(key, default)
        return str(value).strip()

    fallback_rate = get("EXCHANGE_RATE_FALLBACK", "18.5")
    try:
        exchange_rate_fallback = float(fallback_rate)
    except ValueError:
        raise ValueError("EXCHANGE_RATE_FALLBACK must be a number") from None

    return AppConfig(
        database_url=get("DATABASE_URL", "sqlite:///data/app.db"),
        secret_key=get("SECRET_KEY", "dev_secret"),
        log_level=get("LOG_LEVEL", "INFO"),
        provider_api_url=get("PROVIDER_API_URL"),
        provider_email=get("PROVIDER_EMAIL"),
        provider_password=get("PROVIDER_PASSWORD"),
        provider_user_id=get("PROVIDER_USER_ID"),
        provider_key=get("PROVIDER_KEY"),
        provider_secret=get("PROVIDER_SECRET"),
        provider_timeout=validate_positive_int(get("PROVIDER_TIMEOUT_SECONDS"), "PROVIDER_TIMEOUT_SECONDS", 30),
        provider_currency=validate_currency(get("PROVIDER_CURRENCY"), "USD"),
        store_base_url=get("STORE_BASE_URL").rstrip("/"),
        store_currency=validate_currency(get("STORE_CURRENCY"), "ZAR"),
        order_status_email_secret=get("ORDER_STATUS_EMAIL_SECRET"),
        auth_url=get("AUTH_URL").rstrip("/"),
        auth_service_key=get("AUTH_SERVICE_KEY"),
        cron_secret=get("CRON_SECRET"),
        stale_order_minutes=validate_positive_int(get("STALE_ORDER_MINUTES"), "STALE_ORDER_MINUTES", 15),
        tracking_batch_size=validate_positive_int(get("TRACKING_BATCH_SIZE"), "TRACKING_BATCH_SIZE", 50),
        tracking_workers=validate_positive_int(get("TRACKING_WORKERS"), "TRACKING_WORKERS", 4),
        exchange_rate_url=get("EXCHANGE_RATE_URL", "https://api.exchangerate-api.com/v4/latest/USD"),
        exchange_rate_ttl_seconds=validate_positive_int(
            get("EXCHANGE_RATE_TTL_SECONDS"), "EXCHANGE_RATE_TTL_SECONDS", 3600
        ),
        exchange_rate_fallback=exchange_rate_fallback,
    )
