# farmbasket/app_config.py

import os
from dataclasses import dataclass, field
from typing import Optional

WEEKDAYS = [
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
]


def _weekday(name: str, default: str) -> int:
    value = (os.getenv(name) or default).strip().upper()
    if value not in WEEKDAYS:
        print(f"⚠️ {name}={value!r} is not a weekday, using {default}")
        value = default
    return WEEKDAYS.index(value)


@dataclass
class ScheduleConfig:
    """
    Weekly pickup cadence.
    Weekdays follow datetime.weekday(): Monday == 0 ... Sunday == 6.
    """
    pickup_weekday: int = 3
    deadline_weekday: int = 1
    deadline_hour: int = 23
    deadline_minute: int = 59
    timezone: str = "Europe/Berlin"


@dataclass
class AppConfig:
    mongo_uri: str = "mongodb://localhost:27017/farmbasket"
    disable_mongo: bool = False

    jwt_secret_key: str = "change-me-super-secret"
    access_expires_h: int = 6
    refresh_expires_d: int = 14

    seller_id: str = "default-seller"
    flavor: str = "buy"

    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    available_pickup_dates: int = 5

    remote_timeout_s: Optional[float] = 15.0
    draft_save_debounce_s: float = 2.0

    session_idle_ttl_s: Optional[float] = 1800.0
    max_sessions: int = 500


def load_config() -> AppConfig:
    """
    Load all configuration from the environment in one place.
    """
    # ------------------------------
    # Mongo
    # ------------------------------
    mongo_uri = os.getenv("MONGO_URI", "mongodb://localhost:27017/farmbasket")
    disable_mongo = os.getenv("DISABLE_MONGO", "0") == "1"

    # ------------------------------
    # Security Keys
    # ------------------------------
    jwt_secret_key = os.getenv("JWT_SECRET_KEY", "change-me-super-secret")
    access_expires_h = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRES_H", "6"))
    refresh_expires_d = int(os.getenv("JWT_REFRESH_TOKEN_EXPIRES_D", "14"))

    # ------------------------------
    # Marketplace
    # ------------------------------
    flavor = os.getenv("APP_FLAVOR", "buy").strip().lower()
    if flavor not in ("buy", "sell"):
        print(f"⚠️ APP_FLAVOR={flavor!r} unknown, falling back to 'buy'")
        flavor = "buy"

    schedule = ScheduleConfig(
        pickup_weekday=_weekday("PICKUP_WEEKDAY", "THURSDAY"),
        deadline_weekday=_weekday("DEADLINE_WEEKDAY", "TUESDAY"),
        deadline_hour=int(os.getenv("DEADLINE_HOUR", "23")),
        deadline_minute=int(os.getenv("DEADLINE_MINUTE", "59")),
        timezone=os.getenv("ORDER_TIMEZONE", "Europe/Berlin"),
    )

    timeout = float(os.getenv("REMOTE_TIMEOUT_S", "15"))
    idle_ttl = float(os.getenv("SESSION_IDLE_TTL_S", "1800"))

    config = AppConfig(
        mongo_uri=mongo_uri,
        disable_mongo=disable_mongo,
        jwt_secret_key=jwt_secret_key,
        access_expires_h=access_expires_h,
        refresh_expires_d=refresh_expires_d,
        seller_id=os.getenv("SELLER_ID", "default-seller"),
        flavor=flavor,
        schedule=schedule,
        available_pickup_dates=int(os.getenv("AVAILABLE_PICKUP_DATES", "5")),
        remote_timeout_s=timeout if timeout > 0 else None,
        draft_save_debounce_s=float(os.getenv("DRAFT_SAVE_DEBOUNCE_S", "2")),
        session_idle_ttl_s=idle_ttl if idle_ttl > 0 else None,
        max_sessions=int(os.getenv("MAX_SESSIONS", "500")),
    )

    print("✓ Config Loaded Successfully")
    return config
