import os
from dotenv import load_dotenv
from pydantic import BaseModel

# Загрузка переменных из .env
load_dotenv()


class Settings(BaseModel):
    database_url: str = "sqlite+aiosqlite:///./rentals.db"

    # Business timezone: "today" for check-in validation is computed here
    timezone: str = "UTC"
    currency: str = "USD"

    # Booking lifecycle
    pending_expiry_hours: int = 24
    cancellation_window_hours: int = 24
    booking_cas_retries: int = 3
    reference_max_attempts: int = 20

    # External calendars (ICS)
    calendar_fetch_timeout_seconds: float = 15.0
    calendar_user_agent: str = "Rentals-Calendar-Sync/1.0"
    ics_prodid: str = "-//Rentals//Calendar//EN"

    # Scheduler settings
    enable_auto_sync: bool = True
    booking_expiry_interval_minutes: int = 5
    calendar_sync_interval_minutes: int = 30

    # Notifications (Telegram, optional)
    telegram_bot_token: str = ""
    telegram_chat_id: int = 0

    # Payments (Stripe, optional)
    stripe_api_key: str = ""

    # Rate limiting settings
    rate_limit_enabled: bool = True  # Killswitch for quick disable
    rate_limit_calendar_sync: str = "10/minute"
    rate_limit_booking_create: str = "30/minute"

    # Logging settings
    log_format: str = "console"  # Options: "console", "json"
    log_slow_request_threshold_ms: int = 500  # Log timing only if duration > threshold


settings = Settings(
    database_url=os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./rentals.db"),
    timezone=os.environ.get("RENTALS_TIMEZONE", "UTC"),
    currency=os.environ.get("RENTALS_CURRENCY", "USD"),
    pending_expiry_hours=int(os.environ.get("PENDING_EXPIRY_HOURS", "24")),
    cancellation_window_hours=int(os.environ.get("CANCELLATION_WINDOW_HOURS", "24")),
    booking_cas_retries=int(os.environ.get("BOOKING_CAS_RETRIES", "3")),
    reference_max_attempts=int(os.environ.get("REFERENCE_MAX_ATTEMPTS", "20")),
    calendar_fetch_timeout_seconds=float(
        os.environ.get("CALENDAR_FETCH_TIMEOUT_SECONDS", "15")
    ),
    calendar_user_agent=os.environ.get(
        "CALENDAR_USER_AGENT", "Rentals-Calendar-Sync/1.0"
    ),
    ics_prodid=os.environ.get("ICS_PRODID", "-//Rentals//Calendar//EN"),
    enable_auto_sync=os.environ.get("ENABLE_AUTO_SYNC", "true").lower() == "true",
    booking_expiry_interval_minutes=int(
        os.environ.get("BOOKING_EXPIRY_INTERVAL_MINUTES", "5")
    ),
    calendar_sync_interval_minutes=int(
        os.environ.get("CALENDAR_SYNC_INTERVAL_MINUTES", "30")
    ),
    telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN", ""),
    telegram_chat_id=int(os.environ.get("TELEGRAM_CHAT_ID", "0")),
    stripe_api_key=os.environ.get("STRIPE_API_KEY", ""),
    rate_limit_enabled=os.environ.get("RATE_LIMIT_ENABLED", "true").lower() == "true",
    rate_limit_calendar_sync=os.environ.get("RATE_LIMIT_CALENDAR_SYNC", "10/minute"),
    rate_limit_booking_create=os.environ.get("RATE_LIMIT_BOOKING_CREATE", "30/minute"),
    log_format=os.environ.get("LOG_FORMAT", "console"),
    log_slow_request_threshold_ms=int(
        os.environ.get("LOG_SLOW_REQUEST_THRESHOLD_MS", "500")
    ),
)
