import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from rentals.core.config import settings
from rentals.core.errors import RentalsError, rentals_error_handler
from rentals.core.logging import setup_logging
from rentals.core.rate_limiter import limiter
from rentals.middleware.request_logger import RequestLoggerMiddleware

from rentals.api.health import router as health_router
from rentals.api.listings import router as listings_router
from rentals.api.bookings import router as bookings_router
from rentals.api.pricing import router as pricing_router
from rentals.api.calendars import router as calendars_router


# -------------------------------------------------
# Logging
# -------------------------------------------------

setup_logging()
logger = logging.getLogger(__name__)

logger.info("Starting application")


# -------------------------------------------------
# FastAPI
# -------------------------------------------------

app = FastAPI(
    title="Rentals Booking Engine",
    description="Listings, availability, pricing, bookings and calendar sync",
    version="0.1.0",
)

# -------------------------------------------------
# Rate Limiting (slowapi)
# -------------------------------------------------
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(RentalsError, rentals_error_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(RequestLoggerMiddleware)

app.include_router(health_router)
app.include_router(listings_router)
app.include_router(calendars_router)
app.include_router(bookings_router)
app.include_router(pricing_router)


# -------------------------------------------------
# Lifecycle
# -------------------------------------------------


@app.on_event("startup")
async def on_startup():
    logger.info("FastAPI startup")

    from rentals.database import init_db

    await init_db()

    # Внешние коллабораторы живут в app.state, роуты берут их через Depends
    from rentals.services.ical_service import FeedFetcher
    from rentals.services.notification_service import notifier
    from rentals.services.payment_service import build_processor

    app.state.payment_processor = build_processor()
    app.state.notifier = notifier if notifier.enabled else None
    app.state.feed_fetcher = FeedFetcher()

    if app.state.notifier is None:
        logger.info("Telegram notifications disabled")

    from rentals.services.scheduler_service import scheduler_service

    scheduler_service.start()
    logger.info(f"✅ Started (currency={settings.currency}, tz={settings.timezone})")


@app.on_event("shutdown")
async def on_shutdown():
    logger.info("FastAPI shutdown")

    from rentals.services.notification_service import notifier
    from rentals.services.scheduler_service import scheduler_service

    scheduler_service.shutdown()
    await notifier.close()
