"""
Pytest configuration for rentals tests
"""
import os
import sys
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

# До импорта приложения: настройки читаются из окружения один раз
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENABLE_AUTO_SYNC"] = "false"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["STRIPE_API_KEY"] = ""

# Ensure rentals is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rentals.database import Base
from rentals.models import Booking, BookingStatus, BookingType, Listing, PaymentStatus


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Файловая база: у каждой сессии своё соединение, как у параллельных запросов."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rentals.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def future():
    """Дата через N дней от сегодня (брони в прошлом запрещены)."""

    def _future(days: int) -> date:
        return date.today() + timedelta(days=days)

    return _future


async def make_listing(session, **overrides) -> Listing:
    data = {
        "host_id": 10,
        "title": "Cabin by the lake",
        "price": Decimal("100"),
        "min_guests": 1,
        "max_guests": 4,
        "is_active": True,
        "instant_book": False,
        "pets_allowed": False,
        "allowed_pet_types": [],
        "pet_fee": Decimal("0"),
        "pet_deposit": Decimal("0"),
    }
    data.update(overrides)
    listing = Listing(**data)
    session.add(listing)
    await session.commit()
    await session.refresh(listing)
    return listing


async def make_booking(session, listing: Listing, check_in: date, check_out: date, **overrides) -> Booking:
    """Бронь напрямую в базе, в обход движка."""
    nights = (check_out - check_in).days
    total = Decimal(listing.price) * nights
    data = {
        "reference": f"BKG-TEST-{check_in:%m%d}{check_out:%m%d}-{overrides.get('guest_id', 1)}",
        "listing_id": listing.id,
        "guest_id": 1,
        "host_id": listing.host_id,
        "check_in": check_in,
        "check_out": check_out,
        "nights": nights,
        "total_guests": 2,
        "base_price": Decimal(listing.price),
        "price_per_night": Decimal(listing.price),
        "subtotal": total,
        "total_amount": total,
        "status": BookingStatus.CONFIRMED,
        "booking_type": BookingType.INSTANT,
        "payment_status": PaymentStatus.PENDING,
    }
    data.update(overrides)
    booking = Booking(**data)
    session.add(booking)
    await session.commit()
    await session.refresh(booking)
    return booking
