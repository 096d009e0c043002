from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    Numeric,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentals.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(str, Enum):
    GUEST = "guest"
    HOST = "host"
    ADMIN = "admin"


class CancellationPolicy(str, Enum):
    FLEXIBLE = "Flexible"
    MODERATE = "Moderate"
    STRICT = "Strict"
    SUPER_STRICT = "SuperStrict"


class PetType(str, Enum):
    DOG = "dog"
    CAT = "cat"
    BIRD = "bird"
    FISH = "fish"
    RABBIT = "rabbit"
    OTHER = "other"


class BookingStatus(str, Enum):
    PENDING = "pending"  # Ждёт подтверждения хоста
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    CHECKED_IN = "checked-in"  # Проживает
    CHECKED_OUT = "checked-out"
    COMPLETED = "completed"
    EXPIRED = "expired"  # Истёк срок ожидания подтверждения


# Statuses that occupy the listing's dates
OCCUPYING_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.CHECKED_IN,
)


class BookingType(str, Enum):
    INSTANT = "instant"
    REQUEST = "request"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class BlockSource(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


class CalendarProvider(str, Enum):
    AIRBNB = "airbnb"
    VRBO = "vrbo"
    BOOKING = "booking"
    OTHER = "other"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    NEVER = "never"


class PricingScope(str, Enum):
    GLOBAL = "global"
    HOST = "host"
    LISTING = "listing"


class Listing(Base):
    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(primary_key=True)
    host_id: Mapped[int] = mapped_column(Integer, index=True)
    title: Mapped[str] = mapped_column(String)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    min_guests: Mapped[int] = mapped_column(Integer, default=1)
    max_guests: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    instant_book: Mapped[bool] = mapped_column(Boolean, default=False)
    cancellation_policy: Mapped[CancellationPolicy] = mapped_column(
        SQLEnum(CancellationPolicy), default=CancellationPolicy.MODERATE
    )

    # Политика для животных
    pets_allowed: Mapped[bool] = mapped_column(Boolean, default=False)
    allowed_pet_types: Mapped[list] = mapped_column(JSON, default=list)
    max_pets: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pet_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)  # per pet per night
    pet_deposit: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)  # per pet, refundable

    # Bumped by every booking write, guarded with a conditional UPDATE
    booking_version: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    availability: Mapped[list["AvailabilityPeriod"]] = relationship(
        back_populates="listing",
        order_by="AvailabilityPeriod.start_date",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    bookings: Mapped[list["Booking"]] = relationship(back_populates="listing")


class AvailabilityPeriod(Base):
    """Host-declared override period: [start_date, end_date)."""

    __tablename__ = "availability_periods"

    id: Mapped[int] = mapped_column(primary_key=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id"), index=True)
    listing: Mapped["Listing"] = relationship(back_populates="availability")

    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    special_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_listing_dates", "listing_id", "check_in", "check_out"),
        Index("ix_bookings_guest_status", "guest_id", "status"),
        Index("ix_bookings_host_status", "host_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    reference: Mapped[str] = mapped_column(String, unique=True, index=True)

    # Связи
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id"))
    listing: Mapped["Listing"] = relationship(back_populates="bookings")
    guest_id: Mapped[int] = mapped_column(Integer)
    host_id: Mapped[int] = mapped_column(Integer)

    # Детали брони
    check_in: Mapped[date] = mapped_column(Date)
    check_out: Mapped[date] = mapped_column(Date)
    nights: Mapped[int] = mapped_column(Integer)
    adults: Mapped[int] = mapped_column(Integer, default=1)
    children: Mapped[int] = mapped_column(Integer, default=0)
    infants: Mapped[int] = mapped_column(Integer, default=0)
    total_guests: Mapped[int] = mapped_column(Integer)

    has_pets: Mapped[bool] = mapped_column(Boolean, default=False)
    number_of_pets: Mapped[int] = mapped_column(Integer, default=0)
    pet_types: Mapped[list] = mapped_column(JSON, default=list)
    pet_info: Mapped[list] = mapped_column(JSON, default=list)

    # Снимок цены на момент создания, не пересчитывается
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    price_per_night: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    cleaning_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    service_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    pet_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    pet_deposit: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    taxes: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    currency: Mapped[str] = mapped_column(String, default="USD")

    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus), default=BookingStatus.PENDING, index=True
    )
    booking_type: Mapped[BookingType] = mapped_column(SQLEnum(BookingType))

    # Оплата
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod), default=PaymentMethod.CREDIT_CARD
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus), default=PaymentStatus.PENDING
    )
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)

    guest_message: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    host_response: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Отмена
    cancelled_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    cancellation_refund: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    cancellation_policy: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return (
            self.status == BookingStatus.PENDING
            and self.expires_at is not None
            and now > self.expires_at
        )


class BlockedDate(Base):
    __tablename__ = "blocked_dates"
    __table_args__ = (
        UniqueConstraint("listing_id", "event_uid", name="uq_blocked_dates_listing_event"),
        Index("ix_blocked_dates_listing_range", "listing_id", "start", "end"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id"), index=True)
    source: Mapped[BlockSource] = mapped_column(
        SQLEnum(BlockSource), default=BlockSource.INTERNAL
    )
    provider: Mapped[CalendarProvider] = mapped_column(
        SQLEnum(CalendarProvider), default=CalendarProvider.OTHER
    )
    calendar_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    event_uid: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    start: Mapped[datetime] = mapped_column(DateTime)
    end: Mapped[datetime] = mapped_column(DateTime)
    is_all_day: Mapped[bool] = mapped_column(Boolean, default=False)
    imported_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class ListingCalendar(Base):
    __tablename__ = "listing_calendars"
    __table_args__ = (
        UniqueConstraint("listing_id", "url", name="uq_listing_calendars_listing_url"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id"), index=True)
    provider: Mapped[CalendarProvider] = mapped_column(
        SQLEnum(CalendarProvider), default=CalendarProvider.OTHER
    )
    url: Mapped[str] = mapped_column(String)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Метаданные синхронизации
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_etag: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_modified: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_status: Mapped[SyncStatus] = mapped_column(
        SQLEnum(SyncStatus), default=SyncStatus.NEVER
    )
    last_error: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    imported_events: Mapped[int] = mapped_column(Integer, default=0)
    removed_events: Mapped[int] = mapped_column(Integer, default=0)

    feed_token: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class PricingConfig(Base):
    __tablename__ = "pricing_configs"

    id: Mapped[int] = mapped_column(primary_key=True)
    scope: Mapped[PricingScope] = mapped_column(SQLEnum(PricingScope))
    # "global", "host:<id>" or "listing:<id>"; one row per scope key
    scope_key: Mapped[str] = mapped_column(String, unique=True)
    host_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    listing_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    # None = not set at this scope, inherited from the less specific one
    enabled: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    service_fee: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    tax: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    cleaning_fee: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    pet_fee_per_night: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    pet_deposit_per_pet: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class BookingLog(Base):
    __tablename__ = "booking_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(Integer, index=True)
    action: Mapped[str] = mapped_column(String)
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    previous_status: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
