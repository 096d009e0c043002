from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.api.deps import get_actor, get_notifier, get_payment_processor
from rentals.core.config import settings
from rentals.core.errors import InvalidDateRange
from rentals.core.rate_limiter import limiter
from rentals.database import get_db
from rentals.domain.actor import Actor
from rentals.models import BookingStatus, UserRole
from rentals.schemas.booking import (
    AvailabilityOut,
    BookingDraft,
    BookingOut,
    BookingStatusUpdate,
    CancellationOut,
    CancelRequest,
    PaymentIntentOut,
    PriceBreakdown,
    QuoteRequest,
)
from rentals.services.availability_service import AvailabilityService
from rentals.services.booking_log_service import BookingLogService
from rentals.services.booking_service import BookingService
from rentals.services.notification_service import Notifier
from rentals.services.payment_service import PaymentProcessor, PaymentService
from rentals.services.price_calculator import PriceCalculator

router = APIRouter(prefix="/bookings", tags=["bookings"])


def parse_statuses(raw: Optional[List[str]]) -> Optional[List[BookingStatus]]:
    """?status=pending,confirmed или повтор параметра; 'all' = без фильтра"""
    if not raw:
        return None
    values = [part.strip() for item in raw for part in item.split(",") if part.strip()]
    if not values or "all" in values:
        return None
    try:
        return [BookingStatus(value) for value in values]
    except ValueError as e:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown booking status filter: {e}",
        ) from e


@router.post("", response_model=BookingOut, status_code=201)
@limiter.limit(settings.rate_limit_booking_create)
async def create_booking(
    request: Request,
    draft: BookingDraft,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: Optional[Notifier] = Depends(get_notifier),
):
    return await BookingService.create_booking(db, draft, actor.user_id, notifier=notifier)


@router.get("", response_model=List[BookingOut])
async def list_bookings(
    role: UserRole = UserRole.GUEST,
    status: Optional[List[str]] = Query(default=None),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    listing_id: Optional[int] = None,
    has_pets: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await BookingService.list_bookings(
        db,
        actor,
        role=role,
        statuses=parse_statuses(status),
        start_date=start_date,
        end_date=end_date,
        listing_id=listing_id,
        has_pets=has_pets,
    )


@router.get("/availability", response_model=AvailabilityOut)
async def check_availability(
    listing_id: int,
    check_in: date,
    check_out: date,
    db: AsyncSession = Depends(get_db),
):
    if check_out <= check_in:
        raise InvalidDateRange("check_out must be after check_in")
    await BookingService.get_listing(db, listing_id)
    available = await AvailabilityService.is_available(db, listing_id, check_in, check_out)
    return AvailabilityOut(
        listing_id=listing_id, check_in=check_in, check_out=check_out, available=available
    )


@router.post("/quote", response_model=PriceBreakdown)
async def quote(payload: QuoteRequest, db: AsyncSession = Depends(get_db)):
    listing = await BookingService.get_listing(db, payload.listing_id)
    return await PriceCalculator.calculate(
        db, listing, payload.check_in, payload.check_out, payload.guests, payload.pets
    )


@router.get("/{booking_id}", response_model=BookingOut)
async def get_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await BookingService.get_booking(db, booking_id, actor)


@router.get("/{booking_id}/logs")
async def get_booking_logs(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    await BookingService.get_booking(db, booking_id, actor)
    logs = await BookingLogService.get_logs(db, booking_id)
    return [
        {
            "action": log.action,
            "actor_id": log.actor_id,
            "actor_role": log.actor_role,
            "previous_status": log.previous_status,
            "new_status": log.new_status,
            "details": log.details,
            "created_at": log.created_at,
        }
        for log in logs
    ]


@router.patch("/{booking_id}/status", response_model=BookingOut)
async def update_status(
    booking_id: int,
    payload: BookingStatusUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: Optional[Notifier] = Depends(get_notifier),
    processor: Optional[PaymentProcessor] = Depends(get_payment_processor),
):
    booking = await BookingService.get_booking(db, booking_id, actor)
    return await BookingService.update_status(
        db,
        booking,
        payload.status,
        actor=actor,
        host_response=payload.host_response,
        notifier=notifier,
        processor=processor,
    )


@router.post("/{booking_id}/cancel", response_model=CancellationOut)
async def cancel_booking(
    booking_id: int,
    payload: Optional[CancelRequest] = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: Optional[Notifier] = Depends(get_notifier),
    processor: Optional[PaymentProcessor] = Depends(get_payment_processor),
):
    booking = await BookingService.get_booking(db, booking_id, actor)
    booking, refund = await BookingService.cancel_booking(
        db,
        booking,
        actor,
        payload.reason if payload else None,
        notifier=notifier,
        processor=processor,
    )
    return CancellationOut(booking=BookingOut.model_validate(booking), refund=refund)


@router.post("/{booking_id}/payment-intent", response_model=PaymentIntentOut)
async def create_payment_intent(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    processor: Optional[PaymentProcessor] = Depends(get_payment_processor),
):
    booking = await BookingService.get_booking(db, booking_id, actor)
    intent = await PaymentService.create_payment_intent(db, booking, processor)
    return PaymentIntentOut(
        booking_id=booking.id,
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        amount=intent.amount,
        currency=intent.currency,
        status=intent.status,
    )


@router.post("/{booking_id}/payment/confirm", response_model=BookingOut)
async def confirm_payment(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    processor: Optional[PaymentProcessor] = Depends(get_payment_processor),
):
    booking = await BookingService.get_booking(db, booking_id, actor)
    return await PaymentService.confirm_payment(db, booking, processor)
