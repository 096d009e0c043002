import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.config import settings
from rentals.core.errors import (
    CancellationWindowClosed,
    DateConflict,
    InvalidDateRange,
    InvalidStateTransition,
    ListingUnavailable,
    NotFound,
    PetPolicyViolation,
    Unauthorized,
)
from rentals.domain.actor import Actor
from rentals.domain.calendar import local_today, nights_between
from rentals.domain.refunds import days_until, hours_until, refund_amount, refund_percentage
from rentals.models import (
    Booking,
    BookingStatus,
    BookingType,
    Listing,
    PaymentStatus,
    UserRole,
    utcnow,
)
from rentals.schemas.booking import BookingDraft, RefundInfo
from rentals.services.availability_service import AvailabilityService
from rentals.services.booking_log_service import BookingLogService
from rentals.services.notification_service import Notifier
from rentals.services.payment_service import PaymentProcessor, PaymentService
from rentals.services.price_calculator import PriceCalculator
from rentals.utils.references import generate_unique_reference

logger = logging.getLogger(__name__)


class BookingService:
    """Жизненный цикл бронирования: создание, смена статусов, отмена, истечение."""

    ALLOWED_TRANSITIONS = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.DECLINED,
            BookingStatus.CANCELLED,
            BookingStatus.EXPIRED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.CHECKED_IN,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CHECKED_IN: {BookingStatus.CHECKED_OUT},
        BookingStatus.CHECKED_OUT: {BookingStatus.COMPLETED},
    }

    # Только хост или админ
    HOST_TRANSITIONS = {BookingStatus.CONFIRMED, BookingStatus.DECLINED}
    # Только система (джоба или ленивая проверка)
    SYSTEM_TRANSITIONS = {BookingStatus.EXPIRED}
    CANCELLABLE_STATUSES = {BookingStatus.PENDING, BookingStatus.CONFIRMED}

    @classmethod
    def can_transition(cls, current: BookingStatus, target: BookingStatus) -> bool:
        return target in cls.ALLOWED_TRANSITIONS.get(current, set())

    # ------------------------------------------------------------------
    # Чтение
    # ------------------------------------------------------------------

    @staticmethod
    async def get_listing(db: AsyncSession, listing_id: int) -> Listing:
        listing = await db.get(Listing, listing_id)
        if listing is None:
            raise NotFound(f"Listing {listing_id} not found")
        return listing

    @staticmethod
    async def expire_if_stale(db: AsyncSession, booking: Booking, now: Optional[datetime] = None) -> bool:
        """Ленивое истечение: pending с прошедшим expires_at переводится в expired при обращении."""
        if not booking.is_expired(now):
            return False
        booking.status = BookingStatus.EXPIRED
        await BookingLogService.log_action(
            db,
            booking.id,
            "expired",
            previous_status=BookingStatus.PENDING.value,
            new_status=BookingStatus.EXPIRED.value,
        )
        await db.commit()
        logger.info(f"⌛ Booking {booking.reference} expired")
        return True

    @staticmethod
    async def get_booking(db: AsyncSession, booking_id: int, actor: Optional[Actor] = None) -> Booking:
        booking = await db.get(Booking, booking_id)
        # Чужая бронь выглядит как несуществующая
        if booking is None or (
            actor is not None and not actor.is_admin and actor.user_id not in (booking.guest_id, booking.host_id)
        ):
            raise NotFound(f"Booking {booking_id} not found")
        await BookingService.expire_if_stale(db, booking)
        return booking

    @staticmethod
    async def list_bookings(
        db: AsyncSession,
        actor: Actor,
        role: UserRole = UserRole.GUEST,
        statuses: Optional[List[BookingStatus]] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        listing_id: Optional[int] = None,
        has_pets: Optional[bool] = None,
    ) -> List[Booking]:
        query = select(Booking)
        if role == UserRole.HOST:
            query = query.where(Booking.host_id == actor.user_id)
        elif role == UserRole.GUEST:
            query = query.where(Booking.guest_id == actor.user_id)
        elif not actor.is_admin:
            raise Unauthorized("Only admins can list all bookings")

        if statuses:
            query = query.where(Booking.status.in_(statuses))
        if start_date:
            query = query.where(Booking.check_in >= start_date)
        if end_date:
            query = query.where(Booking.check_in <= end_date)
        if listing_id:
            query = query.where(Booking.listing_id == listing_id)
        if has_pets is not None:
            query = query.where(Booking.has_pets.is_(has_pets))

        result = await db.execute(query.order_by(Booking.check_in, Booking.id))
        bookings = list(result.scalars().all())

        now = utcnow()
        for booking in bookings:
            await BookingService.expire_if_stale(db, booking, now)
        if statuses:
            bookings = [b for b in bookings if b.status in statuses]
        return bookings

    # ------------------------------------------------------------------
    # Создание
    # ------------------------------------------------------------------

    @staticmethod
    def validate_pet_policy(listing: Listing, draft: BookingDraft) -> None:
        if not draft.pets:
            return
        if not listing.pets_allowed:
            raise PetPolicyViolation("Pets are not allowed at this property")
        if listing.max_pets is not None and len(draft.pets) > listing.max_pets:
            raise PetPolicyViolation(f"Property allows maximum {listing.max_pets} pets")

        allowed = set(listing.allowed_pet_types or [])
        if allowed:
            invalid = [t.value for t in draft.pet_types if t.value not in allowed]
            if invalid:
                raise PetPolicyViolation(f"Pet types not allowed: {', '.join(invalid)}")

    @staticmethod
    def validate_capacity(listing: Listing, draft: BookingDraft) -> None:
        if not listing.is_active:
            raise ListingUnavailable(f"Listing {listing.id} is not available for booking")
        if listing.max_guests is not None and draft.total_guests > listing.max_guests:
            raise ListingUnavailable(f"Property can accommodate maximum {listing.max_guests} guests")
        if draft.total_guests < (listing.min_guests or 1):
            raise ListingUnavailable(f"Property requires at least {listing.min_guests} guests")

    @staticmethod
    async def reference_exists(db: AsyncSession, reference: str) -> bool:
        result = await db.execute(select(Booking.id).where(Booking.reference == reference))
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def create_booking(
        db: AsyncSession,
        draft: BookingDraft,
        guest_id: int,
        notifier: Optional[Notifier] = None,
    ) -> Booking:
        """
        Создание брони.

        Порядок проверок: даты -> объявление и вместимость -> животные ->
        доступность. Любая ошибка до записи не оставляет следов в базе.
        Запись идёт под compare-and-swap по listings.booking_version:
        сначала захват версии, затем повторная проверка доступности в той же
        транзакции. Проигравший захват повторяет попытку, после исчерпания
        попыток получает DateConflict.
        """
        if draft.check_out <= draft.check_in:
            raise InvalidDateRange("check_out must be after check_in")
        if draft.check_in < local_today():
            raise InvalidDateRange("Check-in date cannot be in the past")

        listing = await BookingService.get_listing(db, draft.listing_id)
        BookingService.validate_capacity(listing, draft)
        BookingService.validate_pet_policy(listing, draft)

        if not await AvailabilityService.is_available(db, listing.id, draft.check_in, draft.check_out):
            raise DateConflict("Property is not available for the selected dates")

        pricing = await PriceCalculator.calculate(
            db, listing, draft.check_in, draft.check_out, draft.total_guests, len(draft.pets)
        )
        reference = await generate_unique_reference(
            lambda ref: BookingService.reference_exists(db, ref)
        )

        # rollback экспайрит listing, дальше работаем с копиями значений
        listing_id, host_id = listing.id, listing.host_id
        instant = bool(listing.instant_book)
        now = utcnow()

        for attempt in range(settings.booking_cas_retries):
            if not await AvailabilityService.claim_listing(db, listing_id):
                await db.rollback()
                logger.warning(f"Booking write race on listing {listing_id}, attempt {attempt + 1}")
                continue

            # Версия захвачена: проверка видит всё, что закоммичено до нас
            if not await AvailabilityService.is_available(
                db, listing_id, draft.check_in, draft.check_out
            ):
                await db.rollback()
                raise DateConflict("Property is not available for the selected dates")

            booking = Booking(
                reference=reference,
                listing_id=listing_id,
                guest_id=guest_id,
                host_id=host_id,
                check_in=draft.check_in,
                check_out=draft.check_out,
                nights=nights_between(draft.check_in, draft.check_out),
                adults=draft.adults,
                children=draft.children,
                infants=draft.infants,
                total_guests=draft.total_guests,
                has_pets=bool(draft.pets),
                number_of_pets=len(draft.pets),
                pet_types=[t.value for t in draft.pet_types],
                pet_info=[pet.model_dump(mode="json") for pet in draft.pets],
                base_price=pricing.base_price,
                price_per_night=pricing.price_per_night,
                subtotal=pricing.subtotal,
                cleaning_fee=pricing.cleaning_fee,
                service_fee=pricing.service_fee,
                pet_fee=pricing.pet_fee,
                pet_deposit=pricing.pet_deposit,
                taxes=pricing.taxes,
                total_amount=pricing.total,
                currency=pricing.currency,
                status=BookingStatus.CONFIRMED if instant else BookingStatus.PENDING,
                booking_type=BookingType.INSTANT if instant else BookingType.REQUEST,
                payment_method=draft.payment_method,
                payment_status=PaymentStatus.PENDING,
                guest_message=draft.guest_message,
                confirmed_at=now if instant else None,
                expires_at=None if instant else now + timedelta(hours=settings.pending_expiry_hours),
            )
            db.add(booking)
            await db.flush()

            if instant:
                await AvailabilityService.hold_for_booking(db, booking)

            await BookingLogService.log_action(
                db,
                booking.id,
                "created",
                actor_id=guest_id,
                actor_role=UserRole.GUEST.value,
                new_status=booking.status.value,
                details={"total": str(booking.total_amount), "booking_type": booking.booking_type.value},
            )
            await db.commit()
            await db.refresh(booking)
            break
        else:
            raise DateConflict("Property is not available for the selected dates")

        logger.info(
            f"✅ Booking {booking.reference} created for listing {listing_id} "
            f"({booking.check_in} - {booking.check_out}, {booking.status.value})"
        )

        if instant:
            await BookingService._block_override_periods(db, booking)
        await BookingService._notify(notifier, "created", booking)
        return booking

    # ------------------------------------------------------------------
    # Смена статусов
    # ------------------------------------------------------------------

    @staticmethod
    def check_actor(booking: Booking, target: BookingStatus, actor: Optional[Actor]) -> None:
        if actor is None:
            return
        if target in BookingService.SYSTEM_TRANSITIONS:
            raise InvalidStateTransition(f"Transition to {target.value} is automatic only")
        if actor.is_admin:
            return
        if target in BookingService.HOST_TRANSITIONS:
            if actor.user_id != booking.host_id:
                raise Unauthorized("Only the host can confirm or decline a booking")
            return
        if actor.user_id not in (booking.guest_id, booking.host_id):
            raise Unauthorized("Not a party to this booking")

    @staticmethod
    async def update_status(
        db: AsyncSession,
        booking: Booking,
        new_status: BookingStatus,
        actor: Optional[Actor] = None,
        host_response: Optional[str] = None,
        notifier: Optional[Notifier] = None,
        processor: Optional[PaymentProcessor] = None,
    ) -> Booking:
        """
        Переход по таблице статусов. actor=None - системный вызов.

        Вход в confirmed перепроверяет доступность (без самой брони) и
        дробит периоды хоста; отмена идёт через cancel_booking.
        Ошибки дробления/освобождения периодов только логируются.
        """
        await BookingService.expire_if_stale(db, booking)

        BookingService.check_actor(booking, new_status, actor)
        if not BookingService.can_transition(booking.status, new_status):
            raise InvalidStateTransition(
                f"Cannot change booking status from {booking.status.value} to {new_status.value}"
            )

        if new_status == BookingStatus.CANCELLED:
            booking, _ = await BookingService.cancel_booking(
                db, booking, actor, host_response, notifier=notifier, processor=processor
            )
            return booking

        previous = booking.status
        if new_status == BookingStatus.CONFIRMED:
            await BookingService._confirm(db, booking)
        else:
            booking.status = new_status
            if new_status == BookingStatus.EXPIRED:
                booking.expires_at = booking.expires_at or utcnow()

        if host_response is not None:
            booking.host_response = host_response

        await BookingLogService.log_action(
            db,
            booking.id,
            new_status.value,
            actor_id=actor.user_id if actor else None,
            actor_role=actor.role.value if actor else "system",
            previous_status=previous.value,
            new_status=new_status.value,
        )
        await db.commit()
        logger.info(f"🔄 Booking {booking.reference}: {previous.value} -> {new_status.value}")

        if new_status == BookingStatus.CONFIRMED:
            await BookingService._block_override_periods(db, booking)
        await BookingService._notify(notifier, new_status.value, booking)
        return booking

    @staticmethod
    async def _confirm(db: AsyncSession, booking: Booking) -> None:
        booking_id, listing_id = booking.id, booking.listing_id
        check_in, check_out = booking.check_in, booking.check_out

        for attempt in range(settings.booking_cas_retries):
            if not await AvailabilityService.claim_listing(db, listing_id):
                # rollback экспайрит объекты сессии, перечитываем бронь
                await db.rollback()
                await db.refresh(booking)
                logger.warning(f"Confirm race on listing {listing_id}, attempt {attempt + 1}")
                continue

            if not await AvailabilityService.is_available(
                db, listing_id, check_in, check_out, exclude_booking_id=booking_id
            ):
                await db.rollback()
                await db.refresh(booking)
                raise DateConflict("Dates were taken by another booking")

            booking.status = BookingStatus.CONFIRMED
            booking.confirmed_at = utcnow()
            booking.expires_at = None
            await AvailabilityService.hold_for_booking(db, booking)
            return

        raise DateConflict("Dates were taken by another booking")

    # ------------------------------------------------------------------
    # Отмена
    # ------------------------------------------------------------------

    @staticmethod
    def refund_for(booking: Booking, policy, now: Optional[datetime] = None) -> RefundInfo:
        now = now or utcnow()
        days = days_until(booking.check_in, now)
        percentage = refund_percentage(policy, days)
        return RefundInfo(
            days_until_check_in=days,
            refund_percentage=percentage,
            refund_amount=refund_amount(booking.total_amount, booking.pet_deposit, percentage),
            pet_deposit_refund=Decimal(booking.pet_deposit),
            policy=str(getattr(policy, "value", policy)),
        )

    @staticmethod
    async def cancel_booking(
        db: AsyncSession,
        booking: Booking,
        actor: Optional[Actor],
        reason: Optional[str] = None,
        *,
        notifier: Optional[Notifier] = None,
        processor: Optional[PaymentProcessor] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Booking, RefundInfo]:
        now = now or utcnow()
        await BookingService.expire_if_stale(db, booking, now)

        if actor is not None and not actor.is_admin and actor.user_id not in (booking.guest_id, booking.host_id):
            raise Unauthorized("Not a party to this booking")
        if booking.status not in BookingService.CANCELLABLE_STATUSES:
            raise InvalidStateTransition(f"Booking in status {booking.status.value} cannot be cancelled")
        if hours_until(booking.check_in, now) <= settings.cancellation_window_hours:
            raise CancellationWindowClosed(
                f"Bookings can only be cancelled more than {settings.cancellation_window_hours} hours before check-in"
            )

        listing = await BookingService.get_listing(db, booking.listing_id)
        refund = BookingService.refund_for(booking, listing.cancellation_policy, now)
        previous = booking.status

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_by = actor.user_id if actor else None
        booking.cancelled_at = now
        booking.cancellation_reason = reason
        booking.cancellation_refund = refund.refund_amount
        booking.cancellation_policy = refund.policy
        booking.expires_at = None

        if previous == BookingStatus.CONFIRMED:
            await AvailabilityService.drop_booking_hold(db, booking)

        await BookingLogService.log_action(
            db,
            booking.id,
            "cancelled",
            actor_id=actor.user_id if actor else None,
            actor_role=actor.role.value if actor else "system",
            previous_status=previous.value,
            new_status=BookingStatus.CANCELLED.value,
            details={"reason": reason, "refund": str(refund.refund_amount), "percentage": refund.refund_percentage},
        )
        await db.commit()
        logger.info(
            f"🚫 Booking {booking.reference} cancelled ({refund.refund_percentage}% refund, "
            f"{refund.refund_amount} {booking.currency})"
        )

        try:
            await AvailabilityService.release(db, booking.listing_id, booking.check_in, booking.check_out)
        except Exception as e:
            logger.error(f"Error releasing availability for {booking.reference}: {e}", exc_info=True)
            await db.rollback()
            await db.refresh(booking)

        await PaymentService.refund_booking(db, booking, refund.refund_amount, processor)
        await BookingService._notify(notifier, "cancelled", booking)
        return booking, refund

    # ------------------------------------------------------------------
    # Истечение
    # ------------------------------------------------------------------

    @staticmethod
    async def expire_stale_bookings(db: AsyncSession, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        result = await db.execute(
            select(Booking).where(
                Booking.status == BookingStatus.PENDING,
                Booking.expires_at.is_not(None),
                Booking.expires_at < now,
            )
        )
        expired = 0
        for booking in result.scalars().all():
            if await BookingService.expire_if_stale(db, booking, now):
                expired += 1
        return expired

    # ------------------------------------------------------------------
    # Побочные эффекты (best effort)
    # ------------------------------------------------------------------

    @staticmethod
    async def _block_override_periods(db: AsyncSession, booking: Booking) -> None:
        """Дробление периодов хоста. Ошибка не откатывает подтверждение."""
        try:
            await AvailabilityService.block(db, booking.listing_id, booking.check_in, booking.check_out)
        except Exception as e:
            logger.error(f"Error blocking availability for {booking.reference}: {e}", exc_info=True)
            await db.rollback()
            await db.refresh(booking)

    @staticmethod
    async def _notify(notifier: Optional[Notifier], event: str, booking: Booking) -> None:
        if notifier is None:
            return
        try:
            await notifier.booking_event(event, booking)
        except Exception as e:
            logger.error(f"Notification failed for {booking.reference}: {e}")
