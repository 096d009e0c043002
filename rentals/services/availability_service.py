import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.domain.calendar import day_start
from rentals.models import (
    OCCUPYING_STATUSES,
    AvailabilityPeriod,
    BlockedDate,
    BlockSource,
    Booking,
    BookingStatus,
    CalendarProvider,
    Listing,
    utcnow,
)

logger = logging.getLogger(__name__)


def booking_block_uid(booking: Booking) -> str:
    return f"booking-{booking.reference}"


class AvailabilityService:
    """
    Занятость объявления.

    Доступность всегда считается вживую по броням и BlockedDate.
    Периоды-переопределения хоста (AvailabilityPeriod) дробятся при
    подтверждении брони и восстанавливаются при отмене, но в проверку
    пересечений не входят.
    """

    @staticmethod
    async def is_available(
        db: AsyncSession,
        listing_id: int,
        start: date,
        end: date,
        exclude_booking_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        now = now or utcnow()

        query = select(Booking.id).where(
            Booking.listing_id == listing_id,
            Booking.status.in_(OCCUPYING_STATUSES),
            and_(Booking.check_in < end, Booking.check_out > start),
            # Просроченная pending-бронь даты не держит, даже если джоба ещё не прошла
            or_(
                Booking.status != BookingStatus.PENDING,
                Booking.expires_at.is_(None),
                Booking.expires_at >= now,
            ),
        )
        if exclude_booking_id:
            query = query.where(Booking.id != exclude_booking_id)

        result = await db.execute(query.limit(1))
        if result.scalar_one_or_none() is not None:
            return False

        blocks = select(BlockedDate.id).where(
            BlockedDate.listing_id == listing_id,
            BlockedDate.deleted_at.is_(None),
            and_(BlockedDate.start < day_start(end), BlockedDate.end > day_start(start)),
        )
        if exclude_booking_id:
            own = await db.execute(select(Booking.reference).where(Booking.id == exclude_booking_id))
            reference = own.scalar_one_or_none()
            if reference:
                blocks = blocks.where(
                    or_(BlockedDate.event_uid.is_(None), BlockedDate.event_uid != f"booking-{reference}")
                )

        result = await db.execute(blocks.limit(1))
        return result.scalar_one_or_none() is None

    @staticmethod
    async def claim_listing(db: AsyncSession, listing_id: int) -> bool:
        """
        Compare-and-swap on listings.booking_version inside the caller's transaction.
        Call it before the availability check, so the check runs under the claim.
        False means a competing booking write got there first.
        """
        result = await db.execute(select(Listing.booking_version).where(Listing.id == listing_id))
        seen = result.scalar_one_or_none()
        if seen is None:
            return False

        result = await db.execute(
            update(Listing)
            .where(Listing.id == listing_id, Listing.booking_version == seen)
            .values(booking_version=seen + 1)
        )
        return result.rowcount == 1

    @staticmethod
    async def hold_for_booking(db: AsyncSession, booking: Booking) -> BlockedDate:
        """Internal BlockedDate for a confirmed booking (upsert by booking-<reference>)."""
        uid = booking_block_uid(booking)
        result = await db.execute(
            select(BlockedDate).where(
                BlockedDate.listing_id == booking.listing_id,
                BlockedDate.event_uid == uid,
            )
        )
        block = result.scalar_one_or_none()
        if block is None:
            block = BlockedDate(
                listing_id=booking.listing_id,
                source=BlockSource.INTERNAL,
                provider=CalendarProvider.OTHER,
                event_uid=uid,
            )
            db.add(block)

        block.summary = "Booked"
        block.start = day_start(booking.check_in)
        block.end = day_start(booking.check_out)
        block.is_all_day = True
        block.imported_at = utcnow()
        block.deleted_at = None
        await db.flush()
        return block

    @staticmethod
    async def drop_booking_hold(db: AsyncSession, booking: Booking) -> int:
        result = await db.execute(
            update(BlockedDate)
            .where(
                BlockedDate.listing_id == booking.listing_id,
                BlockedDate.event_uid == booking_block_uid(booking),
                BlockedDate.deleted_at.is_(None),
            )
            .values(deleted_at=utcnow())
        )
        return result.rowcount

    @staticmethod
    async def block(db: AsyncSession, listing_id: int, start: date, end: date) -> bool:
        """
        Дробит первый пересекающийся открытый период-переопределение на
        до / занято / после. Спеццена сохраняется во всех кусках.
        Закрытые хостом периоды не трогаем: release их потом не откроет.
        Нет подходящего периода - ничего не делаем.
        """
        result = await db.execute(
            select(AvailabilityPeriod)
            .where(
                AvailabilityPeriod.listing_id == listing_id,
                AvailabilityPeriod.is_available.is_(True),
                AvailabilityPeriod.start_date < end,
                AvailabilityPeriod.end_date > start,
            )
            .order_by(AvailabilityPeriod.start_date)
            .limit(1)
        )
        period = result.scalar_one_or_none()
        if period is None:
            return False

        original_start, original_end = period.start_date, period.end_date
        special_price = period.special_price
        blocked_start = max(original_start, start)
        blocked_end = min(original_end, end)

        # Исходная строка становится занятым куском, если её никто не поменял
        changed = await db.execute(
            update(AvailabilityPeriod)
            .where(
                AvailabilityPeriod.id == period.id,
                AvailabilityPeriod.start_date == original_start,
                AvailabilityPeriod.end_date == original_end,
                AvailabilityPeriod.is_available.is_(True),
            )
            .values(start_date=blocked_start, end_date=blocked_end, is_available=False)
        )
        if changed.rowcount != 1:
            logger.warning(f"Availability period {period.id} changed concurrently, block skipped")
            return False

        if original_start < blocked_start:
            db.add(
                AvailabilityPeriod(
                    listing_id=listing_id,
                    start_date=original_start,
                    end_date=blocked_start,
                    is_available=True,
                    special_price=special_price,
                )
            )
        if blocked_end < original_end:
            db.add(
                AvailabilityPeriod(
                    listing_id=listing_id,
                    start_date=blocked_end,
                    end_date=original_end,
                    is_available=True,
                    special_price=special_price,
                )
            )

        await db.commit()
        logger.info(f"🔒 Listing {listing_id}: override period split for {start} - {end}")
        return True

    @staticmethod
    async def release(db: AsyncSession, listing_id: int, start: date, end: date) -> bool:
        """
        Возвращает доступность занятому куску, у которого начало и конец
        точно совпадают с диапазоном. Соседние куски не склеиваются.
        """
        result = await db.execute(
            select(AvailabilityPeriod)
            .where(
                AvailabilityPeriod.listing_id == listing_id,
                AvailabilityPeriod.is_available.is_(False),
                AvailabilityPeriod.start_date == start,
                AvailabilityPeriod.end_date == end,
            )
            .limit(1)
        )
        period = result.scalar_one_or_none()
        if period is None:
            return False

        changed = await db.execute(
            update(AvailabilityPeriod)
            .where(AvailabilityPeriod.id == period.id, AvailabilityPeriod.is_available.is_(False))
            .values(is_available=True)
        )
        await db.commit()
        if changed.rowcount:
            logger.info(f"🔓 Listing {listing_id}: override period released for {start} - {end}")
        return bool(changed.rowcount)
