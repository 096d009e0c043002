from typing import List

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.errors import InvalidDateRange, NotFound, Unauthorized
from rentals.domain.actor import Actor
from rentals.domain.calendar import overlaps
from rentals.models import AvailabilityPeriod, Listing, UserRole
from rentals.schemas.listing import (
    AvailabilityPeriodIn,
    AvailabilityPeriodUpdate,
    ListingCreate,
    ListingUpdate,
)


def check_no_overlap(periods: List[AvailabilityPeriod | AvailabilityPeriodIn]) -> None:
    ordered = sorted(periods, key=lambda p: p.start_date)
    for prev, curr in zip(ordered, ordered[1:]):
        if overlaps(prev.start_date, prev.end_date, curr.start_date, curr.end_date):
            raise InvalidDateRange(
                f"Availability periods overlap: {prev.start_date} - {prev.end_date} "
                f"and {curr.start_date} - {curr.end_date}"
            )


class ListingService:
    @staticmethod
    async def get_listing_by_id(db: AsyncSession, listing_id: int) -> Listing:
        result = await db.execute(select(Listing).where(Listing.id == listing_id))
        listing = result.scalar_one_or_none()
        if listing is None:
            raise NotFound(f"Listing {listing_id} not found")
        return listing

    @staticmethod
    async def get_owned_listing(db: AsyncSession, listing_id: int, actor: Actor) -> Listing:
        listing = await ListingService.get_listing_by_id(db, listing_id)
        if not actor.owns(listing.host_id):
            raise Unauthorized("Only the listing host can manage it")
        return listing

    @staticmethod
    async def create_listing(db: AsyncSession, listing_in: ListingCreate, actor: Actor) -> Listing:
        if actor.role not in (UserRole.HOST, UserRole.ADMIN):
            raise Unauthorized("Only hosts can create listings")
        data = listing_in.model_dump(mode="json")
        db_listing = Listing(**{**listing_in.model_dump(), "allowed_pet_types": data["allowed_pet_types"]})
        db_listing.host_id = actor.user_id
        db.add(db_listing)
        await db.commit()
        return await ListingService.reload(db, db_listing.id)

    @staticmethod
    async def update_listing(
        db: AsyncSession, listing_id: int, listing_in: ListingUpdate, actor: Actor
    ) -> Listing:
        db_listing = await ListingService.get_owned_listing(db, listing_id, actor)

        update_data = listing_in.model_dump(exclude_unset=True)
        if "allowed_pet_types" in update_data:
            update_data["allowed_pet_types"] = [t.value for t in listing_in.allowed_pet_types or []]

        for key, value in update_data.items():
            setattr(db_listing, key, value)

        await db.commit()
        return await ListingService.reload(db, listing_id)

    @staticmethod
    async def reload(db: AsyncSession, listing_id: int) -> Listing:
        result = await db.execute(
            select(Listing).where(Listing.id == listing_id).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    # ------------------------------------------------------------------
    # Периоды доступности (переопределения хоста)
    # ------------------------------------------------------------------

    @staticmethod
    async def get_periods(db: AsyncSession, listing_id: int) -> List[AvailabilityPeriod]:
        await ListingService.get_listing_by_id(db, listing_id)
        result = await db.execute(
            select(AvailabilityPeriod)
            .where(AvailabilityPeriod.listing_id == listing_id)
            .order_by(AvailabilityPeriod.start_date)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def add_period(
        db: AsyncSession, listing_id: int, period_in: AvailabilityPeriodIn, actor: Actor
    ) -> AvailabilityPeriod:
        await ListingService.get_owned_listing(db, listing_id, actor)
        existing = await ListingService.get_periods(db, listing_id)
        check_no_overlap([*existing, period_in])

        period = AvailabilityPeriod(listing_id=listing_id, **period_in.model_dump())
        db.add(period)
        await db.commit()
        await db.refresh(period)
        return period

    @staticmethod
    async def update_period(
        db: AsyncSession,
        listing_id: int,
        period_id: int,
        period_in: AvailabilityPeriodUpdate,
        actor: Actor,
    ) -> AvailabilityPeriod:
        await ListingService.get_owned_listing(db, listing_id, actor)
        existing = await ListingService.get_periods(db, listing_id)
        period = next((p for p in existing if p.id == period_id), None)
        if period is None:
            raise NotFound(f"Availability period {period_id} not found")

        try:
            candidate = AvailabilityPeriodIn(
                **{
                    "start_date": period.start_date,
                    "end_date": period.end_date,
                    "is_available": period.is_available,
                    "special_price": period.special_price,
                    **period_in.model_dump(exclude_unset=True),
                }
            )
        except ValidationError as e:
            raise InvalidDateRange("start_date must be before end_date") from e
        check_no_overlap([*(p for p in existing if p.id != period_id), candidate])

        for key, value in candidate.model_dump().items():
            setattr(period, key, value)
        await db.commit()
        await db.refresh(period)
        return period

    @staticmethod
    async def replace_periods(
        db: AsyncSession, listing_id: int, periods_in: List[AvailabilityPeriodIn], actor: Actor
    ) -> List[AvailabilityPeriod]:
        await ListingService.get_owned_listing(db, listing_id, actor)
        check_no_overlap(list(periods_in))

        await db.execute(delete(AvailabilityPeriod).where(AvailabilityPeriod.listing_id == listing_id))
        for period_in in periods_in:
            db.add(AvailabilityPeriod(listing_id=listing_id, **period_in.model_dump()))
        await db.commit()
        return await ListingService.get_periods(db, listing_id)

    @staticmethod
    async def delete_period(db: AsyncSession, listing_id: int, period_id: int, actor: Actor) -> bool:
        await ListingService.get_owned_listing(db, listing_id, actor)
        result = await db.execute(
            delete(AvailabilityPeriod).where(
                AvailabilityPeriod.id == period_id,
                AvailabilityPeriod.listing_id == listing_id,
            )
        )
        await db.commit()
        if not result.rowcount:
            raise NotFound(f"Availability period {period_id} not found")
        return True

